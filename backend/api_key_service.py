"""
TaxScope - API Key Cache
========================
Resolves third-party API keys through a loader and caches them for a
bounded time. Each cache is an explicit object passed to the clients that
need it.
"""

import logging
import os
import time
from typing import Callable, Dict, Optional, Tuple

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 300.0

# key type -> environment variable
ENV_KEYS = {
    "openai": "OPENAI_API_KEY",
}


def env_key_loader(key_type: str) -> Optional[str]:
    """Read a key from the environment."""
    env_name = ENV_KEYS.get(key_type, f"{key_type.upper()}_API_KEY")
    return os.environ.get(env_name) or None


class ApiKeyCache:
    """
    TTL-bounded key cache.

    Args:
        loader: Callable returning the key for a key type, or None
        ttl_seconds: How long a resolved key stays valid
        clock: Monotonic time source (injectable for tests)
    """

    def __init__(
        self,
        loader: Callable[[str], Optional[str]] = env_key_loader,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        if ttl_seconds < 0:
            raise ValueError("ttl_seconds cannot be negative")
        self.loader = loader
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self._entries: Dict[str, Tuple[Optional[str], float]] = {}

    def get(self, key_type: str) -> Optional[str]:
        entry = self._entries.get(key_type)
        now = self.clock()
        if entry is not None and now - entry[1] < self.ttl_seconds:
            return entry[0]

        key = self.loader(key_type)
        self._entries[key_type] = (key, now)
        if key is None:
            logger.warning(f"No API key configured for {key_type}")
        return key

    def clear(self) -> None:
        self._entries.clear()

    def clear_type(self, key_type: str) -> None:
        self._entries.pop(key_type, None)
