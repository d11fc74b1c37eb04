"""
TaxScope - Record Repository
============================
In-memory storage for profiles and finance records (replace with database
in production).

Finance records are append-only: every submission becomes a new version
and moves the user's current pointer. Reads go through the pointer, so
"latest wins" does not depend on sort order at read time.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Generic, List, Optional, TypeVar

from models import BusinessFinances, PersonalFinances, TaxScenario, UserProfile

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class VersionedRecord(Generic[T]):
    """One stored version of a record."""
    version: int
    value: T
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class RecordStore(Generic[T]):
    """Per-user append-only history with a current pointer."""

    def __init__(self, name: str):
        self.name = name
        self._history: Dict[str, List[VersionedRecord[T]]] = {}
        self._current: Dict[str, int] = {}

    def append(self, user_id: str, value: T) -> VersionedRecord[T]:
        history = self._history.setdefault(user_id, [])
        record = VersionedRecord(version=len(history) + 1, value=value)
        history.append(record)
        self._current[user_id] = record.version
        logger.info(f"[{user_id}] Stored {self.name} v{record.version}")
        return record

    def current(self, user_id: str) -> Optional[T]:
        record = self.current_record(user_id)
        return record.value if record else None

    def current_record(self, user_id: str) -> Optional[VersionedRecord[T]]:
        version = self._current.get(user_id)
        if version is None:
            return None
        return self._history[user_id][version - 1]

    def history(self, user_id: str) -> List[VersionedRecord[T]]:
        return list(self._history.get(user_id, []))


class FinanceRepository:
    """Profiles, scenario choices and finance records for every user."""

    def __init__(self):
        self.profiles: Dict[str, UserProfile] = {}
        self.scenarios: Dict[str, TaxScenario] = {}
        self.personal = RecordStore[PersonalFinances]("personal finances")
        self.business = RecordStore[BusinessFinances]("business finances")

    def save_profile(self, user_id: str, profile: UserProfile) -> UserProfile:
        existing = self.profiles.get(user_id)
        if existing is not None:
            # Keep the original creation time on edits
            profile = profile.model_copy(update={
                "created_at": existing.created_at,
                "updated_at": datetime.now(timezone.utc),
            })
        self.profiles[user_id] = profile
        return profile

    def get_profile(self, user_id: str) -> Optional[UserProfile]:
        return self.profiles.get(user_id)
