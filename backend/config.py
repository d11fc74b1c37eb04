"""
TaxScope - Configuration
========================
Settings read from environment variables (or a local .env file).

    FLAT_TAX_RATE          rate used by the estimate (default 0.25)
    CLAMP_TAXABLE_INCOME   true floors taxable income at zero
    TAX_MODEL              "flat" or "progressive"
    OPENAI_MODEL           completion model name
    OPENAI_TIMEOUT         seconds before an AI call is abandoned
    API_KEY_CACHE_TTL      seconds a resolved API key stays cached
    CORS_ORIGINS           comma separated list of allowed origins
    DEBUG                  show exception detail in 500 responses
    LOG_LEVEL              logging level name

OPENAI_API_KEY is not a setting: it is resolved on demand through
api_key_service so a rotated key is picked up without a restart.
"""

from functools import lru_cache
from typing import Annotated, List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from models import ClampPolicy, TaxModel
from tax_constants import DEFAULT_FLAT_RATE


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    flat_tax_rate: float = Field(default=DEFAULT_FLAT_RATE, ge=0, le=1, description="Flat estimate rate")
    clamp_taxable_income: bool = Field(default=False, description="Floor taxable income at zero")
    tax_model: TaxModel = Field(default=TaxModel.FLAT, description="Flat or progressive schedule")

    openai_model: str = Field(default="gpt-4o-mini", description="Completion model name")
    openai_timeout: float = Field(default=30.0, gt=0, description="AI call timeout in seconds")
    api_key_cache_ttl: float = Field(default=300.0, ge=0, description="API key cache TTL in seconds")

    cors_origins: Annotated[List[str], NoDecode] = Field(
        default=["http://localhost:3000", "http://localhost:5173", "http://localhost:8501"],
        description="Allowed CORS origins"
    )
    debug: bool = Field(default=False, description="Expose exception detail")
    log_level: str = Field(default="INFO", description="Logging level name")

    @field_validator('tax_model', mode='before')
    @classmethod
    def normalize_tax_model(cls, v):
        return v.strip().lower() if isinstance(v, str) else v

    @field_validator('cors_origins', mode='before')
    @classmethod
    def split_cors_origins(cls, v):
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(",") if origin.strip()]
        return v

    @field_validator('log_level')
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        return v.upper()

    @property
    def clamp_policy(self) -> ClampPolicy:
        return ClampPolicy.ZERO_FLOOR if self.clamp_taxable_income else ClampPolicy.NONE


@lru_cache
def get_settings() -> Settings:
    """Process settings, read once from the environment."""
    return Settings()
