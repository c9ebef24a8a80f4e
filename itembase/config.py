"""
Configuration and settings for the item service.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-backed settings for the FastAPI service."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    api_prefix: str = Field(default="/api", validation_alias="API_PREFIX")
    environment: str = Field(default="development", validation_alias="ITEMBASE_ENV")
    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")

    # Relational backend (Postgres expected, any SQLAlchemy URL works)
    database_url: Optional[str] = Field(default=None, validation_alias="DATABASE_URL")

    # Key-value backend (Redis)
    redis_url: Optional[str] = Field(default=None, validation_alias="REDIS_URL")
    redis_key_prefix: str = Field(default="itembase", validation_alias="REDIS_KEY_PREFIX")

    # Reference backend
    snapshot_dir: Optional[str] = Field(default=None, validation_alias="ITEMBASE_SNAPSHOT_DIR")
    simulate_latency: bool = Field(default=True, validation_alias="ITEMBASE_SIMULATE_LATENCY")

    # Sessions
    session_ttl_seconds: int = Field(
        default=24 * 60 * 60, validation_alias="ITEMBASE_SESSION_TTL_SECONDS"
    )

    # Remote API tried before the local backend
    remote_api_url: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("ITEMBASE_REMOTE_API_URL", "REMOTE_API_URL"),
    )
    remote_timeout_seconds: float = Field(
        default=5.0, validation_alias="ITEMBASE_REMOTE_TIMEOUT_SECONDS"
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
