"""
Configuration and settings for the LDSS backend.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-backed settings for the FastAPI service."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    api_prefix: str = Field(default="/api")
    log_level: str = Field(default="INFO", alias="LDSS_LOG_LEVEL")

    # Schema store (any SQLAlchemy URL; Postgres in production)
    database_url: Optional[str] = Field(default=None, alias="DATABASE_URL")

    # Development toggles
    use_in_memory_backends: bool = Field(
        default=False, alias="LDSS_USE_IN_MEMORY_BACKENDS"
    )

    # Identity
    session_ttl_days: int = Field(default=30, alias="LDSS_SESSION_TTL_DAYS")

    # Data sync
    default_query_limit: int = Field(default=100, alias="LDSS_DEFAULT_QUERY_LIMIT")
    recompute_stats_on_store: bool = Field(
        default=True, alias="LDSS_RECOMPUTE_STATS_ON_STORE"
    )

    # Provider probes
    simulated_probe_delay_seconds: float = Field(
        default=0.1, alias="LDSS_SIMULATED_PROBE_DELAY_SECONDS"
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
