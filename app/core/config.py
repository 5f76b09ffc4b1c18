from __future__ import annotations

from functools import lru_cache
from typing import Literal, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    This uses pydantic-settings so that we get type validation and defaults.
    Provider credentials are NOT read from here: they are tenant-scoped and
    live in the tenant configuration store (see ``TENANTS_FILE``).
    """

    # App basics
    ENV: Literal["development", "staging", "production"] = "development"
    """Environment mode: affects log rendering and error detail."""

    DEBUG: bool = True
    """Enable debug mode: verbose logging and development features."""

    LOG_LEVEL: str = "INFO"
    """Root log level for the standard logging bridge."""

    # Tenants
    TENANTS_FILE: Optional[str] = None
    """Path to a JSON file holding tenant payment configurations."""

    # Payments
    DEFAULT_CURRENCY: str = "TZS"
    """Currency used when a transfer request does not name one."""

    SELCOM_TIMEOUT: float = 30.0
    """Request timeout (seconds) for the bill aggregator."""

    TIPS_TIMEOUT: float = 60.0
    """Request timeout (seconds) for the instant-transfer switch."""

    GEPG_TIMEOUT: float = 60.0
    """Request timeout (seconds) for the government payment gateway."""

    # Model config
    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached Settings instance to avoid re-parsing .env repeatedly."""
    return Settings()
