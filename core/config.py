"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for ETracker happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call. This is
      the official FastAPI dependency injection pattern for config.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      with the ETRACKER_ prefix (e.g. default_exception_duration_days reads
      ETRACKER_DEFAULT_EXCEPTION_DURATION_DAYS). Type coercion is built in.

  Injection, not lookup: the entry points (api/main.py, main.py) call
      get_settings(); the stores read it only when built without a URL.
      The engine receives an ExceptionPolicy built from these values, so
      tests can construct any duration without touching the env.

Layer rule: core/ is the kernel. This module may not import from api/ or
inventory/.
"""

import logging
from functools import lru_cache
from pathlib import Path

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("etracker.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'etracker.db'}"

DEFAULT_EXCEPTION_DURATION_DAYS = 365


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file.
    """

    model_config = SettingsConfigDict(
        env_prefix="ETRACKER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Storage
    # ------------------------------------------------------------------

    # Inventory documents and the audit trail may live in different
    # databases. Both default to the same local SQLite file.
    inventory_db_url: str = _DEFAULT_DB_URL
    audit_db_url: str = _DEFAULT_DB_URL

    # ------------------------------------------------------------------
    # Exceptions
    # ------------------------------------------------------------------

    default_exception_duration_days: int = DEFAULT_EXCEPTION_DURATION_DAYS

    # ------------------------------------------------------------------
    # Reports
    # ------------------------------------------------------------------

    report_expiring_window_days: int = 45
    report_unenforced_limit: int = 150  # 0 = unlimited
    report_batch_size: int = 200

    # ------------------------------------------------------------------
    # Logging
    # ------------------------------------------------------------------

    log_level: str = "INFO"

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @field_validator("default_exception_duration_days")
    @classmethod
    def validate_duration(cls, value: int) -> int:
        """Fall back to 365 days for zero or negative durations."""
        if value <= 0:
            logger.warning(
                "default_exception_duration_days=%d is not positive; using %d",
                value,
                DEFAULT_EXCEPTION_DURATION_DAYS,
            )
            return DEFAULT_EXCEPTION_DURATION_DAYS
        return value

    @field_validator("report_expiring_window_days", "report_batch_size")
    @classmethod
    def validate_at_least_one(cls, value: int) -> int:
        return max(1, value)

    @field_validator("report_unenforced_limit")
    @classmethod
    def validate_limit(cls, value: int) -> int:
        return max(0, value)

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        level = value.strip().upper()
        if level not in logging.getLevelNamesMapping():
            raise ValueError(f"Unknown log level: {value}")
        return level


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
