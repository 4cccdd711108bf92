"""
Configuration Management for Finance Tracker

Uses pydantic-settings for type-safe configuration from environment variables.

All configuration is centralized here so every tunable of the ledger
(database location, conflict retry budget, missing-account policy) is
validated at startup.
"""

from enum import Enum
from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class MissingAccountPolicy(str, Enum):
    """
    What the ledger does when a transaction being updated or deleted
    references an account that no longer exists.

    ABORT: raise AccountNotFoundError and roll back the whole operation.
    SKIP: skip that account's balance write, log a warning and audit it.
    """
    ABORT = "abort"
    SKIP = "skip"


class DatabaseSettings(BaseSettings):
    """SQLite storage configuration."""

    model_config = SettingsConfigDict(
        env_prefix="LEDGER_DB_",
        extra="ignore"
    )

    path: str = Field(
        default="data/finance_tracker.db",
        description="Path to the SQLite database file"
    )
    busy_timeout_ms: int = Field(
        default=5000,
        ge=0,
        le=60000,
        description="How long SQLite waits on a locked database before failing"
    )
    wal_mode: bool = Field(
        default=True,
        description="Enable write-ahead logging"
    )

    @field_validator('path')
    @classmethod
    def validate_path(cls, v: str) -> str:
        """Reject an empty path (use ':memory:' explicitly for a throwaway DB)."""
        if not v.strip():
            raise ValueError("Database path cannot be empty")
        return v.strip()


class LedgerSettings(BaseSettings):
    """Ledger engine behaviour."""

    model_config = SettingsConfigDict(
        env_prefix="LEDGER_",
        extra="ignore"
    )

    max_conflict_retries: int = Field(
        default=3,
        ge=1,
        le=20,
        description="Attempts per ledger operation before giving up on write conflicts"
    )
    retry_wait_multiplier: float = Field(
        default=0.05,
        ge=0.0,
        description="Exponential backoff multiplier between attempts (seconds)"
    )
    retry_wait_max: float = Field(
        default=1.0,
        ge=0.0,
        description="Upper bound on a single backoff wait (seconds)"
    )
    missing_account_policy: MissingAccountPolicy = Field(
        default=MissingAccountPolicy.ABORT,
        description="Behaviour when an updated/deleted transaction references a vanished account"
    )


class AppSettings(BaseSettings):
    """
    Main application settings.

    Loads configuration from environment variables and .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Environment
    app_environment: str = Field(
        default="development",
        description="Application environment"
    )
    debug_mode: bool = Field(
        default=False,
        description="Enable debug mode"
    )

    # Defaults for users without saved settings
    default_cycle_start_day: int = Field(
        default=1,
        ge=1,
        le=31,
        description="Day of month a budget cycle starts on"
    )
    default_currency: str = Field(
        default="USD ($)",
        description="Display currency label"
    )
    recent_transactions_limit: int = Field(
        default=5,
        ge=1,
        le=100,
        description="How many transactions the recent list shows"
    )


class Settings(BaseSettings):
    """
    Root settings container.

    Aggregates all sub-settings for easy access.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Note: These are loaded lazily to allow partial configuration

    @property
    def database(self) -> DatabaseSettings:
        return DatabaseSettings()

    @property
    def ledger(self) -> LedgerSettings:
        return LedgerSettings()

    @property
    def app(self) -> AppSettings:
        return AppSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Uses LRU cache to ensure settings are only loaded once.
    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()


def validate_all_settings() -> dict[str, bool]:
    """
    Validate all settings are properly configured.

    Returns a dict of {setting_name: is_valid}.
    Useful for startup checks.
    """
    results = {}

    settings = get_settings()

    for name in ("database", "ledger", "app"):
        try:
            _ = getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
