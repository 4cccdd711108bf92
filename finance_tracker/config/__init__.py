"""Configuration package."""

from finance_tracker.config.settings import (
    AppSettings,
    DatabaseSettings,
    LedgerSettings,
    MissingAccountPolicy,
    Settings,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "AppSettings",
    "DatabaseSettings",
    "LedgerSettings",
    "MissingAccountPolicy",
    "Settings",
    "get_settings",
    "validate_all_settings",
]
