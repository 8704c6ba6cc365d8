"""Configuration package."""

from ledger.config.settings import (
    AppSettings,
    LedgerSettings,
    NotificationSettings,
    SchedulerSettings,
    Settings,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "AppSettings",
    "LedgerSettings",
    "NotificationSettings",
    "SchedulerSettings",
    "Settings",
    "get_settings",
    "validate_all_settings",
]
