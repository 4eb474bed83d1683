"""Configuration package."""

from approval_ledger.config.settings import (
    AppSettings,
    EmailSettings,
    GoogleSheetsSettings,
    LoggingSettings,
    Settings,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "AppSettings",
    "EmailSettings",
    "GoogleSheetsSettings",
    "LoggingSettings",
    "Settings",
    "get_settings",
    "validate_all_settings",
]
