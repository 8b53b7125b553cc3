"""Configuration package."""

from pocketledger.config.settings import (
    AppSettings,
    GoogleSheetsSettings,
    LedgerSettings,
    MongoDBSettings,
    Settings,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "AppSettings",
    "GoogleSheetsSettings",
    "LedgerSettings",
    "MongoDBSettings",
    "Settings",
    "get_settings",
    "validate_all_settings",
]
