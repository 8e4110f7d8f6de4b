"""Configuration package."""

from family_ledger.config.settings import (
    AppSettings,
    DriveSettings,
    FamilySettings,
    GoogleSheetsSettings,
    Settings,
    SmtpSettings,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "AppSettings",
    "DriveSettings",
    "FamilySettings",
    "GoogleSheetsSettings",
    "Settings",
    "SmtpSettings",
    "get_settings",
    "validate_all_settings",
]
