"""Configuration package."""

from shop_ledger.config.settings import (
    AppSettings,
    GoogleSheetsSettings,
    LocalStoreSettings,
    Settings,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "AppSettings",
    "GoogleSheetsSettings",
    "LocalStoreSettings",
    "Settings",
    "get_settings",
    "validate_all_settings",
]
