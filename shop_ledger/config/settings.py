"""
Configuration Management for Shop Ledger

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
This makes it easy to see what external dependencies exist and
ensures all required configuration is validated at startup.
"""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class GoogleSheetsSettings(BaseSettings):
    """Google Sheets sync target configuration."""

    model_config = SettingsConfigDict(
        env_prefix="GOOGLE_SHEETS_",
        extra="ignore"
    )

    credentials_path: str = Field(
        ...,
        description="Path to Google service account credentials JSON"
    )
    accounting_spreadsheet_id: str = Field(
        ...,
        description="Spreadsheet backing the accounting panel"
    )
    store_spreadsheet_id: Optional[str] = Field(
        default=None,
        description="Spreadsheet backing the store panel (defaults to the accounting one)"
    )

    audit_sheet_name: str = Field(
        default="AuditLog",
        description="Name of the sheet for audit logs"
    )

    @field_validator('credentials_path')
    @classmethod
    def validate_credentials_path(cls, v: str) -> str:
        """Warn if credentials file doesn't exist (but don't fail - might be mounted later)."""
        if not Path(v).exists():
            import warnings
            warnings.warn(
                f"Google credentials file not found at {v}. "
                "Make sure it exists before running the application."
            )
        return v

    def spreadsheet_id_for(self, mode: str) -> str:
        """Pick the spreadsheet for a panel mode."""
        if mode == "store" and self.store_spreadsheet_id:
            return self.store_spreadsheet_id
        return self.accounting_spreadsheet_id


class LocalStoreSettings(BaseSettings):
    """Local key-value snapshot store configuration."""

    model_config = SettingsConfigDict(
        env_prefix="LEDGER_STORE_",
        extra="ignore"
    )

    directory: str = Field(
        default=".ledger",
        description="Directory holding local snapshot files"
    )
    filename_template: str = Field(
        default="ledger_{mode}.json",
        description="Snapshot file name; {mode} is replaced by the panel mode"
    )

    def path_for(self, mode: str) -> Path:
        return Path(self.directory) / self.filename_template.format(mode=mode)


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
    log_level: str = Field(
        default="INFO",
        description="Standard library log level for structured logs"
    )

    # Ledger
    sync_mode: str = Field(
        default="accounting",
        pattern="^(accounting|store)$",
        description="Which panel's data to load and sync"
    )
    default_safe_names: str = Field(
        default="Main Safe,Central Safe",
        description="Comma-separated safes created when none exist"
    )

    # Validation thresholds
    max_transaction_amount: float = Field(
        default=10000000.0,
        description="Maximum reasonable transaction amount (for sanity checking)"
    )
    future_date_tolerance_days: int = Field(
        default=7,
        description="How many days in the future a transaction date can be"
    )

    @property
    def default_safe_names_list(self) -> list[str]:
        """Get default safe names as a list."""
        return [name.strip() for name in self.default_safe_names.split(",") if name.strip()]


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

    # Sub-settings are loaded lazily to allow partial configuration

    @property
    def google_sheets(self) -> GoogleSheetsSettings:
        return GoogleSheetsSettings()

    @property
    def local_store(self) -> LocalStoreSettings:
        return LocalStoreSettings()

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

    try:
        _ = settings.google_sheets
        results["google_sheets"] = True
    except Exception as e:
        results["google_sheets"] = False
        results["google_sheets_error"] = str(e)

    try:
        _ = settings.local_store
        results["local_store"] = True
    except Exception as e:
        results["local_store"] = False
        results["local_store_error"] = str(e)

    try:
        _ = settings.app
        results["app"] = True
    except Exception as e:
        results["app"] = False
        results["app_error"] = str(e)

    return results
