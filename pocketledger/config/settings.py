"""
Configuration Management for Pocket Ledger

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
Values are read once by the factory in `pocketledger.orchestrator` and passed
explicitly into the ledger components, which never read settings themselves.
"""

from decimal import Decimal
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class MongoDBSettings(BaseSettings):
    """MongoDB ledger store configuration."""

    model_config = SettingsConfigDict(
        env_prefix="MONGODB_",
        extra="ignore"
    )

    uri: str = Field(
        default="mongodb://localhost:27017",
        description="MongoDB connection string (replica set required for transactions)"
    )
    database_name: str = Field(
        default="pocket_ledger",
        description="Database holding the ledger collections"
    )
    server_selection_timeout_ms: int = Field(
        default=5000,
        ge=100,
        description="How long to wait for a reachable server"
    )


class GoogleSheetsSettings(BaseSettings):
    """Google Sheets ledger store configuration."""

    model_config = SettingsConfigDict(
        env_prefix="GOOGLE_SHEETS_",
        extra="ignore"
    )

    credentials_path: str = Field(
        ...,
        description="Path to Google service account credentials JSON"
    )
    spreadsheet_id: str = Field(
        ...,
        description="ID of the Google Sheets spreadsheet to use"
    )

    # Sheet names within the spreadsheet
    budgets_sheet_name: str = Field(default="Budgets")
    transactions_sheet_name: str = Field(default="Transactions")
    days_sheet_name: str = Field(default="Days")
    journal_sheet_name: str = Field(default="Journal")

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


class LedgerSettings(BaseSettings):
    """Ledger engine tuning."""

    model_config = SettingsConfigDict(
        env_prefix="LEDGER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    storage_backend: Literal["memory", "mongodb", "google_sheets"] = Field(
        default="memory",
        description="Which ledger store to use"
    )
    reconcile_tolerance: Decimal = Field(
        default=Decimal("0.01"),
        ge=0,
        description="Drift allowed between stored and recomputed primary availability"
    )
    conflict_retry_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Attempts for retry-safe concurrency conflicts"
    )

    # Hierarchy caps
    weekly_divisor: int = Field(default=4, ge=1, description="weekly <= monthly / N")
    daily_from_monthly_divisor: int = Field(default=28, ge=1, description="daily <= monthly / N")
    daily_from_weekly_divisor: int = Field(default=7, ge=1, description="daily <= weekly / N")


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
    allow_weak_consistency: bool = Field(
        default=False,
        description=(
            "Permit the conditional-update fallback in production when the store "
            "has no multi-document transactions"
        )
    )

    @property
    def is_production(self) -> bool:
        return self.app_environment.strip().lower() == "production"


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
    def mongodb(self) -> MongoDBSettings:
        return MongoDBSettings()

    @property
    def google_sheets(self) -> GoogleSheetsSettings:
        return GoogleSheetsSettings()

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
    Only the store selected by LEDGER_STORAGE_BACKEND is required.
    """
    results = {}

    settings = get_settings()

    sections = {
        "app": lambda: settings.app,
        "ledger": lambda: settings.ledger,
    }
    try:
        backend = settings.ledger.storage_backend
    except Exception:
        backend = "memory"
    if backend == "mongodb":
        sections["mongodb"] = lambda: settings.mongodb
    elif backend == "google_sheets":
        sections["google_sheets"] = lambda: settings.google_sheets

    for name, load in sections.items():
        try:
            load()
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
