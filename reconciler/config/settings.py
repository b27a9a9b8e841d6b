"""
Configuration Management for the Reconciliation Engine

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
Thresholds that the engine evaluates against (retention window, adjustment
bands, sweep interval) live next to the external service settings so the
whole runtime contract is visible in one place and validated at startup.
"""

from datetime import timedelta
from decimal import Decimal, InvalidOperation
from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class GoogleSheetsSettings(BaseSettings):
    """Google Sheets storage configuration."""

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

    # Worksheet names within the spreadsheet
    transactions_sheet_name: str = Field(
        default="Transactions",
        description="Name of the sheet for transactions"
    )
    budgets_sheet_name: str = Field(
        default="Budgets",
        description="Name of the sheet for budgets"
    )
    goals_sheet_name: str = Field(
        default="Goals",
        description="Name of the sheet for savings goals"
    )
    notifications_sheet_name: str = Field(
        default="Notifications",
        description="Name of the sheet for notifications"
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


class CurrencySettings(BaseSettings):
    """Currency conversion configuration."""

    model_config = SettingsConfigDict(
        env_prefix="CURRENCY_",
        extra="ignore"
    )

    base_currency: str = Field(
        default="USD",
        min_length=3,
        max_length=3,
        description="Currency all budgets and goals are tracked in"
    )
    static_rates: str = Field(
        default="",
        description="Comma-separated CODE=rate pairs, rate expressed in base currency"
    )
    retry_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Attempts before a conversion degrades to rate 1.0"
    )
    retry_wait_seconds: float = Field(
        default=1.0,
        ge=0.0,
        le=30.0,
        description="Base wait between conversion attempts"
    )

    @field_validator('base_currency')
    @classmethod
    def normalize_base_currency(cls, v: str) -> str:
        return v.upper()

    @property
    def rates_map(self) -> dict[str, Decimal]:
        """Parse static rates into {CODE: rate}. Malformed pairs are rejected."""
        rates: dict[str, Decimal] = {}
        for pair in self.static_rates.split(","):
            pair = pair.strip()
            if not pair:
                continue
            code, _, raw_rate = pair.partition("=")
            try:
                rates[code.strip().upper()] = Decimal(raw_rate.strip())
            except InvalidOperation:
                raise ValueError(f"Invalid exchange rate entry: {pair!r}")
        return rates


class ReconciliationSettings(BaseSettings):
    """Thresholds and timing for the reconciliation engine."""

    model_config = SettingsConfigDict(
        env_prefix="RECONCILER_",
        extra="ignore"
    )

    # Scheduler
    sweep_interval_seconds: int = Field(
        default=86400,
        ge=1,
        description="Seconds between periodic sweeps (daily by default)"
    )
    run_sweep_on_start: bool = Field(
        default=False,
        description="Run one sweep immediately when the scheduler starts"
    )

    # Notification lifecycle
    notification_retention_days: int = Field(
        default=30,
        ge=1,
        description="Age after which unreferenced notifications are pruned"
    )
    adjustment_window_days: int = Field(
        default=30,
        ge=1,
        description="At most one budget adjustment recommendation per budget in this window"
    )

    # Budget adjustment recommendation bands
    adjustment_increase_percent: Decimal = Field(
        default=Decimal("120"),
        gt=0,
        description="Spend percentage at or above which an increase is recommended"
    )
    adjustment_decrease_percent: Decimal = Field(
        default=Decimal("50"),
        gt=0,
        description="Spend percentage below which a decrease may be recommended"
    )
    adjustment_decrease_days_remaining: int = Field(
        default=5,
        ge=0,
        description="A decrease is only recommended this close to the budget end"
    )

    @property
    def sweep_interval(self) -> timedelta:
        return timedelta(seconds=self.sweep_interval_seconds)

    @property
    def retention_window(self) -> timedelta:
        return timedelta(days=self.notification_retention_days)

    @property
    def adjustment_window(self) -> timedelta:
        return timedelta(days=self.adjustment_window_days)


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
        pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$",
        description="Minimum level for local structured logs"
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

    # Sub-settings are loaded lazily so the engine can run with
    # partial configuration (e.g. without Google Sheets).

    @property
    def google_sheets(self) -> GoogleSheetsSettings:
        return GoogleSheetsSettings()

    @property
    def currency(self) -> CurrencySettings:
        return CurrencySettings()

    @property
    def reconciliation(self) -> ReconciliationSettings:
        return ReconciliationSettings()

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

    Returns a dict of {setting_name: is_valid} plus
    {setting_name}_error entries for the failures.
    Useful for startup checks.
    """
    results = {}

    settings = get_settings()

    sections = {
        "google_sheets": lambda: settings.google_sheets,
        "currency": lambda: settings.currency.rates_map,
        "reconciliation": lambda: settings.reconciliation,
        "app": lambda: settings.app,
    }

    for name, load in sections.items():
        try:
            load()
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
