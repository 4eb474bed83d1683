"""
Configuration Management for Approval Ledger

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
This makes it easy to see what external dependencies exist and
ensures all required configuration is validated at startup.
"""

from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class GoogleSheetsSettings(BaseSettings):
    """Google Sheets storage configuration."""

    model_config = SettingsConfigDict(
        env_prefix="GOOGLE_SHEETS_",
        env_file=".env",
        env_file_encoding="utf-8",
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

    # One worksheet per collection
    accounts_sheet_name: str = Field(default="Accounts")
    categories_sheet_name: str = Field(default="Categories")
    budgets_sheet_name: str = Field(default="Budgets")
    transactions_sheet_name: str = Field(default="Transactions")
    audit_sheet_name: str = Field(default="AuditLog")
    users_sheet_name: str = Field(default="Users")

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


class EmailSettings(BaseSettings):
    """Outbound email identity. Delivery itself is a pluggable sender."""

    model_config = SettingsConfigDict(
        env_prefix="EMAIL_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    from_address: str = Field(
        default="no-reply@example.com",
        description="Sender address for verification and reset emails"
    )
    from_name: str = Field(default="Approval Ledger")
    base_url: str = Field(
        default="http://localhost:3000",
        description="Public base URL used to build links in emails"
    )
    app_name: str = Field(default="Approval Ledger")


class LoggingSettings(BaseSettings):
    """Structured logging configuration."""

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    level: str = Field(default="INFO")
    json_output: bool = Field(
        default=True,
        description="Render JSON lines (False renders coloured console output)"
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

    # Storage
    storage_backend: str = Field(
        default="memory",
        pattern="^(memory|google_sheets)$",
        description="Which EntityStore implementation to wire up"
    )

    # Money
    default_currency: str = Field(
        default="USD",
        pattern="^[A-Z]{3}$",
        description="Currency assigned to new transactions and budgets"
    )

    # Listings
    page_size: int = Field(
        default=20,
        ge=1,
        le=200,
        description="Rows per page for transaction and audit listings"
    )

    # Account verification
    verification_code_ttl_minutes: int = Field(
        default=15,
        ge=1,
        description="How long a 6-digit verification code stays valid"
    )
    verification_resend_cooldown_seconds: int = Field(
        default=60,
        ge=0,
        description="Minimum time between two verification emails"
    )
    password_reset_ttl_minutes: int = Field(
        default=60,
        ge=1,
        description="How long a password reset token stays valid"
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
    def google_sheets(self) -> GoogleSheetsSettings:
        return GoogleSheetsSettings()

    @property
    def email(self) -> EmailSettings:
        return EmailSettings()

    @property
    def logging(self) -> LoggingSettings:
        return LoggingSettings()

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

    for name in ("app", "email", "logging", "google_sheets"):
        try:
            getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
