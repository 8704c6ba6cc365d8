"""
Configuration Management for Wallet Ledger

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
This makes it easy to see what external dependencies exist and
ensures all required configuration is validated at startup.
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class LedgerSettings(BaseSettings):
    """Ledger engine configuration."""

    model_config = SettingsConfigDict(
        env_prefix="LEDGER_",
        extra="ignore"
    )

    currency: str = Field(
        default="INR",
        min_length=3,
        max_length=3,
        description="Single currency used by this deployment"
    )
    cache_ttl_seconds: int = Field(
        default=300,
        ge=0,
        description="Lifetime of cached GET responses"
    )
    default_page_limit: int = Field(
        default=10,
        ge=1,
        description="Page size when the caller does not send one"
    )
    max_page_limit: int = Field(
        default=100,
        ge=1,
        description="Largest page size a caller may request"
    )
    default_alert_threshold: float = Field(
        default=0.8,
        ge=0.0,
        le=1.0,
        description="Budget alert threshold used when none is given"
    )

    # Sanity thresholds (warnings only, never rejections)
    max_transaction_amount: float = Field(
        default=10000000.0,
        description="Amounts above this are flagged as suspicious"
    )
    future_date_tolerance_days: int = Field(
        default=365,
        ge=0,
        description="How far in the future a transaction date may be before it is flagged"
    )

    @field_validator('currency')
    @classmethod
    def normalize_currency(cls, v: str) -> str:
        return v.upper()


class SchedulerSettings(BaseSettings):
    """Recurring-rule scheduler configuration."""

    model_config = SettingsConfigDict(
        env_prefix="SCHEDULER_",
        extra="ignore"
    )

    enabled: bool = Field(
        default=True,
        description="Run the periodic tick inside the API process"
    )
    interval_seconds: int = Field(
        default=3600,
        ge=1,
        description="Seconds between two ticks"
    )
    tick_timeout_seconds: float = Field(
        default=300.0,
        gt=0,
        description="A tick running longer than this is abandoned and logged"
    )
    idempotent_materialization: bool = Field(
        default=True,
        description="Skip materializing a rule that already produced a transaction for its current slot"
    )
    anchor_to_schedule: bool = Field(
        default=False,
        description="Advance next_run_at from the previous slot instead of from the tick time"
    )


class NotificationSettings(BaseSettings):
    """SMTP transport for budget alerts."""

    model_config = SettingsConfigDict(
        env_prefix="SMTP_",
        extra="ignore"
    )

    enabled: bool = Field(
        default=False,
        description="Deliver alerts over SMTP (otherwise they are only logged)"
    )
    host: str = Field(
        default="smtp.mailtrap.io",
        description="SMTP server host"
    )
    port: int = Field(
        default=2525,
        ge=1,
        le=65535,
        description="SMTP server port"
    )
    username: Optional[str] = Field(
        default=None,
        description="SMTP login"
    )
    password: Optional[str] = Field(
        default=None,
        description="SMTP password"
    )
    sender: str = Field(
        default="Wallet Ledger <notifications@wallet-ledger.local>",
        description="From header for alert emails"
    )
    use_tls: bool = Field(
        default=True,
        description="Upgrade the connection with STARTTLS"
    )
    timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        description="Socket timeout for one delivery attempt"
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
    debug_mode: bool = Field(
        default=False,
        description="Enable debug mode"
    )
    log_level: str = Field(
        default="INFO",
        description="Minimum level written by the structured logger"
    )

    # HTTP
    api_prefix: str = Field(
        default="/api",
        description="Prefix mounted in front of every resource route"
    )
    cors_origins: str = Field(
        default="*",
        description="Comma-separated list of allowed CORS origins"
    )

    @property
    def cors_origins_list(self) -> list[str]:
        """Get allowed origins as a list."""
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]


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

    @property
    def ledger(self) -> LedgerSettings:
        return LedgerSettings()

    @property
    def scheduler(self) -> SchedulerSettings:
        return SchedulerSettings()

    @property
    def notifications(self) -> NotificationSettings:
        return NotificationSettings()

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

    for name in ("ledger", "scheduler", "notifications", "app"):
        try:
            getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
