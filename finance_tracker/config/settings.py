"""
Configuration Management for Finance Tracker

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
This makes it easy to see what the ledger depends on and
ensures all required configuration is validated at startup.
"""

from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseSettings(BaseSettings):
    """SQLite ledger store configuration."""

    model_config = SettingsConfigDict(
        env_prefix="LEDGER_DB_",
        extra="ignore"
    )

    path: str = Field(
        default="data/finance.db",
        description="Path to the SQLite database file (':memory:' for a throwaway store)"
    )
    busy_timeout_ms: int = Field(
        default=30000,
        ge=0,
        description="How long SQLite waits on a locked database"
    )
    connect_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Connection attempts before giving up"
    )

    @field_validator('path')
    @classmethod
    def validate_path(cls, v: str) -> str:
        """Reject directories; the file itself is created on first connect."""
        if v != ":memory:" and Path(v).is_dir():
            raise ValueError(f"Database path points to a directory: {v}")
        return v

    @property
    def is_memory(self) -> bool:
        return self.path == ":memory:"


class LedgerSettings(BaseSettings):
    """Behaviour switches for the balance mutator and aggregator."""

    model_config = SettingsConfigDict(
        env_prefix="LEDGER_",
        extra="ignore"
    )

    # A balance update to the same value still bumps editDate when True
    touch_on_zero_balance_change: bool = Field(
        default=True,
        description="Bump editDate on a balance update that changes nothing"
    )

    # Evolution chart
    evolution_max_points: int = Field(
        default=30,
        ge=1,
        le=366,
        description="Maximum number of points in a currency evolution series"
    )
    evolution_top_accounts: int = Field(
        default=3,
        ge=1,
        le=20,
        description="Accounts listed per evolution data point"
    )

    # Default notes for generated log entries
    balance_adjustment_note: str = Field(
        default="Balance adjustment",
        description="Note used when a manual balance correction has no note"
    )
    debt_payment_note: str = Field(
        default="Debt payment",
        description="Note used when a debt payment has no note"
    )
    initial_balance_note: str = Field(
        default="Initial balance",
        description="Note on the transaction recording an account's opening balance"
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
        description="Log everything and show error details in the dashboard"
    )
    log_level: str = Field(
        default="INFO",
        pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$",
        description="Minimum level for local structured logs"
    )

    # Audit
    persist_audit_events: bool = Field(
        default=True,
        description="Write audit events to the audit_log table"
    )

    # The dashboard has no login of its own; the auth layer supplies this
    app_user_id: str = Field(
        default="local-user",
        min_length=1,
        description="User id the dashboard acts as"
    )

    @property
    def effective_log_level(self) -> str:
        """Debug mode overrides the configured level."""
        return "DEBUG" if self.debug_mode else self.log_level

    @property
    def is_production(self) -> bool:
        return self.app_environment.lower() == "production"


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
    def database(self) -> DatabaseSettings:
        return DatabaseSettings()

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
    Useful for startup checks.
    """
    results = {}

    settings = get_settings()

    for name in ("database", "ledger", "app"):
        try:
            getattr(settings, name)
            results[name] = True
        except ValueError as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
