"""
Configuration Management for partyledger

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
This makes it easy to see every tunable of the pipeline and ensures all
configuration is validated at startup.
"""

from decimal import Decimal
from functools import lru_cache
from pathlib import Path
from typing import Any, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class LedgerSettings(BaseSettings):
    """Ledger core configuration."""

    model_config = SettingsConfigDict(
        env_prefix="LEDGER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    database_path: Optional[str] = Field(
        default=None,
        description="SQLite database file; unset means an in-memory store"
    )

    # Matching
    duplicate_tolerance: Decimal = Field(
        default=Decimal("0.01"),
        gt=0,
        description="Amounts closer than this are treated as equal when matching duplicates"
    )

    # Validation thresholds
    future_date_tolerance_days: int = Field(
        default=7,
        ge=0,
        description="How many days in the future an entry date can be"
    )
    max_entry_amount: Decimal = Field(
        default=Decimal("10000000"),
        description="Maximum reasonable entry amount (for sanity checking)"
    )

    # Logging
    log_level: str = Field(default="INFO")
    audit_history_size: int = Field(default=200, ge=0)

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        allowed = {"DEBUG", "INFO", "WARNING", "ERROR"}
        if v.upper() not in allowed:
            raise ValueError(f"Unsupported log level: {v}. Allowed: {allowed}")
        return v.upper()


class ExportSettings(BaseSettings):
    """Background backup export configuration."""

    model_config = SettingsConfigDict(
        env_prefix="LEDGER_EXPORT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    enabled: bool = Field(default=False)
    path: str = Field(
        default="ledger-backup.json",
        description="Where the JSON backup envelope is written"
    )
    quiescence_seconds: float = Field(
        default=5.0,
        ge=0.0,
        description="Wait this long after the last change before exporting"
    )
    max_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Write attempts per export before giving up until the next change"
    )

    @property
    def target(self) -> Path:
        return Path(self.path)


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
    def export(self) -> ExportSettings:
        return ExportSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Uses LRU cache to ensure settings are only loaded once.
    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()


def validate_all_settings() -> dict[str, Any]:
    """
    Validate all settings are properly configured.

    Returns a dict of {setting_name: is_valid}, plus {setting_name}_error
    messages for the groups that failed.
    Useful for startup checks.
    """
    results = {}

    settings = get_settings()

    try:
        _ = settings.ledger
        results["ledger"] = True
    except Exception as e:
        results["ledger"] = False
        results["ledger_error"] = str(e)

    try:
        _ = settings.export
        results["export"] = True
    except Exception as e:
        results["export"] = False
        results["export_error"] = str(e)

    return results
