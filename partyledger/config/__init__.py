"""Configuration package."""

from partyledger.config.settings import (
    ExportSettings,
    LedgerSettings,
    Settings,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "ExportSettings",
    "LedgerSettings",
    "Settings",
    "get_settings",
    "validate_all_settings",
]
