"""
Backup Services Package

Versioned JSON envelopes of the whole store, and the debounced background
exporter that writes them after changes settle.
"""

from partyledger.services.backup.envelope import (
    BACKUP_VERSION,
    REQUIRED_TABLES,
    BackupEnvelope,
    BackupManager,
    parse_envelope,
    validate_envelope,
)
from partyledger.services.backup.scheduler import ExportScheduler

__all__ = [
    "BACKUP_VERSION",
    "REQUIRED_TABLES",
    "BackupEnvelope",
    "BackupManager",
    "ExportScheduler",
    "parse_envelope",
    "validate_envelope",
]
