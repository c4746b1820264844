"""
Data Models Package

This package contains all Pydantic models used by the ledger pipeline.
All data flowing through the system must conform to these schemas.
"""

from partyledger.models.ledger import (
    OPENING_BALANCE_DESCRIPTION,
    Account,
    EntryChanges,
    EntryKind,
    ExpenseCategory,
    LedgerEntry,
    ParsedEntry,
    PaymentMode,
    gst_split,
    to_amount,
)
from partyledger.models.results import (
    AccountSummary,
    BatchItem,
    BatchResult,
    BatchSummary,
    DuplicateMatch,
    DuplicateReason,
    EntrySnapshot,
    Inserted,
    ParseFailed,
    SkippedDuplicate,
    ValidationIssue,
    ValidationResult,
)
from partyledger.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Ledger models
    "OPENING_BALANCE_DESCRIPTION",
    "Account",
    "EntryChanges",
    "EntryKind",
    "ExpenseCategory",
    "LedgerEntry",
    "ParsedEntry",
    "PaymentMode",
    "gst_split",
    "to_amount",
    # Result models
    "AccountSummary",
    "BatchItem",
    "BatchResult",
    "BatchSummary",
    "DuplicateMatch",
    "DuplicateReason",
    "EntrySnapshot",
    "Inserted",
    "ParseFailed",
    "SkippedDuplicate",
    "ValidationIssue",
    "ValidationResult",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
