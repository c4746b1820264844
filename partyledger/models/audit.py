"""
Audit Models for the ledger pipeline

Every mutation of a ledger is described by an audit event:
1. Complete traceability of inserts, edits and deletes
2. Debugging information when a unit of work rolls back
3. A record of every balance recalculation

DESIGN DECISION: Audit events are append-only and carry a correlation id
so that all events of one unit of work can be grouped together.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from partyledger.models.ledger import LedgerEntry, utcnow


class AuditEventType(str, Enum):
    """Types of events we audit."""
    # Accounts
    ACCOUNT_CREATED = "account_created"
    ACCOUNT_DELETED = "account_deleted"

    # Entries
    ENTRY_INSERTED = "entry_inserted"
    ENTRY_UPDATED = "entry_updated"
    ENTRY_DELETED = "entry_deleted"
    DUPLICATE_SKIPPED = "duplicate_skipped"
    DUPLICATE_REJECTED = "duplicate_rejected"
    PERMANENT_ENTRY_PROTECTED = "permanent_entry_protected"

    # Units of work
    BATCH_COMMITTED = "batch_committed"
    BATCH_ROLLED_BACK = "batch_rolled_back"
    BALANCE_RECALCULATED = "balance_recalculated"

    # Backups
    EXPORT_COMPLETED = "export_completed"
    EXPORT_FAILED = "export_failed"
    BACKUP_IMPORTED = "backup_imported"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class AuditEvent(BaseModel):
    """A single audit event."""

    event_id: UUID = Field(default_factory=uuid4)
    timestamp: datetime = Field(
        default_factory=utcnow,
        description="When the event occurred (UTC)"
    )

    event_type: AuditEventType
    severity: AuditSeverity = AuditSeverity.INFO

    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'entry', 'account', 'backup')"
    )
    entity_id: Optional[UUID] = None
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="Groups every event of one unit of work"
    )

    description: str = Field(..., max_length=500)
    details: dict[str, Any] = Field(default_factory=dict)
    error_message: Optional[str] = None

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": str(self.entity_id) if self.entity_id else None,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_message": self.error_message,
        }


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.entry_inserted(entry, correlation_id)
        event = AuditEventBuilder.batch_rolled_back("apply_batch", err, correlation_id)
    """

    @staticmethod
    def account_created(
        account_id: UUID,
        name: str,
        opening_balance: Optional[Decimal],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ACCOUNT_CREATED,
            entity_type="account",
            entity_id=account_id,
            correlation_id=correlation_id,
            description=f"Account created: {name}",
            details={
                "name": name,
                "opening_balance": str(opening_balance) if opening_balance is not None else None,
            },
        )

    @staticmethod
    def account_deleted(
        account_id: UUID,
        name: str,
        entries_deleted: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ACCOUNT_DELETED,
            severity=AuditSeverity.WARNING,
            entity_type="account",
            entity_id=account_id,
            correlation_id=correlation_id,
            description=f"Account deleted: {name} ({entries_deleted} entries)",
            details={"name": name, "entries_deleted": entries_deleted},
        )

    @staticmethod
    def entry_inserted(
        entry: LedgerEntry,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ENTRY_INSERTED,
            entity_type="entry",
            entity_id=entry.id,
            correlation_id=correlation_id,
            description=f"{entry.kind.value.capitalize()} inserted: ₹{entry.amount} on {entry.date}",
            details={
                "kind": entry.kind.value,
                "amount": str(entry.amount),
                "date": entry.date.isoformat(),
                "account_id": str(entry.account_id) if entry.account_id else None,
                "bill_number": entry.bill_number,
            },
        )

    @staticmethod
    def entry_updated(
        entry_id: UUID,
        changes: dict,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ENTRY_UPDATED,
            entity_type="entry",
            entity_id=entry_id,
            correlation_id=correlation_id,
            description=f"Entry updated: {', '.join(sorted(changes)) or 'no fields'}",
            details={key: str(value) for key, value in changes.items()},
        )

    @staticmethod
    def entry_deleted(
        entry: LedgerEntry,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ENTRY_DELETED,
            entity_type="entry",
            entity_id=entry.id,
            correlation_id=correlation_id,
            description=f"{entry.kind.value.capitalize()} deleted: ₹{entry.amount} on {entry.date}",
            details={"kind": entry.kind.value, "amount": str(entry.amount)},
        )

    @staticmethod
    def duplicate_skipped(
        reason: str,
        existing_id: UUID,
        line_index: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.DUPLICATE_SKIPPED,
            entity_type="entry",
            entity_id=existing_id,
            correlation_id=correlation_id,
            description=f"Line {line_index + 1} skipped as duplicate ({reason})",
            details={"reason": reason, "line_index": line_index},
        )

    @staticmethod
    def duplicate_rejected(
        reason: str,
        existing_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.DUPLICATE_REJECTED,
            severity=AuditSeverity.WARNING,
            entity_type="entry",
            entity_id=existing_id,
            correlation_id=correlation_id,
            description=f"Insert rejected as duplicate ({reason})",
            details={"reason": reason},
        )

    @staticmethod
    def permanent_entry_protected(
        entry_id: UUID,
        operation: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PERMANENT_ENTRY_PROTECTED,
            severity=AuditSeverity.WARNING,
            entity_type="entry",
            entity_id=entry_id,
            correlation_id=correlation_id,
            description=f"Refused to {operation} a permanent entry",
            details={"operation": operation},
        )

    @staticmethod
    def balance_recalculated(
        account_id: UUID,
        entry_count: int,
        balance: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BALANCE_RECALCULATED,
            severity=AuditSeverity.DEBUG,
            entity_type="account",
            entity_id=account_id,
            correlation_id=correlation_id,
            description=f"Balance recalculated over {entry_count} entries: ₹{balance}",
            details={"entry_count": entry_count, "balance": str(balance)},
        )

    @staticmethod
    def batch_committed(
        operation: str,
        command_count: int,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BATCH_COMMITTED,
            correlation_id=correlation_id,
            description=f"{operation} committed ({command_count} commands)",
            details={"operation": operation, "command_count": command_count},
        )

    @staticmethod
    def batch_rolled_back(
        operation: str,
        error: Exception,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BATCH_ROLLED_BACK,
            severity=AuditSeverity.ERROR,
            correlation_id=correlation_id,
            description=f"{operation} rolled back",
            error_message=str(error),
            details={"operation": operation, "error_type": type(error).__name__},
        )

    @staticmethod
    def export_completed(target: str, row_count: int) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXPORT_COMPLETED,
            entity_type="backup",
            description=f"Backup exported to {target}",
            details={"target": target, "row_count": row_count},
        )

    @staticmethod
    def export_failed(target: str, error: Exception) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXPORT_FAILED,
            severity=AuditSeverity.ERROR,
            entity_type="backup",
            description=f"Backup export to {target} failed",
            error_message=str(error),
            details={"target": target},
        )

    @staticmethod
    def backup_imported(version: str, row_counts: dict[str, int]) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BACKUP_IMPORTED,
            severity=AuditSeverity.WARNING,
            entity_type="backup",
            description=f"Backup version {version} imported",
            details={"version": version, "row_counts": row_counts},
        )
