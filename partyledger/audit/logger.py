"""
Audit Logger

DESIGN DECISION: Every mutation of a ledger is logged.
This provides:
1. Complete traceability
2. Debugging capability when a unit of work rolls back
3. A history the caller can show next to a ledger

The audit logger:
- Never raises (a logging failure must not undo a committed mutation)
- Supports correlation IDs to trace all events of one unit of work
- Keeps a bounded in-process history of recent events
"""

import logging
from collections import deque
from decimal import Decimal
from typing import Optional
from uuid import UUID, uuid4

import structlog

from partyledger.models.audit import AuditEvent, AuditEventBuilder, AuditSeverity
from partyledger.models.ledger import LedgerEntry


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


def configure_logging(level: str = "INFO") -> None:
    """Set the stdlib level that structlog's filter_by_level honours."""
    logging.basicConfig(format="%(message)s", level=level.upper())
    logging.getLogger("partyledger").setLevel(level.upper())


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. A bounded in-process history (for callers and tests)
    """

    def __init__(self, history_size: int = 200):
        self._logger = structlog.get_logger("partyledger.audit")
        self._history: deque[AuditEvent] = deque(maxlen=history_size)

    @property
    def recent_events(self) -> list[AuditEvent]:
        """Most recent events, oldest first."""
        return list(self._history)

    def events_for(self, correlation_id: UUID) -> list[AuditEvent]:
        return [e for e in self._history if e.correlation_id == correlation_id]

    def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Returns False if the structured log write failed.
        """
        self._history.append(event)
        log_dict = event.to_log_dict()

        try:
            if event.severity is AuditSeverity.ERROR:
                self._logger.error("audit_event", **log_dict)
            elif event.severity is AuditSeverity.WARNING:
                self._logger.warning("audit_event", **log_dict)
            elif event.severity is AuditSeverity.DEBUG:
                self._logger.debug("audit_event", **log_dict)
            else:
                self._logger.info("audit_event", **log_dict)
        except Exception as e:
            # Swallowed on purpose: audit must not break the main flow
            logging.getLogger(__name__).warning("audit log write failed: %s", e)
            return False
        return True

    def log_account_created(
        self,
        account_id: UUID,
        name: str,
        opening_balance: Optional[Decimal],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        self.log(AuditEventBuilder.account_created(
            account_id=account_id,
            name=name,
            opening_balance=opening_balance,
            correlation_id=correlation_id,
        ))

    def log_account_deleted(
        self,
        account_id: UUID,
        name: str,
        entries_deleted: int,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        self.log(AuditEventBuilder.account_deleted(
            account_id=account_id,
            name=name,
            entries_deleted=entries_deleted,
            correlation_id=correlation_id,
        ))

    def log_entry_inserted(
        self,
        entry: LedgerEntry,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        self.log(AuditEventBuilder.entry_inserted(entry, correlation_id))

    def log_entry_updated(
        self,
        entry_id: UUID,
        changes: dict,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        self.log(AuditEventBuilder.entry_updated(entry_id, changes, correlation_id))

    def log_entry_deleted(
        self,
        entry: LedgerEntry,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        self.log(AuditEventBuilder.entry_deleted(entry, correlation_id))

    def log_duplicate_skipped(
        self,
        reason: str,
        existing_id: UUID,
        line_index: int,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        self.log(AuditEventBuilder.duplicate_skipped(
            reason=reason,
            existing_id=existing_id,
            line_index=line_index,
            correlation_id=correlation_id,
        ))

    def log_duplicate_rejected(
        self,
        reason: str,
        existing_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        self.log(AuditEventBuilder.duplicate_rejected(reason, existing_id, correlation_id))

    def log_permanent_entry_protected(
        self,
        entry_id: UUID,
        operation: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        self.log(AuditEventBuilder.permanent_entry_protected(entry_id, operation, correlation_id))

    def log_balance_recalculated(
        self,
        account_id: UUID,
        entry_count: int,
        balance: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        self.log(AuditEventBuilder.balance_recalculated(
            account_id=account_id,
            entry_count=entry_count,
            balance=balance,
            correlation_id=correlation_id,
        ))

    def log_batch_committed(
        self,
        operation: str,
        command_count: int,
        correlation_id: UUID,
    ) -> None:
        self.log(AuditEventBuilder.batch_committed(operation, command_count, correlation_id))

    def log_batch_rolled_back(
        self,
        operation: str,
        error: Exception,
        correlation_id: UUID,
    ) -> None:
        self.log(AuditEventBuilder.batch_rolled_back(operation, error, correlation_id))

    def log_export_completed(self, target: str, row_count: int) -> None:
        self.log(AuditEventBuilder.export_completed(target, row_count))

    def log_export_failed(self, target: str, error: Exception) -> None:
        self.log(AuditEventBuilder.export_failed(target, error))

    def log_backup_imported(self, version: str, row_counts: dict[str, int]) -> None:
        self.log(AuditEventBuilder.backup_imported(version, row_counts))


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a unit of work and pass it through every
    command executed inside it.
    """
    return uuid4()
