"""
Main Orchestrator for partyledger

This module ties together all the components and defines the
end-to-end flows for:
1. Text Import (shorthand block → parse → apply as one unit of work)
2. Preview (shorthand block → parse → validate, nothing written)
3. Account lifecycle (create with opening balance, cascading delete)
4. Backup (export envelope, import envelope, debounced background export)

DESIGN DECISION: The orchestrator enforces the boundaries:
- Nothing is written except through the mutator's unit of work
- A bad line is reported in place; it never aborts the rest of the block
- Every write is audited

This is the "glue" that ensures the system works correctly
even when individual components might behave unexpectedly.
"""

import asyncio
from datetime import date
from decimal import Decimal
from pathlib import Path
from typing import Literal, Optional, Union
from uuid import UUID

import structlog

from partyledger.audit import AuditLogger, configure_logging
from partyledger.config import ExportSettings, LedgerSettings, get_settings
from partyledger.ledger import BalanceRecalculator, DuplicateDetector, LedgerMutator
from partyledger.models import (
    OPENING_BALANCE_DESCRIPTION,
    Account,
    AccountSummary,
    BatchResult,
    EntryChanges,
    EntryKind,
    LedgerEntry,
    ParsedEntry,
    ParseFailed,
    ValidationResult,
)
from partyledger.parsing import (
    LineError,
    ParseContext,
    PartyDirectory,
    ShorthandParser,
)
from partyledger.queries import LedgerQueries
from partyledger.services.backup import BackupEnvelope, BackupManager, ExportScheduler
from partyledger.services.storage import InMemoryLedgerStore, LedgerStore, SQLiteLedgerStore
from partyledger.validation import EntryValidator


logger = structlog.get_logger()

OpeningType = Literal["debit", "credit"]


class LedgerService:
    """
    One object per open ledger.

    Flow for a pasted block:
    1. Parse   → every non-blank line becomes a ParsedEntry or a LineError
    2. Preview → (optional) two-stage validation, nothing written
    3. Import  → parsed entries applied in one unit of work; line errors are
                 merged back in as ParseFailed items at their line index

    CRITICAL: The store is injected. Nothing here opens a global handle.
    """

    def __init__(
        self,
        store: LedgerStore,
        settings: Optional[LedgerSettings] = None,
        audit_logger: Optional[AuditLogger] = None,
        scheduler_settings: Optional[ExportSettings] = None,
    ):
        self.settings = settings or get_settings().ledger
        self.store = store
        self.audit = audit_logger or AuditLogger(self.settings.audit_history_size)

        self.directory = PartyDirectory(store)
        self.detector = DuplicateDetector(store, self.settings.duplicate_tolerance)
        self.recalculator = BalanceRecalculator(store, self.audit)
        self.mutator = LedgerMutator(
            store, self.detector, self.recalculator, self.directory, self.audit
        )
        self.validator = EntryValidator(self.detector, self.settings)
        self.queries = LedgerQueries(store)
        self.backups = BackupManager(store, self.mutator)

        self.scheduler: Optional[ExportScheduler] = None
        if scheduler_settings is not None and scheduler_settings.enabled:
            self.scheduler = ExportScheduler.from_settings(
                self.backups, scheduler_settings, self.audit
            )
            self.mutator.subscribe(self.scheduler.mark_changes)

    # -------------------------------------------------------------------------
    # Shorthand text
    # -------------------------------------------------------------------------

    async def parse_text(
        self,
        text: str,
        context_date: date,
        context: ParseContext = ParseContext.DAYBOOK,
    ) -> list[Union[ParsedEntry, LineError]]:
        """Parse a block against the current account names."""
        parser = ShorthandParser(await self.directory.load())
        return parser.parse_block(text, context_date, context)

    async def preview_text(
        self,
        text: str,
        context_date: date,
        account_id: Optional[UUID] = None,
        context: ParseContext = ParseContext.DAYBOOK,
        today: Optional[date] = None,
    ) -> tuple[list[Union[ParsedEntry, LineError]], ValidationResult]:
        """
        Parse and validate a block without writing anything.

        Returns:
            (outcomes, validation result); validation covers the parsed lines
        """
        known = await self.directory.load()
        outcomes = ShorthandParser(known).parse_block(text, context_date, context)
        parsed = [
            (index, outcome) for index, outcome in enumerate(outcomes)
            if isinstance(outcome, ParsedEntry)
        ]
        result = await self.validator.validate(
            parsed, known=known, account_id=account_id, today=today
        )
        return outcomes, result

    async def import_text(
        self,
        text: str,
        context_date: date,
        account_id: Optional[UUID] = None,
        context: ParseContext = ParseContext.DAYBOOK,
    ) -> BatchResult:
        """
        Parse a block and apply it as one unit of work.

        Items line up with the block's non-blank lines. Lines that fail to
        parse are reported as ParseFailed; they never abort the others.

        Raises:
            NotFoundError: If account_id doesn't exist
            StorageError: If the unit failed and was rolled back
        """
        outcomes = await self.parse_text(text, context_date, context)

        parsed: list[ParsedEntry] = []
        indexes: list[int] = []
        failures: list[ParseFailed] = []
        for index, outcome in enumerate(outcomes):
            if isinstance(outcome, LineError):
                failures.append(ParseFailed(
                    line_index=index, line=outcome.line, message=outcome.message
                ))
            else:
                parsed.append(outcome)
                indexes.append(index)

        result = await self.mutator.apply_batch(account_id, parsed, indexes)
        if not failures:
            return result

        items = sorted([*result.items, *failures], key=lambda item: item.line_index)
        summary = result.summary.model_copy(update={"failed": result.summary.failed + len(failures)})
        logger.info("import_parse_failures", failed=len(failures))
        return BatchResult(items=items, summary=summary)

    # -------------------------------------------------------------------------
    # Single entries
    # -------------------------------------------------------------------------

    async def add_entry(
        self,
        entry: ParsedEntry,
        account_id: Optional[UUID] = None,
        force: bool = False,
    ) -> LedgerEntry:
        return await self.mutator.add_entry(account_id, entry, force=force)

    async def edit_entry(
        self,
        entry_id: UUID,
        changes: EntryChanges,
        confirm_permanent: bool = False,
    ) -> LedgerEntry:
        return await self.mutator.edit_entry(entry_id, changes, confirm_permanent)

    async def delete_entry(self, entry_id: UUID) -> None:
        await self.mutator.delete_entry(entry_id)

    # -------------------------------------------------------------------------
    # Accounts
    # -------------------------------------------------------------------------

    async def create_account(
        self,
        name: str,
        credit_limit: Decimal = Decimal("0"),
        opening_balance: Optional[Decimal] = None,
        opening_type: OpeningType = "debit",
        opening_date: Optional[date] = None,
        contact_person: Optional[str] = None,
        phone: Optional[str] = None,
        address: Optional[str] = None,
        gst_number: Optional[str] = None,
    ) -> Account:
        """
        Create an account, optionally with a permanent opening balance.

        A "debit" opening balance is owed by the party (booked as a bill);
        a "credit" one is owed to the party (booked as a payment).

        Raises:
            AccountExistsError: If the name is taken (case-insensitive)
        """
        account = Account(
            name=name,
            credit_limit=credit_limit,
            contact_person=contact_person,
            phone=phone,
            address=address,
            gst_number=gst_number,
        )

        opening = None
        if opening_balance is not None and opening_balance > 0:
            opening = LedgerEntry(
                date=opening_date or date.today(),
                kind=EntryKind.BILL if opening_type == "debit" else EntryKind.PAYMENT,
                amount=opening_balance,
                description=OPENING_BALANCE_DESCRIPTION,
                account_id=account.id,
                is_permanent=True,
            )

        return await self.mutator.create_account(account, opening)

    async def delete_account(self, account_id: UUID, force: bool = False) -> int:
        return await self.mutator.delete_account(account_id, force=force)

    async def account_summary(self, account_id: UUID) -> AccountSummary:
        return await self.queries.account_summary(account_id)

    async def recalculate(self, account_id: Optional[UUID] = None) -> dict[UUID, Decimal]:
        return await self.mutator.recalculate(account_id)

    # -------------------------------------------------------------------------
    # Backups
    # -------------------------------------------------------------------------

    async def export_backup(self, target: Optional[Union[str, Path]] = None) -> BackupEnvelope:
        """Snapshot the store, writing it to `target` when one is given."""
        envelope = await self.backups.snapshot()
        if target is not None:
            rows = await asyncio.to_thread(self.backups.write, envelope, Path(target))
            self.audit.log_export_completed(str(target), rows)
        return envelope

    async def import_backup(self, source: Union[str, Path, BackupEnvelope]) -> dict[str, int]:
        """
        Replace every row with a backup's rows.

        Raises:
            BackupError: If the backup is invalid or any row fails
        """
        envelope = source if isinstance(source, BackupEnvelope) else self.backups.load(Path(source))
        return await self.backups.restore(envelope)

    async def close(self) -> None:
        """Flush pending exports and close the store."""
        if self.scheduler is not None:
            await self.scheduler.close(flush=True)
        await self.store.close()


def create_ledger_service(
    settings: Optional[LedgerSettings] = None,
    export_settings: Optional[ExportSettings] = None,
) -> LedgerService:
    """
    Factory function to create a fully wired LedgerService.

    Args:
        settings: Ledger settings; defaults to the environment's.
                  A database_path selects SQLite, otherwise the store
                  lives in memory.
        export_settings: Background export settings; defaults to the
                  environment's. Export only runs when enabled.

    Returns:
        LedgerService
    """
    app_settings = get_settings()
    settings = settings or app_settings.ledger
    export_settings = export_settings or app_settings.export

    configure_logging(settings.log_level)

    if settings.database_path:
        store: LedgerStore = SQLiteLedgerStore(settings.database_path)
    else:
        store = InMemoryLedgerStore()

    logger.info(
        "ledger_service_created",
        store=type(store).__name__,
        export_enabled=export_settings.enabled,
    )
    return LedgerService(store, settings, scheduler_settings=export_settings)
