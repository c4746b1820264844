"""
Ledger Mutator

Every write to the ledger goes through here, one unit of work at a time:

    lock -> begin -> commands... -> recompute touched accounts -> commit
                         \\-- any failure --> rollback, re-raise

DESIGN DECISIONS:
- A single writer lock is held for the whole unit of work. The store's
  transaction is store-wide, so two units must never overlap.
- Bulk import skips duplicates silently (idempotent re-imports); single
  inserts refuse them with DuplicateError unless forced.
- Domain errors (LedgerError) propagate as themselves; anything else is
  wrapped in StorageError. Either way nothing partial is ever committed.
- Subscribers are told after each successful commit (the export scheduler
  listens here). A failing subscriber never affects the committed unit.
"""

import asyncio
from contextlib import asynccontextmanager
from decimal import Decimal
from typing import AsyncIterator, Callable, Optional, Sequence
from uuid import UUID

import structlog
from pydantic import ValidationError

from partyledger.audit import AuditLogger
from partyledger.errors import (
    AccountExistsError,
    DuplicateError,
    LedgerError,
    NotFoundError,
    ParseError,
    PermanentEntryError,
    StorageError,
    UnknownAccountError,
)
from partyledger.ledger.commands import DeleteRow, InsertRow, UnitOfWork, UpdateRow
from partyledger.ledger.duplicates import DuplicateDetector
from partyledger.ledger.recalculator import BalanceRecalculator, signed_amount
from partyledger.models import (
    Account,
    BatchItem,
    BatchResult,
    BatchSummary,
    EntryChanges,
    Inserted,
    LedgerEntry,
    ParsedEntry,
    ParseFailed,
    SkippedDuplicate,
)
from partyledger.models.ledger import utcnow
from partyledger.parsing.directory import KnownAccounts, PartyDirectory
from partyledger.parsing.shorthand import describe_validation_error
from partyledger.services.storage import ACCOUNTS, ENTRIES, LedgerStore


logger = structlog.get_logger()

CommitListener = Callable[[str], None]


class LedgerMutator:
    """
    Applies entries, edits and deletes atomically.

    Usage:
        mutator = LedgerMutator(store, detector, recalculator, directory)
        result = await mutator.apply_batch(account_id, parsed_entries)
    """

    def __init__(
        self,
        store: LedgerStore,
        detector: DuplicateDetector,
        recalculator: BalanceRecalculator,
        directory: Optional[PartyDirectory] = None,
        audit: Optional[AuditLogger] = None,
    ):
        self.store = store
        self.detector = detector
        self.recalculator = recalculator
        self.directory = directory or PartyDirectory(store)
        self.audit = audit or AuditLogger()
        self._lock = asyncio.Lock()
        self._listeners: list[CommitListener] = []

    # -------------------------------------------------------------------------
    # Unit of work
    # -------------------------------------------------------------------------

    def subscribe(self, listener: CommitListener) -> None:
        """Call `listener(operation)` after every successful commit."""
        self._listeners.append(listener)

    def _notify(self, operation: str) -> None:
        for listener in self._listeners:
            try:
                listener(operation)
            except Exception:
                logger.exception("commit_listener_failed", operation=operation)

    async def _rollback(self, uow: UnitOfWork, error: BaseException) -> None:
        if self.store.in_transaction:
            try:
                await self.store.rollback()
            except StorageError:
                logger.exception(
                    "rollback_failed",
                    operation=uow.operation,
                    correlation_id=str(uow.correlation_id),
                )
        self.audit.log_batch_rolled_back(uow.operation, error, uow.correlation_id)

    @asynccontextmanager
    async def unit_of_work(self, operation: str) -> AsyncIterator[UnitOfWork]:
        """
        Hold the writer lock and one transaction for the body.

        Raises:
            LedgerError: Domain errors raised in the body, after rollback
            StorageError: Any other failure, after rollback
        """
        async with self._lock:
            uow = UnitOfWork(self.store, operation)
            await self.store.begin()
            try:
                yield uow
                await self.store.commit()
            except LedgerError as e:
                await self._rollback(uow, e)
                raise
            except asyncio.CancelledError as e:
                await self._rollback(uow, e)
                raise
            except Exception as e:
                await self._rollback(uow, e)
                raise StorageError(f"{operation} failed: {e}") from e

            self.audit.log_batch_committed(operation, len(uow.executed), uow.correlation_id)

        if uow.executed:
            self._notify(operation)

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    async def _require_account(self, account_id: UUID) -> Account:
        row = await self.store.get(ACCOUNTS, account_id)
        if row is None:
            raise NotFoundError(f"Account not found: {account_id}")
        return Account.from_row(row)

    async def _require_entry(self, entry_id: UUID) -> LedgerEntry:
        row = await self.store.get(ENTRIES, entry_id)
        if row is None:
            raise NotFoundError(f"Entry not found: {entry_id}")
        return LedgerEntry.from_row(row)

    async def _insert_entry(self, uow: UnitOfWork, entry: LedgerEntry) -> LedgerEntry:
        row = await uow.run(InsertRow(table=ENTRIES, row=entry.to_row()))
        inserted = LedgerEntry.from_row(row)
        self.audit.log_entry_inserted(inserted, uow.correlation_id)
        return inserted

    @staticmethod
    def _target_account(
        account_id: Optional[UUID],
        parsed: ParsedEntry,
        known: Optional[KnownAccounts],
    ) -> tuple[bool, Optional[UUID]]:
        """(resolved, account id) for a parsed entry. Day-book kinds never attach."""
        if not parsed.kind.affects_account:
            return True, None
        if account_id is not None:
            return True, account_id
        target = known.resolve(parsed.account_name) if known else None
        return target is not None, target

    # -------------------------------------------------------------------------
    # Bulk
    # -------------------------------------------------------------------------

    async def apply_batch(
        self,
        account_id: Optional[UUID],
        entries: Sequence[ParsedEntry],
        line_indexes: Optional[Sequence[int]] = None,
    ) -> BatchResult:
        """
        Apply a batch of parsed entries as one unit of work.

        Args:
            account_id: Account receiving bills/payments; None books them to
                the account their `account_name` names
            entries: Parsed entries, in input order
            line_indexes: Input line number of each entry (defaults to its
                position) so results line up with the source text

        Returns:
            Items ordered by line index, and a summary

        Raises:
            NotFoundError: If account_id doesn't exist
            StorageError: If the unit failed and was rolled back
        """
        indexes = list(line_indexes) if line_indexes is not None else list(range(len(entries)))
        if len(indexes) != len(entries):
            raise ValueError("line_indexes must be parallel to entries")

        # Stable: same-day entries keep their input order
        ordered = sorted(zip(indexes, entries), key=lambda pair: pair[1].date)
        known = await self.directory.load() if account_id is None else None

        items: dict[int, BatchItem] = {}
        touched: set[UUID] = set()
        if account_id is not None:
            touched.add(account_id)

        async with self.unit_of_work("apply_batch") as uow:
            if account_id is not None:
                await self._require_account(account_id)

            for line_index, parsed in ordered:
                resolved, target = self._target_account(account_id, parsed, known)
                if not resolved:
                    items[line_index] = ParseFailed(
                        line_index=line_index,
                        line=parsed.line or "",
                        message=f"Unknown account: {parsed.account_name}",
                    )
                    continue

                try:
                    candidate = LedgerEntry.from_parsed(parsed, target)
                except ValidationError as e:
                    items[line_index] = ParseFailed(
                        line_index=line_index,
                        line=parsed.line or "",
                        message=describe_validation_error(e),
                    )
                    continue

                match = await self.detector.find_duplicate(target, parsed)
                if match is not None:
                    items[line_index] = SkippedDuplicate(
                        line_index=line_index,
                        candidate=match.candidate,
                        existing=match.existing,
                        reason=match.reason,
                    )
                    self.audit.log_duplicate_skipped(
                        match.reason.value, match.existing_id, line_index, uow.correlation_id
                    )
                    continue

                inserted = await self._insert_entry(uow, candidate)
                items[line_index] = Inserted(line_index=line_index, entry=inserted)
                if target is not None:
                    touched.add(target)

            by_id: dict[UUID, Decimal] = {}
            balances: dict[str, Decimal] = {}
            for target in sorted(touched, key=str):
                account = await self._require_account(target)
                by_id[target] = await self.recalculator.recompute(target, uow)
                balances[account.name] = by_id[target]

            # Pick up the running balances written by the recalculation
            for line_index, item in items.items():
                if isinstance(item, Inserted):
                    items[line_index] = Inserted(
                        line_index=line_index,
                        entry=LedgerEntry.from_row(await self.store.get(ENTRIES, item.entry.id)),
                    )

        result_items = [items[index] for index in sorted(items)]
        summary = BatchSummary(
            inserted=sum(isinstance(item, Inserted) for item in result_items),
            skipped=sum(isinstance(item, SkippedDuplicate) for item in result_items),
            failed=sum(isinstance(item, ParseFailed) for item in result_items),
            final_balance=by_id.get(account_id) if account_id else None,
            balances=balances,
        )
        logger.info(
            "batch_applied",
            account_id=str(account_id) if account_id else None,
            inserted=summary.inserted,
            skipped=summary.skipped,
            failed=summary.failed,
        )
        return BatchResult(items=result_items, summary=summary)

    # -------------------------------------------------------------------------
    # Single entries
    # -------------------------------------------------------------------------

    async def add_entry(
        self,
        account_id: Optional[UUID],
        entry: ParsedEntry,
        force: bool = False,
    ) -> LedgerEntry:
        """
        Insert one entry.

        Raises:
            DuplicateError: If the entry already exists and force is False
            UnknownAccountError: If no account is given and the entry's
                account name doesn't resolve
            ParseError: If the entry breaks a stored field limit
        """
        known = None
        if account_id is None and entry.kind.affects_account:
            known = await self.directory.load()

        async with self.unit_of_work("add_entry") as uow:
            resolved, target = self._target_account(account_id, entry, known)
            if not resolved:
                raise UnknownAccountError(entry.account_name or "", entry.line)
            if target is not None:
                await self._require_account(target)

            if not force:
                match = await self.detector.find_duplicate(target, entry)
                if match is not None:
                    self.audit.log_duplicate_rejected(
                        match.reason.value, match.existing_id, uow.correlation_id
                    )
                    raise DuplicateError(match)

            try:
                candidate = LedgerEntry.from_parsed(entry, target)
            except ValidationError as e:
                raise ParseError(describe_validation_error(e), entry.line) from e

            inserted = await self._insert_entry(uow, candidate)
            if target is not None:
                await self.recalculator.recompute(target, uow)
            return LedgerEntry.from_row(await self.store.get(ENTRIES, inserted.id))

    async def edit_entry(
        self,
        entry_id: UUID,
        changes: EntryChanges,
        confirm_permanent: bool = False,
    ) -> LedgerEntry:
        """
        Apply field changes to one entry and recompute its account.

        Permanent (opening-balance) entries accept only amount/date changes,
        and only with confirm_permanent=True. Their account's cached balance
        is first moved by the signed amount delta, then recomputed.

        Raises:
            NotFoundError: If the entry doesn't exist
            PermanentEntryError: If a permanent entry is edited without
                confirmation or in a field other than amount/date
        """
        async with self.unit_of_work("edit_entry") as uow:
            entry = await self._require_entry(entry_id)
            fields = changes.changed_fields()
            if not fields:
                return entry

            if entry.is_permanent:
                disallowed = sorted(set(fields) - {"amount", "date"})
                if disallowed or not confirm_permanent:
                    self.audit.log_permanent_entry_protected(entry.id, "edit", uow.correlation_id)
                    detail = (
                        f"fields {disallowed} cannot change" if disallowed
                        else "confirmation required"
                    )
                    raise PermanentEntryError(
                        entry.id,
                        f"Cannot edit permanent entry {entry.id}: {detail}",
                    )

            updated = LedgerEntry.model_validate(
                {**entry.model_dump(), **fields, "updated_at": utcnow()}
            )
            new_row = updated.to_row()
            row_changes = {name: new_row[name] for name in (*fields, "updated_at")}

            if entry.is_permanent and "amount" in fields and entry.account_id is not None:
                account = await self._require_account(entry.account_id)
                delta = signed_amount(updated) - signed_amount(entry)
                await uow.run(UpdateRow(
                    table=ACCOUNTS,
                    row_id=account.id,
                    changes={"current_balance": str(account.current_balance + delta)},
                ))

            await uow.run(UpdateRow(table=ENTRIES, row_id=entry.id, changes=row_changes))
            self.audit.log_entry_updated(entry.id, row_changes, uow.correlation_id)

            if entry.account_id is not None:
                await self.recalculator.recompute(entry.account_id, uow)
            return await self._require_entry(entry.id)

    async def delete_entry(self, entry_id: UUID) -> None:
        """
        Delete one entry and recompute its account.

        Raises:
            NotFoundError: If the entry doesn't exist
            PermanentEntryError: If the entry is permanent
        """
        async with self.unit_of_work("delete_entry") as uow:
            entry = await self._require_entry(entry_id)
            if entry.is_permanent:
                self.audit.log_permanent_entry_protected(entry.id, "delete", uow.correlation_id)
                raise PermanentEntryError(entry.id)

            await uow.run(DeleteRow(table=ENTRIES, row_id=entry.id))
            self.audit.log_entry_deleted(entry, uow.correlation_id)

            if entry.account_id is not None:
                await self.recalculator.recompute(entry.account_id, uow)

    # -------------------------------------------------------------------------
    # Accounts
    # -------------------------------------------------------------------------

    async def create_account(
        self,
        account: Account,
        opening_entry: Optional[LedgerEntry] = None,
    ) -> Account:
        """
        Insert an account, optionally seeded with a permanent opening entry.

        Raises:
            AccountExistsError: If the name is taken (case-insensitive)
        """
        async with self.unit_of_work("create_account") as uow:
            wanted = account.name.casefold()
            for row in await self.store.query(ACCOUNTS):
                if row["name"].casefold() == wanted:
                    raise AccountExistsError(account.name)

            seed = account.model_copy(update={"current_balance": Decimal("0.00")})
            await uow.run(InsertRow(table=ACCOUNTS, row=seed.to_row()))

            if opening_entry is not None:
                opening = opening_entry.model_copy(
                    update={"account_id": account.id, "is_permanent": True}
                )
                await self._insert_entry(uow, opening)

            await self.recalculator.recompute(account.id, uow)
            created = await self._require_account(account.id)
            self.audit.log_account_created(
                created.id,
                created.name,
                opening_entry.amount if opening_entry else None,
                uow.correlation_id,
            )

        self.directory.invalidate()
        return created

    async def delete_account(self, account_id: UUID, force: bool = False) -> int:
        """
        Delete an account after deleting all of its entries.

        Returns:
            Number of entries deleted

        Raises:
            NotFoundError: If the account doesn't exist
            PermanentEntryError: If it has permanent entries and force is False
        """
        async with self.unit_of_work("delete_account") as uow:
            account = await self._require_account(account_id)
            entries = await self.recalculator.load_ledger(account_id)

            permanent = [entry for entry in entries if entry.is_permanent]
            if permanent and not force:
                self.audit.log_permanent_entry_protected(
                    permanent[0].id, "delete_account", uow.correlation_id
                )
                raise PermanentEntryError(
                    permanent[0].id,
                    f"Account {account.name} has a permanent opening-balance entry; "
                    "delete with force=True",
                )

            for entry in entries:
                await uow.run(DeleteRow(table=ENTRIES, row_id=entry.id))
            await uow.run(DeleteRow(table=ACCOUNTS, row_id=account_id))
            self.audit.log_account_deleted(account_id, account.name, len(entries), uow.correlation_id)

        self.directory.invalidate()
        return len(entries)

    async def recalculate(self, account_id: Optional[UUID] = None) -> dict[UUID, Decimal]:
        """Repair one account's balances, or every account's when none is given."""
        async with self.unit_of_work("recalculate") as uow:
            if account_id is not None:
                return {account_id: await self.recalculator.recompute(account_id, uow)}
            return await self.recalculator.recompute_all(uow)
