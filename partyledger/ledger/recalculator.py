"""
Balance Recalculation

The single source of truth for running balances and Account.current_balance.

Algorithm:
1. Load the account's entries ordered by (date, seq)
2. Fold from 0: +amount for bills, -amount for payments
3. Rewrite running_balance on every entry (a full rewrite, never a patch)
4. Write the final value (0 if empty) to the account

Safe to call at any time as a repair tool; calling it twice without an
intervening mutation changes nothing.
"""

from decimal import Decimal
from typing import Optional
from uuid import UUID

import structlog

from partyledger.audit import AuditLogger
from partyledger.errors import InvariantViolation, NotFoundError
from partyledger.ledger.commands import UnitOfWork, UpdateRow
from partyledger.models import EntryKind, LedgerEntry
from partyledger.models.ledger import utcnow
from partyledger.services.storage import ACCOUNTS, ENTRIES, LedgerStore


logger = structlog.get_logger()

ACCOUNT_KINDS = {EntryKind.BILL.value, EntryKind.PAYMENT.value}


def signed_amount(entry: LedgerEntry) -> Decimal:
    """The entry's effect on its account's balance."""
    if entry.kind is EntryKind.BILL:
        return entry.amount
    if entry.kind is EntryKind.PAYMENT:
        return -entry.amount
    raise InvariantViolation(
        f"Entry {entry.id} of kind {entry.kind.value} is attached to account {entry.account_id}"
    )


def ledger_order(entry: LedgerEntry) -> tuple:
    return (entry.date, entry.seq if entry.seq is not None else 0)


class BalanceRecalculator:
    """
    Recomputes running balances for one account at a time.

    Callers that mutate must run this inside their own unit of work.
    """

    def __init__(self, store: LedgerStore, audit: Optional[AuditLogger] = None):
        self.store = store
        self.audit = audit

    async def load_ledger(self, account_id: UUID) -> list[LedgerEntry]:
        """An account's entries in ledger order."""
        rows = await self.store.query(ENTRIES, {"account_id": str(account_id)})
        for row in rows:
            if row.get("kind") not in ACCOUNT_KINDS:
                raise InvariantViolation(
                    f"Entry {row.get('id')} of kind {row.get('kind')} is attached to account {account_id}"
                )
        return sorted((LedgerEntry.from_row(row) for row in rows), key=ledger_order)

    async def _write(self, uow: Optional[UnitOfWork], command: UpdateRow) -> None:
        if uow is not None:
            await uow.run(command)
        else:
            await command.execute(self.store)

    async def recompute(
        self,
        account_id: UUID,
        uow: Optional[UnitOfWork] = None,
    ) -> Decimal:
        """
        Recompute every running balance of an account.

        Writes go through `uow` when given, so they are logged with the
        rest of the caller's unit of work.

        Returns:
            The account's new current balance

        Raises:
            NotFoundError: If the account doesn't exist
            InvariantViolation: If a non-account kind is attached to the account
        """
        account = await self.store.get(ACCOUNTS, account_id)
        if account is None:
            raise NotFoundError(f"Account not found: {account_id}")

        entries = await self.load_ledger(account_id)

        running = Decimal("0.00")
        for entry in entries:
            running += signed_amount(entry)
            if entry.running_balance != running:
                await self._write(uow, UpdateRow(
                    table=ENTRIES,
                    row_id=entry.id,
                    changes={"running_balance": str(running)},
                ))

        if Decimal(account["current_balance"]) != running:
            await self._write(uow, UpdateRow(
                table=ACCOUNTS,
                row_id=account_id,
                changes={"current_balance": str(running), "updated_at": utcnow().isoformat()},
            ))
        logger.debug("balance_recomputed", account_id=str(account_id), balance=str(running))

        if self.audit:
            self.audit.log_balance_recalculated(
                account_id, len(entries), running, uow.correlation_id if uow else None
            )
        return running

    async def recompute_all(self, uow: Optional[UnitOfWork] = None) -> dict[UUID, Decimal]:
        """Repair every account. Returns the new balance per account id."""
        balances = {}
        for row in await self.store.query(ACCOUNTS):
            account_id = UUID(row["id"])
            balances[account_id] = await self.recompute(account_id, uow)
        return balances
