"""
Ledger Queries

DESIGN DECISION: Reads are DETERMINISTIC and go straight to storage.
Balances are never computed here; they come from the cache the
recalculator maintains, so what callers see is what the ledger says.

GUARANTEES:
- Only returns real data from storage
- Never invents or estimates
- Clear NotFoundError when an account doesn't exist
"""

from datetime import date
from decimal import Decimal
from typing import Optional
from uuid import UUID

from partyledger.errors import NotFoundError
from partyledger.ledger.recalculator import ledger_order
from partyledger.models import (
    Account,
    AccountSummary,
    EntryKind,
    ExpenseCategory,
    LedgerEntry,
    PaymentMode,
)
from partyledger.services.storage import ACCOUNTS, ENTRIES, LedgerStore


class LedgerQueries:
    """Read-only views over accounts and entries."""

    def __init__(self, store: LedgerStore):
        self._store = store

    async def list_accounts(self) -> list[Account]:
        rows = await self._store.query(ACCOUNTS)
        return sorted((Account.from_row(row) for row in rows), key=lambda a: a.name.casefold())

    async def get_account(self, account_id: UUID) -> Account:
        row = await self._store.get(ACCOUNTS, account_id)
        if row is None:
            raise NotFoundError(f"Account not found: {account_id}")
        return Account.from_row(row)

    async def find_account(self, name: str) -> Optional[Account]:
        """Case-insensitive lookup by name."""
        wanted = " ".join(name.split()).casefold()
        for account in await self.list_accounts():
            if account.name.casefold() == wanted:
                return account
        return None

    async def account_ledger(self, account_id: UUID) -> list[LedgerEntry]:
        """An account's entries in ledger order, with running balances."""
        rows = await self._store.query(ENTRIES, {"account_id": str(account_id)})
        return sorted((LedgerEntry.from_row(row) for row in rows), key=ledger_order)

    async def account_summary(self, account_id: UUID) -> AccountSummary:
        """Balance, totals and credit headroom of one account."""
        account = await self.get_account(account_id)
        entries = await self.account_ledger(account_id)

        total_bills = sum(
            (e.amount for e in entries if e.kind is EntryKind.BILL), Decimal("0.00")
        )
        total_payments = sum(
            (e.amount for e in entries if e.kind is EntryKind.PAYMENT), Decimal("0.00")
        )
        available = None
        if account.credit_limit > 0:
            available = account.credit_limit - account.current_balance

        return AccountSummary(
            account_id=account.id,
            name=account.name,
            current_balance=account.current_balance,
            total_bills=total_bills,
            total_payments=total_payments,
            entry_count=len(entries),
            last_entry_date=entries[-1].date if entries else None,
            credit_limit=account.credit_limit,
            available_credit=available,
        )

    async def day_book(self, on: date) -> list[LedgerEntry]:
        """Every entry dated `on`, in the order it was recorded."""
        rows = await self._store.query(ENTRIES, {"date": on.isoformat()})
        return [LedgerEntry.from_row(row) for row in rows]

    async def _entries_between(
        self,
        kind: EntryKind,
        date_from: Optional[date],
        date_to: Optional[date],
    ) -> list[LedgerEntry]:
        rows = await self._store.query(ENTRIES, {"kind": kind.value})
        entries = [LedgerEntry.from_row(row) for row in rows]
        return [
            e for e in entries
            if (date_from is None or e.date >= date_from)
            and (date_to is None or e.date <= date_to)
        ]

    async def expense_totals(
        self,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> dict[ExpenseCategory, Decimal]:
        """Expense totals grouped by category."""
        totals: dict[ExpenseCategory, Decimal] = {}
        for entry in await self._entries_between(EntryKind.EXPENSE, date_from, date_to):
            category = entry.expense_category or ExpenseCategory.PETTY
            totals[category] = totals.get(category, Decimal("0.00")) + entry.amount
        return totals

    async def sales_totals(
        self,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> dict[PaymentMode, Decimal]:
        """Sales totals grouped by payment mode."""
        totals: dict[PaymentMode, Decimal] = {}
        for entry in await self._entries_between(EntryKind.SALE, date_from, date_to):
            mode = entry.payment_mode or PaymentMode.CASH
            totals[mode] = totals.get(mode, Decimal("0.00")) + entry.amount
        return totals
