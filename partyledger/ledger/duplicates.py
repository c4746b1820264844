"""
Duplicate Detection

Decides whether a candidate entry is already on the books.

Rules, checked in order (first hit wins, most specific first):
1. EXACT_MATCH          same date, kind and amount, plus the bill number
                        when the candidate has one. Scoped to the account
                        when one is given, across all entries otherwise.
2. AMOUNT_DATE_ACCOUNT  same account, date and amount (any kind/bill no.)
3. BILL_NUMBER          same account and the same non-empty bill number

The detector only reads. It never mutates the store.
"""

from decimal import Decimal
from typing import Optional, Union
from uuid import UUID

import structlog

from partyledger.models import (
    DuplicateMatch,
    DuplicateReason,
    EntrySnapshot,
    LedgerEntry,
    ParsedEntry,
)
from partyledger.services.storage import ACCOUNTS, ENTRIES, LedgerStore


logger = structlog.get_logger()

Candidate = Union[ParsedEntry, LedgerEntry]


class DuplicateDetector:
    """Matches candidates against stored entries."""

    def __init__(self, store: LedgerStore, tolerance: Decimal = Decimal("0.01")):
        self.store = store
        self.tolerance = tolerance

    def _same_amount(self, a: Decimal, b: Decimal) -> bool:
        return abs(a - b) < self.tolerance

    async def find_duplicate(
        self,
        account_id: Optional[UUID],
        candidate: Candidate,
    ) -> Optional[DuplicateMatch]:
        """
        Find an existing entry the candidate duplicates.

        Args:
            account_id: Account to scope the search to; None searches globally
                (day-book sales and expenses)
            candidate: Entry about to be inserted

        Returns:
            The first match by rule priority, or None if the candidate is new
        """
        if account_id is not None:
            rows = await self.store.query(ENTRIES, {"account_id": str(account_id)})
        else:
            rows = await self.store.query(ENTRIES, {"date": candidate.date.isoformat()})
        existing = [LedgerEntry.from_row(row) for row in rows]

        bill_number = candidate.bill_number or None

        for entry in existing:
            if (
                entry.date == candidate.date
                and entry.kind is candidate.kind
                and self._same_amount(entry.amount, candidate.amount)
                and (bill_number is None or entry.bill_number == bill_number)
            ):
                return await self._match(DuplicateReason.EXACT_MATCH, entry, candidate)

        if account_id is None:
            return None

        for entry in existing:
            if entry.date == candidate.date and self._same_amount(entry.amount, candidate.amount):
                return await self._match(DuplicateReason.AMOUNT_DATE_ACCOUNT, entry, candidate)

        if bill_number:
            for entry in existing:
                if entry.bill_number == bill_number:
                    return await self._match(DuplicateReason.BILL_NUMBER, entry, candidate)

        return None

    async def _match(
        self,
        reason: DuplicateReason,
        existing: LedgerEntry,
        candidate: Candidate,
    ) -> DuplicateMatch:
        account_name = None
        if existing.account_id is not None:
            account = await self.store.get(ACCOUNTS, existing.account_id)
            account_name = account["name"] if account else None

        if isinstance(candidate, ParsedEntry):
            candidate_snapshot = EntrySnapshot.of_parsed(candidate)
        else:
            candidate_snapshot = EntrySnapshot.of_entry(candidate, account_name)
        if candidate_snapshot.account_name is None:
            candidate_snapshot.account_name = account_name

        logger.debug(
            "duplicate_found",
            reason=reason.value,
            existing_id=str(existing.id),
            date=existing.date.isoformat(),
        )
        return DuplicateMatch(
            reason=reason,
            existing_id=existing.id,
            existing=EntrySnapshot.of_entry(existing, account_name),
            candidate=candidate_snapshot,
        )
