"""Tests for balance recalculation."""

import pytest
from datetime import date
from decimal import Decimal
from uuid import uuid4

from partyledger.errors import InvariantViolation, NotFoundError
from partyledger.ledger import BalanceRecalculator, signed_amount
from partyledger.models import Account, EntryKind, LedgerEntry
from partyledger.services.storage import ACCOUNTS, ENTRIES


async def _put(store, account_id, kind, amount, on) -> LedgerEntry:
    entry = LedgerEntry(date=on, kind=kind, amount=Decimal(amount), account_id=account_id)
    return LedgerEntry.from_row(await store.insert(ENTRIES, entry.to_row()))


class TestSignedAmount:
    """Tests for an entry's effect on its balance."""

    def test_bill_adds_payment_subtracts(self):
        """Test the sign convention."""
        bill = LedgerEntry(date=date(2024, 1, 1), kind=EntryKind.BILL, amount=Decimal("10"))
        payment = LedgerEntry(date=date(2024, 1, 1), kind=EntryKind.PAYMENT, amount=Decimal("4"))
        assert signed_amount(bill) == Decimal("10")
        assert signed_amount(payment) == Decimal("-4")

    def test_day_book_kind_has_no_sign(self):
        """Test that sales never move an account balance."""
        sale = LedgerEntry(date=date(2024, 1, 1), kind=EntryKind.SALE, amount=Decimal("10"))
        with pytest.raises(InvariantViolation):
            signed_amount(sale)


class TestRecompute:
    """Tests for BalanceRecalculator.recompute."""

    @pytest.mark.asyncio
    async def test_empty_account_is_zero(self, store, acme):
        """Test that an account without entries has a zero balance."""
        balance = await BalanceRecalculator(store).recompute(acme.id)
        assert balance == Decimal("0")

    @pytest.mark.asyncio
    async def test_folds_in_date_then_sequence_order(self, store, acme):
        """Test that running balances follow (date, seq), not insert order."""
        late = await _put(store, acme.id, EntryKind.PAYMENT, "10000", date(2024, 12, 14))
        first = await _put(store, acme.id, EntryKind.BILL, "25000", date(2024, 12, 13))
        second = await _put(store, acme.id, EntryKind.BILL, "500", date(2024, 12, 13))

        balance = await BalanceRecalculator(store).recompute(acme.id)

        assert balance == Decimal("15500")
        running = {
            row["id"]: Decimal(row["running_balance"])
            for row in await store.query(ENTRIES)
        }
        assert running[str(first.id)] == Decimal("25000")
        assert running[str(second.id)] == Decimal("25500")
        assert running[str(late.id)] == Decimal("15500")
        account = await store.get(ACCOUNTS, acme.id)
        assert Decimal(account["current_balance"]) == Decimal("15500")

    @pytest.mark.asyncio
    async def test_idempotent(self, store, mutator, acme):
        """Test that a second recompute writes nothing."""
        await _put(store, acme.id, EntryKind.BILL, "25000", date(2024, 12, 13))
        recalculator = BalanceRecalculator(store)
        await recalculator.recompute(acme.id)
        before = store.dump()

        async with mutator.unit_of_work("recalculate") as uow:
            balance = await recalculator.recompute(acme.id, uow)

        assert balance == Decimal("25000")
        assert uow.executed == []
        assert store.dump() == before

    @pytest.mark.asyncio
    async def test_balance_invariant(self, store, acme):
        """Test last running balance == bills - payments == cached balance."""
        await _put(store, acme.id, EntryKind.BILL, "1200.50", date(2024, 12, 1))
        await _put(store, acme.id, EntryKind.PAYMENT, "200.25", date(2024, 12, 2))
        await _put(store, acme.id, EntryKind.BILL, "99.75", date(2024, 12, 3))
        recalculator = BalanceRecalculator(store)

        balance = await recalculator.recompute(acme.id)

        ledger = await recalculator.load_ledger(acme.id)
        assert ledger[-1].running_balance == balance == Decimal("1100.00")
        account = Account.from_row(await store.get(ACCOUNTS, acme.id))
        assert account.current_balance == balance

    @pytest.mark.asyncio
    async def test_sale_on_account_is_invariant_violation(self, store, acme):
        """Test that a day-book row attached to an account is rejected."""
        sale = LedgerEntry(date=date(2024, 12, 13), kind=EntryKind.SALE, amount=Decimal("10"))
        await store.insert(ENTRIES, {**sale.to_row(), "account_id": str(acme.id)})

        with pytest.raises(InvariantViolation):
            await BalanceRecalculator(store).recompute(acme.id)

    @pytest.mark.asyncio
    async def test_missing_account(self, store):
        """Test that recomputing an unknown account fails."""
        with pytest.raises(NotFoundError):
            await BalanceRecalculator(store).recompute(uuid4())

    @pytest.mark.asyncio
    async def test_recompute_all_repairs_cache(self, store, mutator, acme):
        """Test that a corrupted cached balance is repaired."""
        other = await mutator.create_account(Account(name="Other"))
        await _put(store, acme.id, EntryKind.BILL, "300", date(2024, 12, 13))
        await store.update(ACCOUNTS, other.id, {"current_balance": "999.00"})

        balances = await BalanceRecalculator(store).recompute_all()

        assert balances == {acme.id: Decimal("300"), other.id: Decimal("0")}
        account = await store.get(ACCOUNTS, other.id)
        assert Decimal(account["current_balance"]) == Decimal("0")
