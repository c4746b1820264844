"""Tests for the SQLite store."""

import pytest
import pytest_asyncio
from datetime import date
from decimal import Decimal
from uuid import uuid4

from conftest import build_mutator

from partyledger.errors import NotFoundError, StorageError
from partyledger.models import Account, EntryKind, LedgerEntry, ParsedEntry
from partyledger.services.storage import ACCOUNTS, ENTRIES, SQLiteLedgerStore


@pytest_asyncio.fixture
async def sqlite_store(tmp_path):
    store = SQLiteLedgerStore(tmp_path / "ledger.db")
    yield store
    await store.close()


def _entry(account_id=None, kind=EntryKind.BILL, amount="100") -> LedgerEntry:
    return LedgerEntry(date=date(2024, 12, 13), kind=kind, amount=Decimal(amount), account_id=account_id)


class TestRows:
    """Tests for row-level operations."""

    @pytest.mark.asyncio
    async def test_insert_assigns_sequence(self, sqlite_store):
        """Test that inserts get increasing sequence numbers."""
        first = await sqlite_store.insert(ACCOUNTS, Account(name="A").to_row())
        second = await sqlite_store.insert(ACCOUNTS, Account(name="B").to_row())
        assert second["seq"] > first["seq"]

    @pytest.mark.asyncio
    async def test_row_round_trip(self, sqlite_store):
        """Test that a stored entry reads back as the same model."""
        account = Account(name="Acme")
        await sqlite_store.insert(ACCOUNTS, account.to_row())
        entry = _entry(account.id).model_copy(update={"has_gst": True})
        await sqlite_store.insert(ENTRIES, entry.to_row())

        row = await sqlite_store.get(ENTRIES, entry.id)

        assert row["has_gst"] is True
        assert row["is_permanent"] is False
        loaded = LedgerEntry.from_row(row)
        assert loaded.amount == Decimal("100.00")
        assert loaded.account_id == account.id

    @pytest.mark.asyncio
    async def test_query_by_null(self, sqlite_store):
        """Test that None in a filter matches NULL."""
        account = Account(name="Acme")
        await sqlite_store.insert(ACCOUNTS, account.to_row())
        await sqlite_store.insert(ENTRIES, _entry(account.id).to_row())
        await sqlite_store.insert(ENTRIES, _entry(kind=EntryKind.EXPENSE).to_row())

        unattached = await sqlite_store.query(ENTRIES, {"account_id": None})

        assert [row["kind"] for row in unattached] == ["expense"]

    @pytest.mark.asyncio
    async def test_update_missing_row(self, sqlite_store):
        """Test that updating an unknown id raises NotFoundError."""
        with pytest.raises(NotFoundError):
            await sqlite_store.update(ACCOUNTS, uuid4(), {"name": "x"})

    @pytest.mark.asyncio
    async def test_unknown_column(self, sqlite_store):
        """Test that unknown columns are rejected before any SQL runs."""
        with pytest.raises(StorageError):
            await sqlite_store.query(ENTRIES, {"nope": 1})

    @pytest.mark.asyncio
    async def test_foreign_key_enforced(self, sqlite_store):
        """Test that an entry cannot reference a missing account."""
        with pytest.raises(StorageError):
            await sqlite_store.insert(ENTRIES, _entry(uuid4()).to_row())

    @pytest.mark.asyncio
    async def test_delete(self, sqlite_store):
        """Test delete reports whether a row went away."""
        account = Account(name="Acme")
        await sqlite_store.insert(ACCOUNTS, account.to_row())
        assert await sqlite_store.delete(ACCOUNTS, account.id) is True
        assert await sqlite_store.delete(ACCOUNTS, account.id) is False


class TestTransactions:
    """Tests for explicit BEGIN/COMMIT/ROLLBACK."""

    @pytest.mark.asyncio
    async def test_rollback_discards(self, sqlite_store):
        """Test that rolled-back inserts disappear."""
        await sqlite_store.begin()
        await sqlite_store.insert(ACCOUNTS, Account(name="Acme").to_row())
        await sqlite_store.rollback()

        assert await sqlite_store.query(ACCOUNTS) == []
        assert not sqlite_store.in_transaction

    @pytest.mark.asyncio
    async def test_nested_begin_refused(self, sqlite_store):
        """Test that a second unit of work can't nest inside the first."""
        await sqlite_store.begin()
        with pytest.raises(StorageError):
            await sqlite_store.begin()
        await sqlite_store.rollback()

    @pytest.mark.asyncio
    async def test_commit_persists_across_connections(self, tmp_path):
        """Test that committed rows survive reopening the file."""
        path = tmp_path / "ledger.db"
        store = SQLiteLedgerStore(path)
        await store.begin()
        await store.insert(ACCOUNTS, Account(name="Acme").to_row())
        await store.commit()
        await store.close()

        reopened = SQLiteLedgerStore(path)
        rows = await reopened.query(ACCOUNTS)
        await reopened.close()

        assert [row["name"] for row in rows] == ["Acme"]


class TestCommittedSnapshot:
    """Tests for dump() against the committed state."""

    @pytest.mark.asyncio
    async def test_open_unit_of_work_not_dumped(self, sqlite_store):
        """Test that rows of an uncommitted unit of work stay out of the dump."""
        await sqlite_store.insert(ACCOUNTS, Account(name="Acme").to_row())
        await sqlite_store.begin()
        await sqlite_store.insert(ACCOUNTS, Account(name="Pending").to_row())

        during = sqlite_store.dump()
        await sqlite_store.commit()

        assert [row["name"] for row in during[ACCOUNTS]] == ["Acme"]
        assert [row["name"] for row in sqlite_store.dump()[ACCOUNTS]] == ["Acme", "Pending"]

    @pytest.mark.asyncio
    async def test_rollback_leaves_dump_alone(self, sqlite_store):
        """Test that updates and deletes rolled back never reach the dump."""
        account = Account(name="Acme")
        await sqlite_store.insert(ACCOUNTS, account.to_row())
        before = sqlite_store.dump()

        await sqlite_store.begin()
        await sqlite_store.update(ACCOUNTS, account.id, {"name": "Renamed"})
        await sqlite_store.delete(ACCOUNTS, account.id)
        await sqlite_store.rollback()

        assert sqlite_store.dump() == before

    @pytest.mark.asyncio
    async def test_dump_matches_query(self, sqlite_store):
        """Test that the dump carries the same rows the database returns."""
        account = Account(name="Acme")
        await sqlite_store.insert(ACCOUNTS, account.to_row())
        await sqlite_store.insert(ENTRIES, _entry(account.id).model_copy(update={"has_gst": True}).to_row())
        await sqlite_store.update(ACCOUNTS, account.id, {"phone": "555"})

        dumped = sqlite_store.dump()

        assert dumped[ACCOUNTS] == await sqlite_store.query(ACCOUNTS)
        assert dumped[ENTRIES] == await sqlite_store.query(ENTRIES)
        assert dumped[ENTRIES][0]["has_gst"] is True

    @pytest.mark.asyncio
    async def test_open_loads_existing_file(self, tmp_path):
        """Test that a reopened store dumps what an earlier one committed."""
        path = tmp_path / "ledger.db"
        first = SQLiteLedgerStore(path)
        await first.insert(ACCOUNTS, Account(name="Acme").to_row())
        await first.close()

        reopened = SQLiteLedgerStore(path)
        await reopened.open()
        dumped = reopened.dump()
        await reopened.close()

        assert [row["name"] for row in dumped[ACCOUNTS]] == ["Acme"]


class TestPipelineOnSQLite:
    """Tests for the mutator running against SQLite."""

    @pytest.mark.asyncio
    async def test_batch_and_balances(self, sqlite_store):
        """Test a batch commits with recomputed balances."""
        mutator = build_mutator(sqlite_store)
        acme = await mutator.create_account(Account(name="Acme"))
        entries = [
            ParsedEntry(kind=EntryKind.BILL, date=date(2024, 12, 13), amount=Decimal("25000")),
            ParsedEntry(kind=EntryKind.PAYMENT, date=date(2024, 12, 14), amount=Decimal("10000")),
        ]

        result = await mutator.apply_batch(acme.id, entries)

        assert result.summary.final_balance == Decimal("15000")
        account = await sqlite_store.get(ACCOUNTS, acme.id)
        assert Decimal(account["current_balance"]) == Decimal("15000")
        assert [Decimal(row["running_balance"]) for row in await sqlite_store.query(ENTRIES)] == [
            Decimal("25000"),
            Decimal("15000"),
        ]
