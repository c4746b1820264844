"""Integration tests for LedgerService."""

import pytest
from datetime import date
from decimal import Decimal

from partyledger.config import ExportSettings, LedgerSettings
from partyledger.models import (
    EntryKind,
    ExpenseCategory,
    Inserted,
    ParsedEntry,
    ParseFailed,
    PaymentMode,
    SkippedDuplicate,
)
from partyledger.orchestrator import LedgerService, create_ledger_service
from partyledger.parsing import LineError, ParseContext
from partyledger.services.storage import InMemoryLedgerStore, SQLiteLedgerStore


DAY = date(2024, 12, 13)

DAY_BOOK = """
Santosh Tops (25/1/25) SV2029 73173 GR 302 GST
1. 23500
just words
PBK 20000 party
Home 23988
"""


@pytest.fixture
def disabled_export() -> ExportSettings:
    return ExportSettings(enabled=False)


class TestImportText:
    """Tests for the parse-then-apply flow."""

    @pytest.mark.asyncio
    async def test_day_book_block(self, service):
        """Test that a mixed block lands line by line."""
        santosh = await service.create_account("Santosh Tops")
        pbk = await service.create_account("PBK")

        result = await service.import_text(DAY_BOOK, DAY)

        statuses = [type(item) for item in result.items]
        assert statuses == [Inserted, Inserted, ParseFailed, Inserted, Inserted]
        assert [item.line_index for item in result.items] == [0, 1, 2, 3, 4]
        assert result.items[2].line == "just words"
        assert result.summary.inserted == 4
        assert result.summary.failed == 1
        assert (await service.account_summary(santosh.id)).current_balance == Decimal("73173")
        assert (await service.account_summary(pbk.id)).current_balance == Decimal("-20000")

    @pytest.mark.asyncio
    async def test_reimport_skips_everything(self, service):
        """Test that pasting the same block twice is harmless."""
        await service.create_account("Santosh Tops")
        await service.create_account("PBK")
        await service.import_text(DAY_BOOK, DAY)

        again = await service.import_text(DAY_BOOK, DAY)

        assert again.summary.inserted == 0
        assert again.summary.skipped == 4
        assert again.summary.failed == 1
        assert isinstance(again.items[0], SkippedDuplicate)

    @pytest.mark.asyncio
    async def test_unknown_party_fails_its_line(self, service):
        """Test that a party payment to an unknown account fails only its line."""
        result = await service.import_text("PBK 20000 party\nHome 100", DAY)

        assert isinstance(result.items[0], ParseFailed)
        assert "PBK" in result.items[0].message
        assert isinstance(result.items[1], Inserted)

    @pytest.mark.asyncio
    async def test_payments_context_bound_to_account(self, service):
        """Test the account-ledger payment column."""
        acme = await service.create_account("Acme", opening_balance=Decimal("50000"), opening_date=DAY)

        result = await service.import_text(
            "13/12/24 20000 GST 1234\n14/12/24 5000 K",
            DAY,
            account_id=acme.id,
            context=ParseContext.PAYMENTS,
        )

        assert result.summary.inserted == 2
        assert result.summary.final_balance == Decimal("25000")
        payment = result.items[0].entry
        assert payment.reference == "1234"
        assert payment.has_gst is True
        assert payment.expense_category == ExpenseCategory.PARTY_PAYMENT

    @pytest.mark.asyncio
    async def test_bills_context(self, service):
        """Test the account-ledger bill column."""
        acme = await service.create_account("Acme")

        result = await service.import_text(
            "13/12/24 25000 BILL123 GR 302\n13/13/24 100",
            DAY,
            account_id=acme.id,
            context=ParseContext.BILLS,
        )

        assert isinstance(result.items[0], Inserted)
        assert result.items[0].entry.bill_number == "BILL123"
        assert isinstance(result.items[1], ParseFailed)
        assert "month" in result.items[1].message


class TestPreview:
    """Tests for parse-and-validate without writing."""

    @pytest.mark.asyncio
    async def test_preview_writes_nothing(self, service, store):
        """Test that preview reports issues and leaves the store alone."""
        await service.create_account("PBK")
        before = store.dump()

        outcomes, result = await service.preview_text(
            "Ghost Co (date: 13/12/24) 500\njust words\nPBK 100 party", DAY, today=DAY
        )

        assert isinstance(outcomes[1], LineError)
        assert [issue.issue_type for issue in result.issues] == ["unknown_account"]
        assert result.issues[0].line_index == 0
        assert store.dump() == before

    @pytest.mark.asyncio
    async def test_preview_flags_duplicates(self, service):
        """Test that lines already on the books are flagged."""
        await service.create_account("PBK")
        await service.import_text("PBK 100 party", DAY)

        _, result = await service.preview_text("PBK 100 party", DAY, today=DAY)

        assert result.issues[0].issue_type == "potential_duplicate"


class TestAccounts:
    """Tests for account lifecycle through the service."""

    @pytest.mark.asyncio
    async def test_debit_opening_balance(self, service):
        """Test that a debit opening balance is a permanent bill."""
        account = await service.create_account(
            "Acme", credit_limit=Decimal("100000"), opening_balance=Decimal("40000"), opening_date=DAY
        )

        summary = await service.account_summary(account.id)

        assert summary.current_balance == Decimal("40000")
        assert summary.total_bills == Decimal("40000")
        assert summary.available_credit == Decimal("60000")
        ledger = await service.queries.account_ledger(account.id)
        assert ledger[0].is_permanent is True
        assert ledger[0].kind == EntryKind.BILL

    @pytest.mark.asyncio
    async def test_credit_opening_balance(self, service):
        """Test that a credit opening balance is a permanent payment."""
        account = await service.create_account(
            "Acme", opening_balance=Decimal("1500"), opening_type="credit", opening_date=DAY
        )

        summary = await service.account_summary(account.id)

        assert summary.current_balance == Decimal("-1500")
        assert summary.total_payments == Decimal("1500")
        assert summary.available_credit is None

    @pytest.mark.asyncio
    async def test_summary_totals(self, service):
        """Test entry count, totals and last date."""
        acme = await service.create_account("Acme")
        await service.import_text(
            "13/12/24 25000\n20/12/24 1000", DAY, account_id=acme.id, context=ParseContext.BILLS
        )
        await service.add_entry(
            ParsedEntry(kind=EntryKind.PAYMENT, date=date(2024, 12, 15), amount=Decimal("6000")),
            account_id=acme.id,
        )

        summary = await service.account_summary(acme.id)

        assert summary.entry_count == 3
        assert summary.total_bills == Decimal("26000")
        assert summary.total_payments == Decimal("6000")
        assert summary.current_balance == Decimal("20000")
        assert summary.last_entry_date == date(2024, 12, 20)

    @pytest.mark.asyncio
    async def test_recalculate_everything(self, service):
        """Test the repair operation over all accounts."""
        acme = await service.create_account("Acme", opening_balance=Decimal("10"), opening_date=DAY)

        balances = await service.recalculate()

        assert balances == {acme.id: Decimal("10")}


class TestQueries:
    """Tests for day-book reads."""

    @pytest.mark.asyncio
    async def test_day_book_and_totals(self, service):
        """Test sales and expense totals over a range."""
        await service.import_text("1. 500\n2. 300 net\nHome 100\nAlok sal 900\n3. 50", DAY)

        sales = await service.queries.sales_totals(DAY, DAY)
        expenses = await service.queries.expense_totals()

        assert sales == {PaymentMode.CASH: Decimal("550"), PaymentMode.DIGITAL: Decimal("300")}
        assert expenses == {
            ExpenseCategory.HOME: Decimal("100"),
            ExpenseCategory.SALARY: Decimal("900"),
        }
        assert len(await service.queries.day_book(DAY)) == 5
        assert await service.queries.day_book(date(2024, 12, 14)) == []

    @pytest.mark.asyncio
    async def test_find_account(self, service):
        """Test case-insensitive lookup."""
        acme = await service.create_account("Acme")
        assert (await service.queries.find_account("  ACME ")).id == acme.id
        assert await service.queries.find_account("nobody") is None


class TestBackups:
    """Tests for export and import through the service."""

    @pytest.mark.asyncio
    async def test_round_trip_through_file(self, service, settings, tmp_path):
        """Test that a backup restores into a fresh ledger."""
        acme = await service.create_account("Acme", opening_balance=Decimal("500"), opening_date=DAY)
        await service.import_text("Home 100", DAY)
        target = tmp_path / "backup.json"
        await service.export_backup(target)

        fresh = LedgerService(InMemoryLedgerStore(), settings)
        counts = await fresh.import_backup(target)

        assert counts == {"accounts": 1, "entries": 2}
        summary = await fresh.account_summary(acme.id)
        assert summary.current_balance == Decimal("500")
        assert summary.entry_count == 1


class TestFactory:
    """Tests for create_ledger_service."""

    @pytest.mark.asyncio
    async def test_in_memory_by_default(self, disabled_export):
        """Test that no database path means an in-memory store."""
        service = create_ledger_service(LedgerSettings(database_path=None), disabled_export)

        assert isinstance(service.store, InMemoryLedgerStore)
        assert service.scheduler is None
        await service.close()

    @pytest.mark.asyncio
    async def test_sqlite_with_export(self, tmp_path):
        """Test the SQLite store with background export wired in."""
        backup = tmp_path / "backup.json"
        service = create_ledger_service(
            LedgerSettings(database_path=str(tmp_path / "ledger.db")),
            ExportSettings(enabled=True, path=str(backup), quiescence_seconds=0),
        )
        assert isinstance(service.store, SQLiteLedgerStore)

        await service.create_account("Acme")
        await service.scheduler.wait_idle()
        await service.close()

        assert backup.exists()
        assert service.scheduler.pending is False
