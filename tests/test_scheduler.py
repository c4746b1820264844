"""Tests for the debounced background exporter."""

import asyncio

import pytest
from datetime import date
from decimal import Decimal

from partyledger.audit import AuditLogger
from partyledger.config import ExportSettings
from partyledger.models import Account, AuditEventType, EntryKind, ParsedEntry
from partyledger.services.backup import BackupManager, ExportScheduler
from partyledger.services.storage import ACCOUNTS


class CountingBackups(BackupManager):
    """Counts writes; fails the first `failures` of them with OSError."""

    def __init__(self, store, mutator, failures: int = 0):
        super().__init__(store, mutator)
        self.failures = failures
        self.attempts = 0
        self.writes = 0

    def write(self, envelope, target):
        self.attempts += 1
        if self.attempts <= self.failures:
            raise OSError("disk full")
        self.writes += 1
        return BackupManager.write(envelope, target)


class BrokenBackups(CountingBackups):
    """Fails every write with an error that is not an OSError."""

    def write(self, envelope, target):
        self.attempts += 1
        raise ValueError("cannot encode envelope")


def _scheduler(backups, target, **kwargs) -> ExportScheduler:
    kwargs.setdefault("quiescence_seconds", 0)
    kwargs.setdefault("retry_wait", 0)
    return ExportScheduler(backups, target, **kwargs)


class TestDebounce:
    """Tests for the quiescence window."""

    @pytest.mark.asyncio
    async def test_exports_after_commit(self, store, mutator, tmp_path):
        """Test that a committed change is exported once things settle."""
        target = tmp_path / "backup.json"
        scheduler = _scheduler(BackupManager(store, mutator), target)
        mutator.subscribe(scheduler.mark_changes)

        await mutator.create_account(Account(name="Acme"))
        await scheduler.wait_idle()

        assert scheduler.pending is False
        assert BackupManager.load(target).row_counts[ACCOUNTS] == 1

    @pytest.mark.asyncio
    async def test_changes_are_coalesced(self, store, mutator, tmp_path):
        """Test that a burst of changes produces one export."""
        backups = CountingBackups(store, mutator)
        scheduler = _scheduler(backups, tmp_path / "backup.json", quiescence_seconds=0.05)

        for _ in range(3):
            scheduler.mark_changes("apply_batch")
        await scheduler.wait_idle()

        assert backups.writes == 1

    @pytest.mark.asyncio
    async def test_no_export_without_changes(self, store, mutator, tmp_path):
        """Test that flush is a no-op when nothing is pending."""
        backups = CountingBackups(store, mutator)
        scheduler = _scheduler(backups, tmp_path / "backup.json")

        assert await scheduler.flush() is False
        assert backups.attempts == 0

    @pytest.mark.asyncio
    async def test_force_export(self, store, mutator, tmp_path):
        """Test that a forced export writes even without changes."""
        target = tmp_path / "backup.json"
        scheduler = _scheduler(BackupManager(store, mutator), target)

        assert await scheduler.force_export() is True
        assert target.exists()


class TestFailures:
    """Tests for failed writes."""

    @pytest.mark.asyncio
    async def test_transient_failure_is_retried(self, store, mutator, tmp_path):
        """Test that a write failing once succeeds on retry."""
        backups = CountingBackups(store, mutator, failures=1)
        scheduler = _scheduler(backups, tmp_path / "backup.json", max_attempts=3)

        assert await scheduler.force_export() is True
        assert backups.attempts == 2

    @pytest.mark.asyncio
    async def test_failure_keeps_pending(self, store, mutator, tmp_path):
        """Test that exhausted retries leave the change pending."""
        audit = AuditLogger()
        backups = CountingBackups(store, mutator, failures=10)
        scheduler = _scheduler(backups, tmp_path / "backup.json", max_attempts=2, audit=audit)

        assert await scheduler.force_export() is False

        assert backups.attempts == 2
        assert scheduler.pending is True
        assert isinstance(scheduler.last_error, OSError)
        assert audit.recent_events[-1].event_type == AuditEventType.EXPORT_FAILED

    @pytest.mark.asyncio
    async def test_failure_never_touches_the_mutation(self, store, mutator, tmp_path):
        """Test that the triggering commit stands when the export fails."""
        backups = CountingBackups(store, mutator, failures=10)
        scheduler = _scheduler(backups, tmp_path / "backup.json", max_attempts=1)
        mutator.subscribe(scheduler.mark_changes)
        acme = await mutator.create_account(Account(name="Acme"))

        await mutator.apply_batch(acme.id, [
            ParsedEntry(kind=EntryKind.BILL, date=date(2024, 12, 13), amount=Decimal("100")),
        ])
        await scheduler.wait_idle()

        assert scheduler.pending is True
        account = await store.get(ACCOUNTS, acme.id)
        assert Decimal(account["current_balance"]) == Decimal("100")

    @pytest.mark.asyncio
    async def test_unexpected_error_keeps_pending(self, store, mutator, tmp_path):
        """Test that a non-OS error is not retried and leaves the change pending."""
        audit = AuditLogger()
        backups = BrokenBackups(store, mutator)
        scheduler = _scheduler(backups, tmp_path / "backup.json", max_attempts=3, audit=audit)
        mutator.subscribe(scheduler.mark_changes)

        await mutator.create_account(Account(name="Acme"))
        await scheduler.wait_idle()

        assert backups.attempts == 1
        assert scheduler.pending is True
        assert isinstance(scheduler.last_error, ValueError)
        assert audit.recent_events[-1].event_type == AuditEventType.EXPORT_FAILED
        assert await scheduler.force_export() is False


class TestLifecycle:
    """Tests for close()."""

    @pytest.mark.asyncio
    async def test_close_cancels_timer(self, store, mutator, tmp_path):
        """Test that closing cancels a waiting export."""
        target = tmp_path / "backup.json"
        scheduler = _scheduler(BackupManager(store, mutator), target, quiescence_seconds=60)
        scheduler.mark_changes("apply_batch")
        await asyncio.sleep(0)
        assert scheduler.running

        await scheduler.close()

        assert not scheduler.running
        assert scheduler.pending is True
        assert not target.exists()

    @pytest.mark.asyncio
    async def test_close_can_flush(self, store, mutator, tmp_path):
        """Test that close(flush=True) writes pending changes."""
        target = tmp_path / "backup.json"
        scheduler = _scheduler(BackupManager(store, mutator), target, quiescence_seconds=60)
        scheduler.mark_changes("apply_batch")

        await scheduler.close(flush=True)

        assert target.exists()
        assert scheduler.pending is False

    @pytest.mark.asyncio
    async def test_marks_after_close_do_not_schedule(self, store, mutator, tmp_path):
        """Test that a closed scheduler only records pending changes."""
        scheduler = _scheduler(BackupManager(store, mutator), tmp_path / "backup.json")
        await scheduler.close()

        scheduler.mark_changes("apply_batch")

        assert scheduler.pending is True
        assert not scheduler.running

    def test_from_settings(self, store, mutator, tmp_path):
        """Test building a scheduler from export settings."""
        settings = ExportSettings(
            enabled=True,
            path=str(tmp_path / "b.json"),
            quiescence_seconds=2.5,
            max_attempts=4,
        )

        scheduler = ExportScheduler.from_settings(BackupManager(store, mutator), settings)

        assert scheduler.target == tmp_path / "b.json"
        assert scheduler.quiescence_seconds == 2.5
        assert scheduler.max_attempts == 4
