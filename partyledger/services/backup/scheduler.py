"""
Debounced Background Export

After a successful commit the mutator tells the scheduler that something
changed. Once no further change has arrived for `quiescence_seconds`, the
scheduler snapshots the store and writes the backup file.

- The snapshot reads the last committed state without yielding, so a
  mutation lands fully before or fully after it. The file write runs on a
  worker thread.
- A failed export is logged and `pending` stays set; the next change
  triggers another attempt. The mutation that triggered it is never touched.
- close() cancels the timer task.
"""

import asyncio
from pathlib import Path
from typing import Optional, Union

import structlog
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from partyledger.audit import AuditLogger
from partyledger.config import ExportSettings
from partyledger.services.backup.envelope import BackupManager


logger = structlog.get_logger()


class ExportScheduler:
    """
    Owns the debounce timer and the "pending changes" flag.

    Usage:
        scheduler = ExportScheduler(backups, Path("ledger-backup.json"))
        mutator.subscribe(scheduler.mark_changes)
        ...
        await scheduler.close()
    """

    def __init__(
        self,
        backups: BackupManager,
        target: Union[str, Path],
        quiescence_seconds: float = 5.0,
        max_attempts: int = 3,
        retry_wait: float = 1.0,
        audit: Optional[AuditLogger] = None,
    ):
        self.backups = backups
        self.target = Path(target)
        self.quiescence_seconds = quiescence_seconds
        self.max_attempts = max_attempts
        self.retry_wait = retry_wait
        self.audit = audit or AuditLogger()

        self.pending = False
        self.last_error: Optional[Exception] = None
        self._last_change = 0.0
        self._task: Optional[asyncio.Task] = None
        self._closed = False

    @classmethod
    def from_settings(
        cls,
        backups: BackupManager,
        settings: ExportSettings,
        audit: Optional[AuditLogger] = None,
    ) -> "ExportScheduler":
        return cls(
            backups,
            settings.target,
            quiescence_seconds=settings.quiescence_seconds,
            max_attempts=settings.max_attempts,
            audit=audit,
        )

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def mark_changes(self, operation: str = "") -> None:
        """Record a committed change and (re)start the quiescence window."""
        self.pending = True
        if self._closed:
            return

        loop = asyncio.get_running_loop()
        self._last_change = loop.time()
        if not self.running:
            self._task = loop.create_task(self._debounce())
        logger.debug("export_scheduled", operation=operation)

    async def _debounce(self) -> None:
        loop = asyncio.get_running_loop()
        while True:
            remaining = self._last_change + self.quiescence_seconds - loop.time()
            if remaining > 0:
                await asyncio.sleep(remaining)
                continue
            if not await self.flush() or not self.pending:
                return

    async def flush(self) -> bool:
        """
        Export now if there are pending changes.

        A commit that lands while the export runs sets `pending` again, so
        the debounce loop picks it up on its next pass.

        Returns:
            True if a backup was written
        """
        if not self.pending:
            return False

        self.pending = False
        try:
            envelope = await self.backups.snapshot()
            async for attempt in AsyncRetrying(
                retry=retry_if_exception_type(OSError),
                stop=stop_after_attempt(self.max_attempts),
                wait=wait_exponential(multiplier=self.retry_wait, max=10),
                reraise=True,
            ):
                with attempt:
                    row_count = await asyncio.to_thread(self.backups.write, envelope, self.target)
        except Exception as e:
            self.pending = True
            self.last_error = e
            self.audit.log_export_failed(str(self.target), e)
            return False

        self.last_error = None
        self.audit.log_export_completed(str(self.target), row_count)
        return True

    async def force_export(self) -> bool:
        """Export immediately, whether or not anything changed."""
        self.pending = True
        return await self.flush()

    async def wait_idle(self) -> None:
        """Wait for the current timer (and its export) to finish."""
        if self._task is not None:
            await asyncio.shield(self._task)

    async def close(self, flush: bool = False) -> None:
        """Cancel the timer task, optionally writing pending changes first."""
        self._closed = True
        if self._task is not None and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
        if flush:
            await self.flush()
