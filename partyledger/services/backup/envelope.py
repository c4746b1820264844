"""
Backup Envelope

A backup is a versioned JSON envelope:

    {"version": "1.0", "timestamp": "...", "tables": {"accounts": [...], "entries": [...]}}

Export is a snapshot of the store as last committed. Import validates the whole
envelope first, then replaces every row inside one unit of work; any row that
fails rolls the whole import back.
"""

import json
import os
from datetime import datetime
from pathlib import Path
from typing import Any, Union

import structlog
from pydantic import BaseModel, Field, ValidationError

from partyledger.errors import BackupError, StorageError
from partyledger.ledger.commands import DeleteRow, InsertRow
from partyledger.ledger.mutator import LedgerMutator
from partyledger.models import Account, EntryKind, LedgerEntry
from partyledger.models.ledger import utcnow
from partyledger.services.storage import ACCOUNTS, ENTRIES, LedgerStore


logger = structlog.get_logger()

BACKUP_VERSION = "1.0"
REQUIRED_TABLES = (ACCOUNTS, ENTRIES)

# Parents before children on insert, children before parents on delete
TABLE_MODELS = {ACCOUNTS: Account, ENTRIES: LedgerEntry}


class BackupEnvelope(BaseModel):
    """Versioned snapshot of every table."""

    version: str = BACKUP_VERSION
    timestamp: datetime = Field(default_factory=utcnow)
    tables: dict[str, list[dict[str, Any]]] = Field(default_factory=dict)

    @property
    def row_counts(self) -> dict[str, int]:
        return {name: len(rows) for name, rows in self.tables.items()}


def validate_envelope(envelope: BackupEnvelope) -> None:
    """
    Check structural compatibility before any data is touched.

    Raises:
        BackupError: Unsupported version, missing tables or unknown entry kinds
    """
    if envelope.version.split(".")[0] != BACKUP_VERSION.split(".")[0]:
        raise BackupError(f"Unsupported backup version: {envelope.version}")

    missing = [name for name in REQUIRED_TABLES if name not in envelope.tables]
    if missing:
        raise BackupError(f"Backup is missing required tables: {', '.join(missing)}")

    known_kinds = {kind.value for kind in EntryKind}
    account_ids = {str(row.get("id")) for row in envelope.tables[ACCOUNTS]}
    for position, row in enumerate(envelope.tables[ENTRIES]):
        if row.get("kind") not in known_kinds:
            raise BackupError(
                f"Unknown entry kind {row.get('kind')!r} in entries row {position}"
            )
        if row.get("account_id") is not None and str(row["account_id"]) not in account_ids:
            raise BackupError(
                f"Entries row {position} references missing account {row['account_id']}"
            )


def parse_envelope(data: Union[str, bytes, dict]) -> BackupEnvelope:
    """
    Parse and validate a backup envelope.

    Raises:
        BackupError: If the data is not a compatible envelope
    """
    try:
        if isinstance(data, dict):
            envelope = BackupEnvelope.model_validate(data)
        else:
            envelope = BackupEnvelope.model_validate_json(data)
    except ValidationError as e:
        raise BackupError(f"Malformed backup envelope: {e}") from e

    validate_envelope(envelope)
    return envelope


class BackupManager:
    """
    Exports and restores whole-store backups.

    Restores go through the mutator's unit of work, so they hold the writer
    lock and commit or roll back as one.
    """

    def __init__(self, store: LedgerStore, mutator: LedgerMutator):
        self.store = store
        self.mutator = mutator

    async def snapshot(self) -> BackupEnvelope:
        """
        Snapshot of the last committed state.

        The store is opened first; the dump itself does not yield, so a
        commit lands fully before or fully after it.
        """
        await self.store.open()
        return BackupEnvelope(tables=self.store.dump())

    @staticmethod
    def write(envelope: BackupEnvelope, target: Path) -> int:
        """
        Write an envelope to disk atomically (temp file + rename).

        Returns:
            Total number of rows written
        """
        target = Path(target)
        target.parent.mkdir(parents=True, exist_ok=True)
        temp = target.with_name(target.name + ".tmp")
        temp.write_text(envelope.model_dump_json(indent=2), encoding="utf-8")
        os.replace(temp, target)
        return sum(envelope.row_counts.values())

    @staticmethod
    def load(source: Path) -> BackupEnvelope:
        """
        Read and validate an envelope from disk.

        Raises:
            BackupError: If the file can't be read or isn't a valid envelope
        """
        try:
            raw = Path(source).read_text(encoding="utf-8")
        except OSError as e:
            raise BackupError(f"Cannot read backup {source}: {e}") from e
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise BackupError(f"Backup {source} is not valid JSON: {e}") from e
        if not isinstance(data, dict):
            raise BackupError(f"Backup {source} is not an envelope")
        return parse_envelope(data)

    async def restore(self, envelope: BackupEnvelope) -> dict[str, int]:
        """
        Replace every row with the envelope's rows.

        Returns:
            Rows imported per table

        Raises:
            BackupError: If validation or any row fails (nothing is changed)
        """
        validate_envelope(envelope)

        async with self.mutator.unit_of_work("import_backup") as uow:
            for table in reversed(REQUIRED_TABLES):
                for row in await self.store.query(table):
                    await uow.run(DeleteRow(table=table, row_id=row["id"]))

            for table in REQUIRED_TABLES:
                model = TABLE_MODELS[table]
                rows = sorted(envelope.tables[table], key=lambda r: r.get("seq") or 0)
                for position, row in enumerate(rows):
                    try:
                        clean = model.model_validate(row).model_dump(mode="json")
                        await uow.run(InsertRow(table=table, row=clean))
                    except (ValidationError, StorageError) as e:
                        raise BackupError(f"{table} row {position} failed: {e}") from e

            await self.mutator.recalculator.recompute_all(uow)

        self.mutator.directory.invalidate()
        counts = {table: len(envelope.tables[table]) for table in REQUIRED_TABLES}
        self.mutator.audit.log_backup_imported(envelope.version, counts)
        logger.info("backup_restored", version=envelope.version, **counts)
        return counts
