"""
In-Memory Storage Implementation

Rows live in plain dicts. A unit of work is a deep-copied snapshot of every
table taken at begin(); rollback() restores it.

Used by the test-suite and as the default store when no database path is
configured.
"""

import copy
from typing import Optional
from uuid import UUID

from partyledger.errors import NotFoundError, StorageError
from partyledger.services.storage.interface import TABLES, LedgerStore, Row


class InMemoryLedgerStore(LedgerStore):
    """Dictionary-backed LedgerStore with snapshot transactions."""

    def __init__(self):
        self._tables: dict[str, dict[str, Row]] = {name: {} for name in TABLES}
        self._sequence = 0
        self._snapshot: Optional[tuple[dict[str, dict[str, Row]], int]] = None

    def _table(self, table: str) -> dict[str, Row]:
        try:
            return self._tables[table]
        except KeyError:
            raise StorageError(f"Unknown table: {table}") from None

    @property
    def in_transaction(self) -> bool:
        return self._snapshot is not None

    async def begin(self) -> None:
        if self._snapshot is not None:
            raise StorageError("A unit of work is already open")
        self._snapshot = (copy.deepcopy(self._tables), self._sequence)

    async def commit(self) -> None:
        if self._snapshot is None:
            raise StorageError("No unit of work to commit")
        self._snapshot = None

    async def rollback(self) -> None:
        if self._snapshot is None:
            raise StorageError("No unit of work to roll back")
        self._tables, self._sequence = self._snapshot
        self._snapshot = None

    async def query(
        self,
        table: str,
        where: Optional[Row] = None,
    ) -> list[Row]:
        rows = self._table(table).values()
        if where:
            rows = [
                row for row in rows
                if all(row.get(column) == value for column, value in where.items())
            ]
        return [dict(row) for row in sorted(rows, key=lambda r: r["seq"])]

    async def insert(self, table: str, row: Row) -> Row:
        rows = self._table(table)
        row_id = row.get("id")
        if not row_id:
            raise StorageError(f"Row for {table} has no id")
        if row_id in rows:
            raise StorageError(f"Duplicate id in {table}: {row_id}")

        self._sequence += 1
        stored = dict(row, seq=self._sequence)
        rows[row_id] = stored
        return dict(stored)

    async def update(self, table: str, row_id: UUID, fields: Row) -> Row:
        rows = self._table(table)
        key = str(row_id)
        if key not in rows:
            raise NotFoundError(f"Row not found in {table}: {row_id}")
        if "id" in fields or "seq" in fields:
            raise StorageError("id and seq cannot be updated")

        rows[key].update(fields)
        return dict(rows[key])

    async def delete(self, table: str, row_id: UUID) -> bool:
        return self._table(table).pop(str(row_id), None) is not None

    def dump(self) -> dict[str, list[Row]]:
        tables = self._snapshot[0] if self._snapshot is not None else self._tables
        return {
            name: [copy.deepcopy(row) for row in sorted(rows.values(), key=lambda r: r["seq"])]
            for name, rows in tables.items()
        }
