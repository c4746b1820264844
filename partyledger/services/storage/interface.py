"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for storage operations.
This allows us to:
1. Use an in-memory store for tests and throwaway sessions
2. Use SQLite (or any other ACID store) in production
3. Keep the ledger logic decoupled from the storage engine

The interface is intentionally minimal - a transactional command/query
surface, not an ORM. Rows are plain JSON-compatible dicts (UUIDs, dates and
Decimals as strings); the ledger components turn them into models.
"""

from abc import ABC, abstractmethod
from typing import Any, Optional
from uuid import UUID


ACCOUNTS = "accounts"
ENTRIES = "entries"
TABLES = (ACCOUNTS, ENTRIES)

Row = dict[str, Any]


class LedgerStore(ABC):
    """
    Abstract interface for ledger storage.

    Any storage implementation must provide ACID semantics for the rows
    touched between begin() and commit()/rollback(). Every row carries a
    store-assigned, strictly increasing `seq` that records insertion order.
    """

    @abstractmethod
    async def begin(self) -> None:
        """
        Open a unit of work.

        Raises:
            StorageError: If a unit of work is already open
        """
        pass

    @abstractmethod
    async def commit(self) -> None:
        """Make every change since begin() durable."""
        pass

    @abstractmethod
    async def rollback(self) -> None:
        """Discard every change since begin()."""
        pass

    @property
    @abstractmethod
    def in_transaction(self) -> bool:
        pass

    @abstractmethod
    async def query(
        self,
        table: str,
        where: Optional[Row] = None,
    ) -> list[Row]:
        """
        Fetch rows matching every equality in `where`.

        Args:
            table: Table name
            where: Column -> value equalities (None matches NULL)

        Returns:
            Matching rows ordered by insertion sequence
        """
        pass

    @abstractmethod
    async def insert(self, table: str, row: Row) -> Row:
        """
        Insert a row.

        Any `seq` on the incoming row is ignored; the store assigns the next
        sequence number.

        Returns:
            The stored row including its `seq`

        Raises:
            StorageError: If the row id already exists or a column is unknown
        """
        pass

    @abstractmethod
    async def update(self, table: str, row_id: UUID, fields: Row) -> Row:
        """
        Update columns of one row.

        Returns:
            The updated row

        Raises:
            NotFoundError: If the row doesn't exist
        """
        pass

    @abstractmethod
    async def delete(self, table: str, row_id: UUID) -> bool:
        """
        Delete one row.

        Returns:
            True if a row was deleted
        """
        pass

    @abstractmethod
    def dump(self) -> dict[str, list[Row]]:
        """
        Synchronous snapshot of every table as last committed.

        Synchronous so a background export can read a consistent state
        without yielding to the event loop. Changes of an open unit of work
        are not included. Call open() first.
        """
        pass

    async def open(self) -> None:
        """Connect and load whatever dump() needs. Safe to call repeatedly."""
        pass

    async def get(self, table: str, row_id: UUID) -> Optional[Row]:
        """Retrieve one row by id."""
        rows = await self.query(table, {"id": str(row_id)})
        return rows[0] if rows else None

    async def close(self) -> None:
        """Release any resources held by the store."""
        pass
