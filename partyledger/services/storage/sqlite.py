"""
SQLite Storage Implementation

DESIGN DECISION: SQLite is the durable backend because:
1. Single-file database, no server to run
2. Real transactions (the whole batch commits or nothing does)
3. AUTOINCREMENT gives us the creation sequence for free

Statements go through aiosqlite, so they run on its worker thread and never
block the event loop.

A copy of the committed rows is kept in memory for dump(). Changes made
inside a unit of work are journalled and folded into that copy on commit;
rollback drops the journal.

TRADEOFFS:
- One writer at a time (the mutator serialises writers anyway)
- The committed copy costs memory proportional to the ledger

Amounts are stored as TEXT so Decimals survive without float rounding.
"""

import copy
from pathlib import Path
from typing import Any, Optional, Union
from uuid import UUID

import aiosqlite
import structlog
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from partyledger.errors import NotFoundError, StorageError
from partyledger.services.storage.interface import ACCOUNTS, ENTRIES, LedgerStore, Row


logger = structlog.get_logger()


# Column mappings per table (seq is managed by SQLite)
ACCOUNT_COLUMNS = [
    "id",
    "name",
    "credit_limit",
    "current_balance",
    "contact_person",
    "phone",
    "address",
    "gst_number",
    "created_at",
    "updated_at",
]

ENTRY_COLUMNS = [
    "id",
    "date",
    "kind",
    "amount",
    "has_gst",
    "bill_number",
    "reference",
    "description",
    "account_id",
    "counterparty",
    "staff_name",
    "payment_mode",
    "expense_category",
    "running_balance",
    "is_permanent",
    "created_at",
    "updated_at",
]

COLUMNS = {ACCOUNTS: ACCOUNT_COLUMNS, ENTRIES: ENTRY_COLUMNS}

BOOLEAN_COLUMNS = {"has_gst", "is_permanent"}

SCHEMA = """
CREATE TABLE IF NOT EXISTS accounts (
    seq INTEGER PRIMARY KEY AUTOINCREMENT,
    id TEXT NOT NULL UNIQUE,
    name TEXT NOT NULL,
    credit_limit TEXT NOT NULL DEFAULT '0.00',
    current_balance TEXT NOT NULL DEFAULT '0.00',
    contact_person TEXT,
    phone TEXT,
    address TEXT,
    gst_number TEXT,
    created_at TEXT,
    updated_at TEXT
);

CREATE TABLE IF NOT EXISTS entries (
    seq INTEGER PRIMARY KEY AUTOINCREMENT,
    id TEXT NOT NULL UNIQUE,
    date TEXT NOT NULL,
    kind TEXT NOT NULL CHECK (kind IN ('bill', 'payment', 'sale', 'expense')),
    amount TEXT NOT NULL,
    has_gst INTEGER NOT NULL DEFAULT 0,
    bill_number TEXT,
    reference TEXT,
    description TEXT,
    account_id TEXT REFERENCES accounts(id),
    counterparty TEXT,
    staff_name TEXT,
    payment_mode TEXT,
    expense_category TEXT,
    running_balance TEXT,
    is_permanent INTEGER NOT NULL DEFAULT 0,
    created_at TEXT,
    updated_at TEXT
);

CREATE INDEX IF NOT EXISTS idx_entries_account ON entries(account_id);
CREATE INDEX IF NOT EXISTS idx_entries_date ON entries(date);
"""

# (operation, table, row id, stored row) recorded while a unit of work is open
Change = tuple[str, str, str, Optional[Row]]


class SQLiteLedgerStore(LedgerStore):
    """
    LedgerStore backed by a single SQLite file.

    The connection runs in autocommit mode; begin()/commit()/rollback()
    issue explicit statements so a unit of work spans every call in between.
    The connection is opened on first use.
    """

    def __init__(self, path: Union[str, Path] = ":memory:"):
        self._path = str(path)
        self._connection: Optional[aiosqlite.Connection] = None
        self._committed: dict[str, dict[str, Row]] = {table: {} for table in COLUMNS}
        self._journal: Optional[list[Change]] = None

    @retry(
        retry=retry_if_exception_type(aiosqlite.OperationalError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def _connect(self) -> aiosqlite.Connection:
        if self._path != ":memory:":
            Path(self._path).parent.mkdir(parents=True, exist_ok=True)
        connection = await aiosqlite.connect(self._path, isolation_level=None)
        try:
            connection.row_factory = aiosqlite.Row
            if self._path != ":memory:":
                await connection.execute("PRAGMA journal_mode=WAL")
            await connection.execute("PRAGMA busy_timeout=30000")
            await connection.execute("PRAGMA foreign_keys = ON")
            await connection.executescript(SCHEMA)
        except aiosqlite.Error:
            await connection.close()
            raise
        return connection

    async def open(self) -> None:
        if self._connection is not None:
            return

        try:
            connection = await self._connect()
        except aiosqlite.Error as e:
            raise StorageError(f"Failed to open database {self._path}: {e}") from e

        try:
            committed = {}
            for table in COLUMNS:
                cursor = await connection.execute(f"SELECT * FROM {table} ORDER BY seq")
                records = await cursor.fetchall()
                committed[table] = {
                    row["id"]: row for row in (self._from_db(record) for record in records)
                }
        except aiosqlite.Error as e:
            await connection.close()
            raise StorageError(f"Failed to load database {self._path}: {e}") from e

        # Another caller finished opening while this one was connecting
        if self._connection is not None:
            await connection.close()
            return

        self._connection = connection
        self._committed = committed
        logger.info("sqlite_store_opened", path=self._path)

    @staticmethod
    def _columns(table: str) -> list[str]:
        try:
            return COLUMNS[table]
        except KeyError:
            raise StorageError(f"Unknown table: {table}") from None

    def _check_columns(self, table: str, names) -> None:
        known = self._columns(table)
        unknown = [name for name in names if name not in known]
        if unknown:
            raise StorageError(f"Unknown columns for {table}: {unknown}")

    @staticmethod
    def _to_db(column: str, value: Any) -> Any:
        if column in BOOLEAN_COLUMNS and value is not None:
            return 1 if value else 0
        return value

    @staticmethod
    def _from_db(record: aiosqlite.Row) -> Row:
        row = dict(record)
        for column in BOOLEAN_COLUMNS:
            if column in row and row[column] is not None:
                row[column] = bool(row[column])
        return row

    async def _execute(self, sql: str, params: tuple = ()) -> aiosqlite.Cursor:
        await self.open()
        try:
            return await self._connection.execute(sql, params)
        except aiosqlite.Error as e:
            raise StorageError(f"Database error: {e}") from e

    async def _fetchall(self, sql: str, params: tuple = ()) -> list[Row]:
        cursor = await self._execute(sql, params)
        try:
            records = await cursor.fetchall()
        except aiosqlite.Error as e:
            raise StorageError(f"Database error: {e}") from e
        return [self._from_db(record) for record in records]

    def _record(self, operation: str, table: str, row_id: str, row: Optional[Row] = None) -> None:
        change = (operation, table, row_id, row)
        if self._journal is None:
            self._apply(change)
        else:
            self._journal.append(change)

    def _apply(self, change: Change) -> None:
        operation, table, row_id, row = change
        rows = self._committed[table]
        if operation == "delete":
            rows.pop(row_id, None)
        else:
            rows[row_id] = row

    @property
    def in_transaction(self) -> bool:
        return self._journal is not None

    async def begin(self) -> None:
        if self._journal is not None:
            raise StorageError("A unit of work is already open")
        await self._execute("BEGIN")
        self._journal = []

    async def commit(self) -> None:
        if self._journal is None:
            raise StorageError("No unit of work to commit")
        await self._execute("COMMIT")
        journal, self._journal = self._journal, None
        for change in journal:
            self._apply(change)

    async def rollback(self) -> None:
        if self._journal is None:
            raise StorageError("No unit of work to roll back")
        self._journal = None
        await self._execute("ROLLBACK")

    async def query(
        self,
        table: str,
        where: Optional[Row] = None,
    ) -> list[Row]:
        sql = f"SELECT * FROM {table}"
        params: list[Any] = []
        if where:
            self._check_columns(table, where.keys())
            clauses = []
            for column, value in where.items():
                if value is None:
                    clauses.append(f"{column} IS NULL")
                else:
                    clauses.append(f"{column} = ?")
                    params.append(self._to_db(column, value))
            sql += " WHERE " + " AND ".join(clauses)
        else:
            self._columns(table)
        sql += " ORDER BY seq"

        return await self._fetchall(sql, tuple(params))

    async def insert(self, table: str, row: Row) -> Row:
        values = {column: value for column, value in row.items() if column != "seq"}
        self._check_columns(table, values.keys())
        if not values.get("id"):
            raise StorageError(f"Row for {table} has no id")

        columns = list(values)
        placeholders = ", ".join("?" for _ in columns)
        await self._execute(
            f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({placeholders})",
            tuple(self._to_db(column, values[column]) for column in columns),
        )

        stored = await self.get(table, values["id"])
        if stored is None:
            raise StorageError(f"Inserted row vanished from {table}: {values['id']}")
        self._record("upsert", table, stored["id"], stored)
        return dict(stored)

    async def update(self, table: str, row_id: UUID, fields: Row) -> Row:
        if "id" in fields or "seq" in fields:
            raise StorageError("id and seq cannot be updated")
        self._check_columns(table, fields.keys())

        if fields:
            assignments = ", ".join(f"{column} = ?" for column in fields)
            cursor = await self._execute(
                f"UPDATE {table} SET {assignments} WHERE id = ?",
                tuple(self._to_db(c, v) for c, v in fields.items()) + (str(row_id),),
            )
            if cursor.rowcount == 0:
                raise NotFoundError(f"Row not found in {table}: {row_id}")

        row = await self.get(table, row_id)
        if row is None:
            raise NotFoundError(f"Row not found in {table}: {row_id}")
        self._record("upsert", table, row["id"], row)
        return dict(row)

    async def delete(self, table: str, row_id: UUID) -> bool:
        self._columns(table)
        cursor = await self._execute(f"DELETE FROM {table} WHERE id = ?", (str(row_id),))
        if cursor.rowcount == 0:
            return False
        self._record("delete", table, str(row_id))
        return True

    def dump(self) -> dict[str, list[Row]]:
        return {
            table: [copy.deepcopy(row) for row in rows.values()]
            for table, rows in self._committed.items()
        }

    async def close(self) -> None:
        self._journal = None
        if self._connection is not None:
            connection, self._connection = self._connection, None
            await connection.close()
