"""Services package."""

from partyledger.services.storage import (
    ACCOUNTS,
    ENTRIES,
    InMemoryLedgerStore,
    LedgerStore,
    SQLiteLedgerStore,
)

__all__ = [
    "ACCOUNTS",
    "ENTRIES",
    "InMemoryLedgerStore",
    "LedgerStore",
    "SQLiteLedgerStore",
]
