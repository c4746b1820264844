"""
Storage Services Package

Provides the abstract ledger store and its concrete implementations.
In-memory for tests and scratch sessions, SQLite for durable ledgers.
"""

from partyledger.services.storage.interface import (
    ACCOUNTS,
    ENTRIES,
    TABLES,
    LedgerStore,
    Row,
)
from partyledger.services.storage.memory import InMemoryLedgerStore
from partyledger.services.storage.sqlite import SQLiteLedgerStore

__all__ = [
    # Interface
    "ACCOUNTS",
    "ENTRIES",
    "TABLES",
    "LedgerStore",
    "Row",
    # Implementations
    "InMemoryLedgerStore",
    "SQLiteLedgerStore",
]
