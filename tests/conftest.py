"""
Shared fixtures.

Every component gets the store through its constructor, so the tests build
the whole pipeline on an in-memory store.
"""

from decimal import Decimal
from typing import Optional

import pytest
import pytest_asyncio

from partyledger.audit import AuditLogger
from partyledger.config import LedgerSettings
from partyledger.ledger import BalanceRecalculator, DuplicateDetector, LedgerMutator
from partyledger.models import Account
from partyledger.orchestrator import LedgerService
from partyledger.parsing import PartyDirectory
from partyledger.services.storage import InMemoryLedgerStore, Row


class FailingStore(InMemoryLedgerStore):
    """Raises on the n-th insert into `fail_table` (1-based)."""

    def __init__(self, fail_on: int, fail_table: str = "entries"):
        super().__init__()
        self.fail_on = fail_on
        self.fail_table = fail_table
        self.inserts = 0

    async def insert(self, table: str, row: Row) -> Row:
        if table == self.fail_table:
            self.inserts += 1
            if self.inserts == self.fail_on:
                raise RuntimeError("disk on fire")
        return await super().insert(table, row)


def build_mutator(store: InMemoryLedgerStore, audit: Optional[AuditLogger] = None) -> LedgerMutator:
    audit = audit or AuditLogger()
    return LedgerMutator(
        store,
        DuplicateDetector(store),
        BalanceRecalculator(store, audit),
        PartyDirectory(store),
        audit,
    )


@pytest.fixture
def settings() -> LedgerSettings:
    return LedgerSettings(database_path=None, log_level="INFO")


@pytest.fixture
def store() -> InMemoryLedgerStore:
    return InMemoryLedgerStore()


@pytest.fixture
def audit() -> AuditLogger:
    return AuditLogger()


@pytest.fixture
def mutator(store, audit) -> LedgerMutator:
    return build_mutator(store, audit)


@pytest.fixture
def service(store, settings, audit) -> LedgerService:
    return LedgerService(store, settings, audit_logger=audit)


@pytest_asyncio.fixture
async def acme(mutator) -> Account:
    """An empty account named Acme."""
    return await mutator.create_account(Account(name="Acme", credit_limit=Decimal("50000")))
