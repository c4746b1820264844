"""
Mutation Commands

Every write inside a unit of work is one discrete command. Commands are
executed in order against the store and each one is logged on its own, so a
rolled-back unit shows exactly how far it got.
"""

from typing import Any, Literal, Union
from uuid import UUID

import structlog
from pydantic import BaseModel, Field

from partyledger.audit import create_correlation_id
from partyledger.services.storage import LedgerStore, Row


logger = structlog.get_logger()


class InsertRow(BaseModel):
    op: Literal["insert"] = "insert"
    table: str
    row: dict[str, Any]

    async def execute(self, store: LedgerStore) -> Row:
        return await store.insert(self.table, self.row)

    def describe(self) -> dict:
        return {"op": self.op, "table": self.table, "id": self.row.get("id")}


class UpdateRow(BaseModel):
    op: Literal["update"] = "update"
    table: str
    row_id: UUID
    changes: dict[str, Any] = Field(default_factory=dict)

    async def execute(self, store: LedgerStore) -> Row:
        return await store.update(self.table, self.row_id, self.changes)

    def describe(self) -> dict:
        return {
            "op": self.op,
            "table": self.table,
            "id": str(self.row_id),
            "fields": sorted(self.changes),
        }


class DeleteRow(BaseModel):
    op: Literal["delete"] = "delete"
    table: str
    row_id: UUID

    async def execute(self, store: LedgerStore) -> bool:
        return await store.delete(self.table, self.row_id)

    def describe(self) -> dict:
        return {"op": self.op, "table": self.table, "id": str(self.row_id)}


Command = Union[InsertRow, UpdateRow, DeleteRow]


class UnitOfWork:
    """An open transaction. Runs commands in order and keeps them."""

    def __init__(self, store: LedgerStore, operation: str):
        self.store = store
        self.operation = operation
        self.correlation_id = create_correlation_id()
        self.executed: list[Command] = []

    async def run(self, command: Command) -> Any:
        result = await command.execute(self.store)
        self.executed.append(command)
        logger.debug(
            "command_executed",
            operation=self.operation,
            correlation_id=str(self.correlation_id),
            step=len(self.executed),
            **command.describe(),
        )
        return result
