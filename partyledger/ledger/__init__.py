"""Ledger mutation package: duplicates, commands, recalculation, mutator."""

from partyledger.ledger.commands import (
    Command,
    DeleteRow,
    InsertRow,
    UnitOfWork,
    UpdateRow,
)
from partyledger.ledger.duplicates import DuplicateDetector
from partyledger.ledger.mutator import CommitListener, LedgerMutator
from partyledger.ledger.recalculator import BalanceRecalculator, signed_amount

__all__ = [
    "BalanceRecalculator",
    "Command",
    "CommitListener",
    "DeleteRow",
    "DuplicateDetector",
    "InsertRow",
    "LedgerMutator",
    "UnitOfWork",
    "UpdateRow",
    "signed_amount",
]
