"""
Exception hierarchy for the ledger pipeline.

DESIGN DECISION: Parse-time errors are collected per line and never abort a
batch. Everything raised during a unit of work rolls the whole unit back and
propagates as a single failure for that operation.
"""

from typing import TYPE_CHECKING, Optional
from uuid import UUID

if TYPE_CHECKING:
    from partyledger.models.results import DuplicateMatch


class LedgerError(Exception):
    """Base exception for everything raised by the ledger core."""
    pass


class ParseError(LedgerError):
    """A shorthand line could not be turned into an entry."""

    def __init__(self, message: str, line: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.line = line


class UnknownAccountError(ParseError):
    """A grammar form that mandates a known account named one that doesn't exist."""

    def __init__(self, account_name: str, line: Optional[str] = None):
        super().__init__(f"Unknown account: {account_name}", line)
        self.account_name = account_name


class DuplicateError(LedgerError):
    """
    Raised by single-entry inserts when the candidate already exists.

    The caller must confirm explicitly and retry as a forced insert.
    """

    def __init__(self, match: "DuplicateMatch"):
        super().__init__(
            f"Duplicate entry detected ({match.reason.value}): "
            f"{match.existing.kind.value} of {match.existing.amount} "
            f"on {match.existing.date.isoformat()}"
        )
        self.match = match


class PermanentEntryError(LedgerError):
    """Attempted deletion or unguarded edit of a protected opening-balance entry."""

    def __init__(self, entry_id: UUID, message: Optional[str] = None):
        super().__init__(message or f"Cannot delete a permanent entry: {entry_id}")
        self.entry_id = entry_id


class AccountExistsError(LedgerError):
    """An account with the same name (case-insensitive) already exists."""

    def __init__(self, name: str):
        super().__init__(f"Account already exists: {name}")
        self.name = name


class InvariantViolation(LedgerError):
    """Stored data breaks a ledger invariant (e.g. a sale attached to an account)."""
    pass


class StorageError(LedgerError):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class BackupError(StorageError):
    """A backup envelope failed validation or could not be applied."""
    pass
