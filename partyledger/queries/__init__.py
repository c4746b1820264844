"""Read-only ledger queries."""

from partyledger.queries.reader import LedgerQueries

__all__ = ["LedgerQueries"]
