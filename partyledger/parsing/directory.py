"""
Party Directory

A cached, case-insensitive lookup of account names. The parser only ever
sees an immutable snapshot (KnownAccounts), so parsing stays synchronous.
"""

from typing import Iterable, Optional
from uuid import UUID

import structlog

from partyledger.models import Account
from partyledger.services.storage import ACCOUNTS, LedgerStore


logger = structlog.get_logger()


class KnownAccounts:
    """Immutable name -> account snapshot, keyed case-insensitively."""

    def __init__(self, accounts: Iterable[Account] = ()):
        self._by_name: dict[str, Account] = {
            self._key(account.name): account for account in accounts
        }

    @staticmethod
    def _key(name: str) -> str:
        return " ".join(name.split()).lower()

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and self._key(name) in self._by_name

    def __len__(self) -> int:
        return len(self._by_name)

    def get(self, name: Optional[str]) -> Optional[Account]:
        if not name:
            return None
        return self._by_name.get(self._key(name))

    def resolve(self, name: Optional[str]) -> Optional[UUID]:
        account = self.get(name)
        return account.id if account else None

    @property
    def names(self) -> list[str]:
        return sorted(account.name for account in self._by_name.values())


class PartyDirectory:
    """
    Loads account names from the store and caches them.

    Call invalidate() whenever accounts are created, renamed or deleted.
    """

    def __init__(self, store: LedgerStore):
        self.store = store
        self._cache: Optional[KnownAccounts] = None

    async def load(self) -> KnownAccounts:
        if self._cache is None:
            rows = await self.store.query(ACCOUNTS)
            self._cache = KnownAccounts(Account.from_row(row) for row in rows)
            logger.debug("party_directory_loaded", accounts=len(self._cache))
        return self._cache

    async def exists(self, name: str) -> bool:
        return name in await self.load()

    async def resolve(self, name: Optional[str]) -> Optional[UUID]:
        return (await self.load()).resolve(name)

    def invalidate(self) -> None:
        self._cache = None
