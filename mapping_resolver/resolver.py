"""Category Mapping Resolver.

Maps a ledger category to the accounting account that has exactly the same
name (case-sensitive):
1. Per-run cache (instant return)
2. Ledger lookup of the category name
3. Accounting lookup of accounts with that name

Exactly one match resolves. Zero or several matches raise MappingUnresolved
and are never cached, so a fixed chart of accounts resolves on a later run.
"""

import asyncio
from typing import Any, Dict, List, Optional, Protocol

from core.observability.logging import get_logger
from mapping_resolver.models import CategoryMapping
from sync_engine.errors import MappingUnresolved

logger = get_logger(__name__)


class CategorySource(Protocol):
    """Ledger side: the ledger client implements this."""

    async def get_category(self, category_id: str) -> Any:
        """Object with a `name` attribute."""
        ...


class AccountDirectory(Protocol):
    """Accounting side: the accounting client implements this."""

    async def find_accounts_by_name(self, name: str) -> List[Any]:
        """Objects with `account_id`, `code` and `name` attributes."""
        ...


class MappingResolver:
    """Resolves ledger category ids to accounting destinations.

    A new resolver is created for every run; the cache never outlives it.

    Example:
        resolver = MappingResolver(ledger_client, accounting_client)
        mapping = await resolver.resolve("cat-office")
        print(mapping.destination_account_code)
    """

    def __init__(self, categories: CategorySource, accounts: AccountDirectory):
        self.categories = categories
        self.accounts = accounts
        self._cache: Dict[str, CategoryMapping] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    @property
    def cached(self) -> Dict[str, CategoryMapping]:
        return dict(self._cache)

    def clear(self) -> None:
        self._cache.clear()
        self._locks.clear()

    async def resolve(self, category_id: Optional[str]) -> CategoryMapping:
        """Resolve a category id.

        Raises:
            MappingUnresolved: no category, or 0 / >1 accounts with its name
        """
        if not category_id:
            raise MappingUnresolved(category_id, "transaction has no category")

        if category_id in self._cache:
            return self._cache[category_id]

        lock = self._locks.setdefault(category_id, asyncio.Lock())
        async with lock:
            # Another worker may have resolved it while we waited
            if category_id in self._cache:
                return self._cache[category_id]

            category = await self.categories.get_category(category_id)
            name = category.name
            matches = await self.accounts.find_accounts_by_name(name)

            if len(matches) != 1:
                logger.warning(
                    f"Category {name!r} ({category_id}) matched {len(matches)} accounts",
                    extra_fields={"category_id": category_id, "candidates": len(matches)},
                )
                raise MappingUnresolved(
                    category_id,
                    f"category {name!r} matched {len(matches)} accounting accounts, expected exactly 1",
                    candidates=len(matches),
                )

            account = matches[0]
            mapping = CategoryMapping(
                source_category_id=category_id,
                destination_account_id=account.account_id,
                destination_account_code=account.code,
                destination_name=name,
            )
            self._cache[category_id] = mapping
            logger.debug(f"Mapped category {name!r} to account {account.code or account.account_id}")
            return mapping
