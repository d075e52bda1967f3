"""Category to account resolution."""

import asyncio

import pytest

from conftest import FakeAccounting, account
from mapping_resolver import MappingResolver
from sync_engine.errors import MappingUnresolved


class CountingAccounting(FakeAccounting):
    def __init__(self, accounts=()):
        super().__init__(accounts)
        self.lookups = []

    async def find_accounts_by_name(self, name):
        self.lookups.append(name)
        await asyncio.sleep(0)
        return await super().find_accounts_by_name(name)


class TestMappingResolver:
    @pytest.fixture
    def accounts(self):
        return CountingAccounting([
            account("Office Supplies", "461"),
            account("Travel", "493"),
            account("Travel", "494"),
        ])

    @pytest.mark.asyncio
    async def test_exact_name_match_resolves(self, ledger, accounts):
        mapping = await MappingResolver(ledger, accounts).resolve("cat-office")
        assert mapping.source_category_id == "cat-office"
        assert mapping.destination_account_id == "acc-461"
        assert mapping.destination_account_code == "461"
        assert mapping.destination_name == "Office Supplies"

    @pytest.mark.asyncio
    async def test_resolutions_are_cached(self, ledger, accounts):
        resolver = MappingResolver(ledger, accounts)
        first = await resolver.resolve("cat-office")
        second = await resolver.resolve("cat-office")
        assert first == second
        assert accounts.lookups == ["Office Supplies"]
        assert set(resolver.cached) == {"cat-office"}

    @pytest.mark.asyncio
    async def test_concurrent_resolutions_share_one_lookup(self, ledger, accounts):
        resolver = MappingResolver(ledger, accounts)
        results = await asyncio.gather(*[resolver.resolve("cat-office") for _ in range(5)])
        assert len({r.destination_account_id for r in results}) == 1
        assert accounts.lookups == ["Office Supplies"]

    @pytest.mark.asyncio
    async def test_several_matches_are_unresolved(self, ledger, accounts):
        with pytest.raises(MappingUnresolved) as exc_info:
            await MappingResolver(ledger, accounts).resolve("cat-travel")
        assert exc_info.value.candidates == 2
        assert exc_info.value.category_id == "cat-travel"

    @pytest.mark.asyncio
    async def test_no_match_is_unresolved(self, ledger, accounts):
        with pytest.raises(MappingUnresolved) as exc_info:
            await MappingResolver(ledger, accounts).resolve("cat-software")
        assert exc_info.value.candidates == 0

    @pytest.mark.asyncio
    async def test_match_is_case_sensitive(self, ledger):
        accounts = CountingAccounting([account("office supplies", "461")])
        with pytest.raises(MappingUnresolved):
            await MappingResolver(ledger, accounts).resolve("cat-office")

    @pytest.mark.asyncio
    async def test_missing_category_is_unresolved(self, ledger, accounts):
        with pytest.raises(MappingUnresolved, match="no category"):
            await MappingResolver(ledger, accounts).resolve(None)
        assert accounts.lookups == []

    @pytest.mark.asyncio
    async def test_failures_are_not_cached(self, ledger, accounts):
        resolver = MappingResolver(ledger, accounts)
        with pytest.raises(MappingUnresolved):
            await resolver.resolve("cat-software")

        accounts.accounts.append(account("Software", "485"))
        mapping = await resolver.resolve("cat-software")
        assert mapping.destination_account_code == "485"

    @pytest.mark.asyncio
    async def test_clear_drops_cache(self, ledger, accounts):
        resolver = MappingResolver(ledger, accounts)
        await resolver.resolve("cat-office")
        resolver.clear()
        await resolver.resolve("cat-office")
        assert accounts.lookups == ["Office Supplies", "Office Supplies"]
