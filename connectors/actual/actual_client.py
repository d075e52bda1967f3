"""Actual Budget HTTP Client.

Talks to the ledger server's REST bridge. Handles password login, budget
loading, pagination and error handling.

Pinned response contract: every endpoint answers
`{"data": <payload>, "next_cursor": <str|null>}`. Anything else fails fast
with ClientRequestError("unexpected response shape ...").
"""

import asyncio
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

import aiohttp

from connectors.actual.actual_models import (
    ActualBudgetFile,
    ActualCategory,
    ActualCategoryGroup,
    ActualTransaction,
)
from connectors.base import (
    AuthenticationFailure,
    ClientRequestError,
    Credential,
    NotFound,
    Page,
    paginate,
)
from connectors.http import HttpTransport
from connectors.resilience import RetryConfig, call_with_retries
from core.models.sync import LedgerTransaction
from core.observability.logging import get_logger

logger = get_logger(__name__)

TOKEN_HEADER = "X-ACTUAL-TOKEN"


@dataclass
class ActualConfig:
    """Ledger server connection settings.

    Attributes:
        base_url: Server URL, e.g. http://actual.local:5006
        password: Server password exchanged for a session token
        budget_id: Budget file (sync id) to load
    """
    base_url: str
    password: str
    budget_id: Optional[str] = None
    timeout_seconds: float = 30.0
    retry: RetryConfig = field(default_factory=RetryConfig)


class ActualClient:
    """Ledger client.

    Usage:
        client = ActualClient(ActualConfig(base_url=..., password=..., budget_id=...))
        await client.authenticate()
        await client.load_budget()
        page = await client.list_transactions(since, until, reconciled=True)
    """

    def __init__(
        self,
        config: ActualConfig,
        session: Optional[aiohttp.ClientSession] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.config = config
        self.transport = HttpTransport(
            config.base_url,
            timeout_seconds=config.timeout_seconds,
            session=session,
            name="actual",
        )
        self._sleep = sleep
        self._credential: Optional[Credential] = None
        self.budget_id: Optional[str] = None

    @property
    def is_authenticated(self) -> bool:
        return self._credential is not None

    # =========================================================================
    # Capability interface
    # =========================================================================

    async def authenticate(self) -> Credential:
        """Exchange the server password for a session token."""
        async def attempt():
            return await self.transport.send(
                "POST", "/account/login", json={"password": self.config.password}
            )

        logger.info("Authenticating with ledger server")
        # No reauthenticate hook: a 401 here surfaces as AuthenticationFailure.
        body = await call_with_retries(
            attempt, self.config.retry, sleep=self._sleep, operation="actual login"
        )

        data, _ = self._unwrap(body, "/account/login")
        token = data.get("token") if isinstance(data, dict) else None
        if not token:
            self._credential = None
            raise AuthenticationFailure("actual: no token in login response")

        self._credential = Credential(token=token, token_type="Token")
        logger.info("Authenticated with ledger server")
        return self._credential

    async def request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """Authenticated call returning the raw decoded body."""
        if self._credential is None:
            await self.authenticate()

        async def attempt():
            return await self.transport.send(
                method,
                path,
                headers={TOKEN_HEADER: self._credential.token},
                params=params,
                json=json,
            )

        return await call_with_retries(
            attempt,
            self.config.retry,
            reauthenticate=self.authenticate,
            sleep=self._sleep,
            operation=f"actual {method} {path}",
        )

    async def close(self) -> None:
        await self.transport.close()

    # =========================================================================
    # Helpers
    # =========================================================================

    @staticmethod
    def _unwrap(body: Any, path: str) -> Tuple[Any, Optional[str]]:
        """Split a `{"data", "next_cursor"}` envelope."""
        if not isinstance(body, dict) or "data" not in body:
            raise ClientRequestError(f"actual: unexpected response shape from {path}: missing 'data'")
        return body["data"], body.get("next_cursor")

    async def _get_data(self, path: str, params: Optional[Dict[str, Any]] = None) -> Tuple[Any, Optional[str]]:
        body = await self.request("GET", path, params=params)
        return self._unwrap(body, path)

    def _require_budget(self) -> None:
        if not self.budget_id:
            raise NotFound("actual: no budget loaded; call load_budget() first")

    @staticmethod
    def _expect_list(data: Any, path: str) -> List[Dict[str, Any]]:
        if not isinstance(data, list):
            raise ClientRequestError(f"actual: unexpected response shape from {path}: expected a list")
        return data

    # =========================================================================
    # Budgets
    # =========================================================================

    async def list_budgets(self) -> List[ActualBudgetFile]:
        data, _ = await self._get_data("/sync/list-user-files")
        files = [ActualBudgetFile.model_validate(item) for item in self._expect_list(data, "/sync/list-user-files")]
        return [f for f in files if not f.deleted]

    async def load_budget(self, budget_id: Optional[str] = None) -> str:
        """Load a budget file. Every budget-scoped call requires one.

        Raises:
            NotFound: the budget does not exist on the server
        """
        budget_id = budget_id or self.config.budget_id
        if not budget_id:
            raise NotFound("actual: no budget id configured")

        logger.info(f"Loading budget: {budget_id}")
        body = await self.request("POST", "/sync/load-user-file", json={"fileId": budget_id})
        self._unwrap(body, "/sync/load-user-file")
        self.budget_id = budget_id
        return budget_id

    # =========================================================================
    # Categories
    # =========================================================================

    async def list_category_groups(self) -> List[ActualCategoryGroup]:
        self._require_budget()
        data, _ = await self._get_data("/api/category-groups")
        groups = [ActualCategoryGroup.model_validate(g) for g in self._expect_list(data, "/api/category-groups")]
        logger.debug(f"Retrieved {len(groups)} category groups")
        return groups

    async def find_category_group(self, name: str) -> Optional[ActualCategoryGroup]:
        """Category group with exactly this name, or None."""
        for group in await self.list_category_groups():
            if group.name == name:
                return group
        logger.warning(f"Category group {name!r} not found")
        return None

    async def list_categories(
        self,
        group_id: Optional[str] = None,
        cursor: Optional[str] = None,
    ) -> Page[ActualCategory]:
        self._require_budget()
        data, next_cursor = await self._get_data(
            "/api/categories", params={"group": group_id, "cursor": cursor}
        )
        categories = [ActualCategory.model_validate(c) for c in self._expect_list(data, "/api/categories")]
        if group_id:
            categories = [c for c in categories if c.group_id == group_id]
        return Page(items=categories, next_cursor=next_cursor)

    async def get_category(self, category_id: str) -> ActualCategory:
        self._require_budget()
        path = f"/api/categories/{category_id}"
        data, _ = await self._get_data(path)
        if not isinstance(data, dict):
            raise ClientRequestError(f"actual: unexpected response shape from {path}: expected an object")
        return ActualCategory.model_validate(data)

    async def category_ids_in_group(self, group_id: str) -> List[str]:
        return [c.id for c in await paginate(self.list_categories, group_id=group_id)]

    # =========================================================================
    # Transactions
    # =========================================================================

    async def list_transactions(
        self,
        since: date,
        until: date,
        cleared: Optional[bool] = None,
        reconciled: Optional[bool] = None,
        cursor: Optional[str] = None,
    ) -> Page[LedgerTransaction]:
        self._require_budget()
        params = {
            "since": since.isoformat(),
            "until": until.isoformat(),
            "cleared": cleared,
            "reconciled": reconciled,
            "cursor": cursor,
        }
        data, next_cursor = await self._get_data("/api/transactions", params=params)
        transactions = [
            ActualTransaction.model_validate(t).to_ledger()
            for t in self._expect_list(data, "/api/transactions")
        ]
        return Page(items=transactions, next_cursor=next_cursor)

    async def get_transaction(self, transaction_id: str) -> LedgerTransaction:
        """Fetch one transaction. Raises NotFound if it no longer exists."""
        self._require_budget()
        path = f"/api/transactions/{transaction_id}"
        data, _ = await self._get_data(path)
        if not isinstance(data, dict):
            raise ClientRequestError(f"actual: unexpected response shape from {path}: expected an object")
        return ActualTransaction.model_validate(data).to_ledger()

    async def update_notes(self, transaction_id: str, notes: str) -> None:
        """Replace the notes of a transaction.

        Callers merge markers into the current notes first; this call does
        not read or merge anything.
        """
        self._require_budget()
        path = f"/api/transactions/{transaction_id}"
        body = await self.request("PATCH", path, json={"notes": notes})
        self._unwrap(body, path)
        logger.debug(f"Updated notes for transaction {transaction_id}")
