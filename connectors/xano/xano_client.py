"""Xano HTTP Client.

Staging store between the ledger and the accounting system. Every attempt,
including retries and the auth check, takes a token from a TokenBucket sized
to the configured requests-per-minute quota.

Pinned response contract: single records are returned as the record object,
lists as `{"items": [...], "next_cursor": <str|null>}`.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional

import aiohttp

from connectors.base import ClientRequestError, Credential, NotFound, Page
from connectors.http import HttpTransport
from connectors.resilience import RetryConfig, TokenBucket, call_with_retries, rate_limited
from connectors.xano.xano_models import XanoStagedRecord
from core.models.sync import StagedRecord, StagedStatus
from core.observability.logging import get_logger

logger = get_logger(__name__)


@dataclass
class XanoConfig:
    """Staging store connection settings."""
    base_url: str
    api_key: str
    rate_limit_per_minute: int = 10
    timeout_seconds: float = 30.0
    retry: RetryConfig = field(default_factory=RetryConfig)


class XanoClient:
    """Rate-limited staging store client.

    Usage:
        client = XanoClient(XanoConfig(base_url=..., api_key=..., rate_limit_per_minute=10))
        await client.upsert_staged_record(record)
    """

    def __init__(
        self,
        config: XanoConfig,
        session: Optional[aiohttp.ClientSession] = None,
        bucket: Optional[TokenBucket] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.config = config
        self.transport = HttpTransport(
            config.base_url,
            timeout_seconds=config.timeout_seconds,
            session=session,
            name="xano",
        )
        self.bucket = bucket or TokenBucket(config.rate_limit_per_minute)
        self._sleep = sleep
        self._credential: Optional[Credential] = None

    def _headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.config.api_key}"}

    async def _call(self, method: str, path: str, reauthenticate=None, **kwargs) -> Any:
        async def attempt():
            return await self.transport.send(method, path, headers=self._headers(), **kwargs)

        return await call_with_retries(
            rate_limited(self.bucket, attempt),
            self.config.retry,
            reauthenticate=reauthenticate,
            sleep=self._sleep,
            operation=f"xano {method} {path}",
        )

    # =========================================================================
    # Capability interface
    # =========================================================================

    async def authenticate(self) -> Credential:
        """Verify the API key. A rejected key raises AuthenticationFailure."""
        await self._call("GET", "/auth/me")
        self._credential = Credential(token=self.config.api_key)
        logger.info("Authenticated with staging store")
        return self._credential

    async def request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
    ) -> Any:
        return await self._call(method, path, reauthenticate=self.authenticate, params=params, json=json)

    async def close(self) -> None:
        await self.transport.close()

    # =========================================================================
    # Staged records
    # =========================================================================

    @staticmethod
    def _parse_record(body: Any, path: str) -> StagedRecord:
        if not isinstance(body, dict):
            raise ClientRequestError(f"xano: unexpected response shape from {path}: expected an object")
        return XanoStagedRecord.model_validate(body).to_staged()

    async def upsert_staged_record(self, record: StagedRecord) -> StagedRecord:
        """Create or replace the staged record for record.transaction_id."""
        path = "/staged_records"
        payload = XanoStagedRecord.from_staged(record).to_payload()
        body = await self.request("POST", path, json=payload)
        logger.debug(f"Staged transaction {record.transaction_id}")
        return self._parse_record(body, path)

    async def get_staged_record(self, transaction_id: str) -> Optional[StagedRecord]:
        path = f"/staged_records/{transaction_id}"
        try:
            body = await self.request("GET", path)
        except NotFound:
            return None
        return self._parse_record(body, path)

    async def update_staged_status(
        self,
        transaction_id: str,
        status: StagedStatus,
        accounting_ref: Optional[str] = None,
    ) -> StagedRecord:
        path = f"/staged_records/{transaction_id}"
        payload: Dict[str, Any] = {"status": status.value}
        if accounting_ref is not None:
            payload["xero_ref"] = accounting_ref
        body = await self.request("PATCH", path, json=payload)
        return self._parse_record(body, path)

    async def list_staged_records(
        self,
        status: Optional[StagedStatus] = None,
        cursor: Optional[str] = None,
    ) -> Page[StagedRecord]:
        path = "/staged_records"
        body = await self.request(
            "GET", path, params={"status": status.value if status else None, "cursor": cursor}
        )
        if not isinstance(body, dict) or not isinstance(body.get("items"), list):
            raise ClientRequestError(f"xano: unexpected response shape from {path}: missing 'items'")
        records = [XanoStagedRecord.model_validate(item).to_staged() for item in body["items"]]
        return Page(items=records, next_cursor=body.get("next_cursor"))
