"""Xero HTTP Client.

Accounting API client scoped to one tenant (the `xero-tenant-id` header).
Handles token refresh, pagination and error handling; documents are created
with the ledger transaction id as their Reference so a repeated post can find
the existing document first.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

import aiohttp

from connectors.base import ClientRequestError, Credential, Page, paginate
from connectors.http import HttpTransport
from connectors.resilience import RetryConfig, call_with_retries
from connectors.xero.xero_auth import XeroAuthConfig, XeroAuthProvider
from connectors.xero.xero_models import (
    XeroAccount,
    XeroInvoice,
    build_invoice_payload,
    parse_invoices,
)
from core.models.sync import AccountingDocumentRef, StagedRecord
from core.observability.logging import get_logger

logger = get_logger(__name__)

API_BASE_URL = "https://api.xero.com/api.xro/2.0"
INVOICE_PAGE_SIZE = 100


def _where_equals(field_name: str, value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'{field_name}=="{escaped}"'


@dataclass
class XeroApiConfig:
    """Accounting API settings."""
    base_url: str = API_BASE_URL
    timeout_seconds: float = 30.0
    retry: RetryConfig = field(default_factory=RetryConfig)


class XeroClient:
    """Accounting client.

    Usage:
        client = XeroClient(XeroAuthConfig(client_id=..., client_secret=..., tenant_id=...))
        accounts = await client.find_accounts_by_name("Office Supplies")
        ref = await client.create_document(staged_record)
    """

    def __init__(
        self,
        auth_config: XeroAuthConfig,
        api_config: Optional[XeroApiConfig] = None,
        session: Optional[aiohttp.ClientSession] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.api_config = api_config or XeroApiConfig()
        self.tenant_id = auth_config.tenant_id
        self.auth = XeroAuthProvider(auth_config, session=session, sleep=sleep)
        self.transport = HttpTransport(
            self.api_config.base_url,
            timeout_seconds=self.api_config.timeout_seconds,
            session=session,
            name="xero",
        )
        self._sleep = sleep

    # =========================================================================
    # Capability interface
    # =========================================================================

    async def authenticate(self) -> Credential:
        """Fetch a fresh access token."""
        return await self.auth.fetch_token()

    async def request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
    ) -> Any:
        await self.auth.ensure_valid_token()

        async def attempt():
            return await self.transport.send(
                method,
                path,
                headers={
                    "Authorization": self.auth.credential.authorization_header,
                    "xero-tenant-id": self.tenant_id,
                    "Accept": "application/json",
                },
                params=params,
                json=json,
            )

        return await call_with_retries(
            attempt,
            self.api_config.retry,
            reauthenticate=self.authenticate,
            sleep=self._sleep,
            operation=f"xero {method} {path}",
        )

    async def close(self) -> None:
        await self.transport.close()
        await self.auth.close()

    # =========================================================================
    # Accounts
    # =========================================================================

    async def list_accounts(
        self,
        name: Optional[str] = None,
        cursor: Optional[str] = None,
    ) -> Page[XeroAccount]:
        """Chart of accounts, optionally filtered by name.

        /Accounts is not paginated by Xero; the whole result is one page.
        """
        params = {"where": _where_equals("Name", name)} if name is not None else None
        body = await self.request("GET", "/Accounts", params=params)
        if not isinstance(body, dict) or not isinstance(body.get("Accounts"), list):
            raise ClientRequestError("xero: unexpected response shape from /Accounts: missing 'Accounts'")
        accounts = [XeroAccount.model_validate(a) for a in body["Accounts"]]
        return Page(items=accounts, next_cursor=None)

    async def find_accounts_by_name(self, name: str) -> List[XeroAccount]:
        """Non-archived accounts whose name equals `name` exactly (case-sensitive)."""
        accounts = await paginate(self.list_accounts, name=name)
        return [a for a in accounts if a.name == name and a.status != "ARCHIVED"]

    # =========================================================================
    # Invoices and bills
    # =========================================================================

    async def list_documents(
        self,
        where: Optional[str] = None,
        cursor: Optional[str] = None,
    ) -> Page[XeroInvoice]:
        page = int(cursor) if cursor else 1
        body = await self.request("GET", "/Invoices", params={"where": where, "page": page})
        invoices = parse_invoices(body)
        next_cursor = str(page + 1) if len(invoices) >= INVOICE_PAGE_SIZE else None
        return Page(items=invoices, next_cursor=next_cursor)

    async def find_document_by_reference(self, reference: str) -> Optional[AccountingDocumentRef]:
        """Live (not deleted or voided) document whose Reference is `reference`."""
        invoices = await paginate(self.list_documents, where=_where_equals("Reference", reference))
        for invoice in invoices:
            if invoice.reference == reference and not invoice.is_void:
                return invoice.to_ref()
        return None

    async def create_document(self, record: StagedRecord) -> AccountingDocumentRef:
        """Create an ACCPAY bill (outflow) or ACCREC invoice (inflow)."""
        if not record.destination_account_code:
            raise ClientRequestError(
                f"xero: staged record {record.transaction_id} has no destination account code"
            )

        payload = build_invoice_payload(record)
        body = await self.request("POST", "/Invoices", json={"Invoices": [payload]})
        invoices = parse_invoices(body)
        if not invoices:
            raise ClientRequestError("xero: unexpected response shape from /Invoices: no invoice returned")

        ref = invoices[0].to_ref()
        logger.info(
            f"Created {ref.document_type} {ref.document_number or ref.document_id} "
            f"for transaction {record.transaction_id}"
        )
        return ref
