"""Shared test fixtures.

Two kinds of fakes:
- FakeSession stands in for aiohttp.ClientSession, so connector tests run the
  real request building, retry and status classification code.
- FakeLedger / FakeStore / FakeAccounting are in-memory systems with the
  connector clients' typed operations, for engine-level tests.
"""

import json
from datetime import date
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Tuple
from urllib.parse import urlsplit

import pytest

from connectors.actual.actual_models import ActualCategory, ActualCategoryGroup
from connectors.base import NotFound, Page, ServerError
from connectors.xero.xero_models import XeroAccount, document_type_for
from core.config import SyncSettings
from core.models.sync import AccountingDocumentRef, LedgerTransaction, StagedRecord, StagedStatus


# =============================================================================
# aiohttp session fake
# =============================================================================

class FakeResponse:
    def __init__(self, status: int = 200, body: Any = None, headers: Optional[Dict[str, str]] = None):
        self.status = status
        self.headers = headers or {}
        if body is None:
            self._text = ""
        elif isinstance(body, str):
            self._text = body
        else:
            self._text = json.dumps(body)

    async def text(self) -> str:
        return self._text

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False


class FakeSession:
    """Routes (method, path suffix) to queued responses.

    Each route holds a list of responses consumed in order; the last one is
    repeated. A response may be a FakeResponse, an exception instance (raised
    from request()) or a callable taking the recorded call.
    """

    def __init__(self):
        self.closed = False
        self.calls: List[Dict[str, Any]] = []
        self._routes: Dict[Tuple[str, str], List[Any]] = {}

    def add(self, method: str, path: str, *responses: Any) -> "FakeSession":
        self._routes.setdefault((method.upper(), path), []).extend(responses)
        return self

    def calls_to(self, method: str, path: str) -> List[Dict[str, Any]]:
        return [c for c in self.calls if c["method"] == method.upper() and c["path"].endswith(path)]

    def request(self, method, url, headers=None, params=None, json=None, data=None, timeout=None):
        path = urlsplit(url).path
        call = {
            "method": method.upper(),
            "url": url,
            "path": path,
            "headers": dict(headers or {}),
            "params": params,
            "json": json,
            "data": data,
        }
        self.calls.append(call)

        matches = [
            key for key in self._routes
            if key[0] == call["method"] and path.endswith(key[1])
        ]
        if not matches:
            return FakeResponse(404, {"message": f"no route for {method} {path}"})
        key = max(matches, key=lambda k: len(k[1]))
        queue = self._routes[key]
        response = queue.pop(0) if len(queue) > 1 else queue[0]

        if isinstance(response, BaseException):
            raise response
        if callable(response):
            response = response(call)
        return response

    async def close(self):
        self.closed = True


@pytest.fixture
def session() -> FakeSession:
    return FakeSession()


class SleepRecorder:
    """Async sleep replacement that records requested delays."""

    def __init__(self, clock: Optional["FakeClock"] = None):
        self.delays: List[float] = []
        self.clock = clock

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)
        if self.clock is not None:
            self.clock.advance(seconds)


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sleeper(fake_clock) -> SleepRecorder:
    return SleepRecorder(fake_clock)


# =============================================================================
# In-memory external systems
# =============================================================================

def make_tx(
    tx_id: str,
    day: date = date(2024, 1, 15),
    amount: str = "-42.50",
    category_id: Optional[str] = "cat-office",
    notes: str = "",
    cleared: bool = True,
    reconciled: bool = True,
    payee_name: Optional[str] = "Acme Supplies",
) -> LedgerTransaction:
    return LedgerTransaction(
        id=tx_id,
        date=day,
        amount=Decimal(amount),
        payee_id=f"payee-{tx_id}",
        payee_name=payee_name,
        category_id=category_id,
        notes=notes,
        cleared=cleared,
        reconciled=reconciled,
    )


class FakeLedger:
    page_size = 2

    def __init__(self, transactions=(), categories=None, groups=None, budget_exists: bool = True):
        self.transactions: Dict[str, LedgerTransaction] = {tx.id: tx for tx in transactions}
        self.categories: Dict[str, ActualCategory] = {c.id: c for c in (categories or [])}
        self.groups: List[ActualCategoryGroup] = list(groups or [])
        self.budget_exists = budget_exists
        self.loaded_budget: Optional[str] = None
        self.note_updates: List[Tuple[str, str]] = []
        self.failures: Dict[str, Exception] = {}

    def _maybe_fail(self, operation: str) -> None:
        if operation in self.failures:
            raise self.failures[operation]

    async def load_budget(self, budget_id: Optional[str] = None) -> str:
        if not self.budget_exists:
            raise NotFound(f"budget {budget_id} not found", 404)
        self.loaded_budget = budget_id
        return budget_id

    async def find_category_group(self, name: str):
        for group in self.groups:
            if group.name == name:
                return group
        return None

    async def category_ids_in_group(self, group_id: str) -> List[str]:
        return [c.id for c in self.categories.values() if c.group_id == group_id]

    async def list_transactions(self, since, until, cleared=None, reconciled=None, cursor=None) -> Page:
        self._maybe_fail("list_transactions")
        matching = [
            tx for tx in self.transactions.values()
            if since <= tx.date <= until
            and (cleared is None or tx.cleared == cleared)
            and (reconciled is None or tx.reconciled == reconciled)
        ]
        start = int(cursor or 0)
        end = start + self.page_size
        next_cursor = str(end) if end < len(matching) else None
        return Page(items=matching[start:end], next_cursor=next_cursor)

    async def get_transaction(self, transaction_id: str) -> LedgerTransaction:
        if transaction_id not in self.transactions:
            raise NotFound(f"transaction {transaction_id} not found", 404)
        return self.transactions[transaction_id].model_copy()

    async def get_category(self, category_id: str) -> ActualCategory:
        self._maybe_fail("get_category")
        if category_id not in self.categories:
            raise NotFound(f"category {category_id} not found", 404)
        return self.categories[category_id]

    async def update_notes(self, transaction_id: str, notes: str) -> None:
        self._maybe_fail("update_notes")
        self.note_updates.append((transaction_id, notes))
        tx = self.transactions[transaction_id]
        self.transactions[transaction_id] = tx.model_copy(update={"notes": notes})

    async def close(self) -> None:
        pass


class FakeStore:
    def __init__(self):
        self.records: Dict[str, StagedRecord] = {}
        self.fail_upsert: Dict[str, Exception] = {}
        self.upserts: List[str] = []

    async def upsert_staged_record(self, record: StagedRecord) -> StagedRecord:
        self.upserts.append(record.transaction_id)
        if record.transaction_id in self.fail_upsert:
            raise self.fail_upsert[record.transaction_id]
        self.records[record.transaction_id] = record
        return record

    async def get_staged_record(self, transaction_id: str) -> Optional[StagedRecord]:
        return self.records.get(transaction_id)

    async def update_staged_status(self, transaction_id, status: StagedStatus, accounting_ref=None) -> StagedRecord:
        record = self.records[transaction_id].model_copy(update={
            "status": status,
            "accounting_ref": accounting_ref or self.records[transaction_id].accounting_ref,
        })
        self.records[transaction_id] = record
        return record

    async def close(self) -> None:
        pass


class FakeAccounting:
    def __init__(self, accounts=()):
        self.accounts: List[XeroAccount] = list(accounts)
        self.documents: Dict[str, AccountingDocumentRef] = {}
        self.fail_create: Dict[str, Exception] = {}
        self.created: List[StagedRecord] = []
        self.before_create: Optional[Callable] = None

    async def find_accounts_by_name(self, name: str) -> List[XeroAccount]:
        return [a for a in self.accounts if a.name == name]

    async def find_document_by_reference(self, reference: str) -> Optional[AccountingDocumentRef]:
        return self.documents.get(reference)

    async def create_document(self, record: StagedRecord) -> AccountingDocumentRef:
        if self.before_create is not None:
            await self.before_create(record)
        if record.transaction_id in self.fail_create:
            raise self.fail_create[record.transaction_id]
        self.created.append(record)
        ref = AccountingDocumentRef(
            document_id=f"inv-{record.transaction_id}",
            document_type=document_type_for(record.amount),
            reference=record.transaction_id,
            document_number=f"INV-{len(self.created):04d}",
            status="AUTHORISED",
        )
        self.documents[record.transaction_id] = ref
        return ref

    async def close(self) -> None:
        pass


def account(name: str, code: str, account_id: Optional[str] = None) -> XeroAccount:
    return XeroAccount(AccountID=account_id or f"acc-{code}", Code=code, Name=name, Status="ACTIVE")


def category(category_id: str, name: str, group_id: str = "grp-business") -> ActualCategory:
    return ActualCategory(id=category_id, name=name, cat_group=group_id)


@pytest.fixture
def settings(tmp_path) -> SyncSettings:
    return SyncSettings(
        actual_budget_url="http://ledger.test",
        actual_budget_password="secret",
        actual_budget_sync_id="budget-1",
        xano_api_url="https://store.test",
        xano_api_key="key",
        xero_client_id="client",
        xero_client_secret="client-secret",
        xero_tenant_id="tenant-1",
        worker_concurrency=2,
        retry_max_attempts=3,
        retry_base_delay_seconds=60.0,
        retry_max_delay_seconds=3600.0,
        shutdown_grace_seconds=1.0,
        db_path=tmp_path / "sync.db",
    )


@pytest.fixture
def ledger() -> FakeLedger:
    return FakeLedger(
        categories=[
            category("cat-office", "Office Supplies"),
            category("cat-travel", "Travel"),
            category("cat-software", "Software"),
            category("cat-groceries", "Groceries", group_id="grp-personal"),
        ],
        groups=[
            ActualCategoryGroup(id="grp-business", name="Business"),
            ActualCategoryGroup(id="grp-personal", name="Personal"),
        ],
    )


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def accounting() -> FakeAccounting:
    return FakeAccounting(accounts=[
        account("Office Supplies", "461"),
        account("Travel", "493"),
        account("Software", "485"),
    ])


@pytest.fixture
def january_window():
    from core.models.sync import SyncWindow
    return SyncWindow(since=date(2024, 1, 1), until=date(2024, 1, 31))


@pytest.fixture
def transient_error():
    return ServerError("store unavailable", 503)
