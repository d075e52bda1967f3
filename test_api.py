"""HTTP trigger and status endpoints."""

from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient

from conftest import make_tx
from api.server import create_app
from core.models.sync import RetryItem, RetryState, Stage
from sync_engine.engine import SyncEngine


@pytest.fixture
def engine(settings, ledger, store, accounting):
    ledger.transactions["tx-1"] = make_tx("tx-1")
    return SyncEngine(settings, ledger, store, accounting)


@pytest.fixture
def client(engine):
    with TestClient(create_app(engine)) as client:
        yield client


def abandoned_item(engine, tx_id="tx-9") -> RetryItem:
    now = datetime(2024, 2, 1, tzinfo=timezone.utc)
    return engine.retry_queue.add(RetryItem(
        transaction_id=tx_id,
        stage=Stage.POSTING,
        attempts=3,
        last_error="accounting down",
        next_eligible_at=now,
        state=RetryState.ABANDONED,
        created_at=now,
        updated_at=now,
    ))


class TestHealth:
    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["services"]["sync_engine"] == "idle"

    def test_live(self, client):
        assert client.get("/live").json() == {"status": "alive"}

    def test_config_status_hides_secrets(self, client):
        response = client.get("/config/status")
        assert response.status_code == 200
        body = response.json()
        assert body["xano_rate_limit"] == 10
        assert body["actual_configured"] and body["xano_configured"] and body["xero_configured"]
        assert "secret" not in response.text
        assert "client-secret" not in response.text

    def test_engine_missing_is_503(self):
        client = TestClient(create_app())
        assert client.get("/health").status_code == 503


class TestSyncRoutes:
    def test_trigger_with_window(self, client):
        response = client.post("/sync/trigger", json={"since": "2024-01-01", "until": "2024-01-31"})
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "completed"
        assert body["processed"] == 1
        assert body["posted"] == 1
        assert body["window_start"] == "2024-01-01"

    def test_trigger_without_body_uses_default_window(self, client):
        response = client.post("/sync/trigger")
        assert response.status_code == 200
        assert response.json()["processed"] == 0

    def test_inverted_window_is_rejected(self, client):
        response = client.post("/sync/trigger", json={"since": "2024-02-01", "until": "2024-01-01"})
        assert response.status_code == 422

    def test_trigger_while_running_is_409(self, client, engine):
        assert engine.lock.try_acquire()
        response = client.post("/sync/trigger", json={"since": "2024-01-01", "until": "2024-01-31"})
        assert response.status_code == 409

    def test_status_reports_last_summary(self, client):
        assert client.get("/sync/status").json()["last_summary"] is None

        client.post("/sync/trigger", json={"since": "2024-01-01", "until": "2024-01-31"})
        body = client.get("/sync/status").json()

        assert body["state"] == "idle"
        assert body["current"] is None
        assert body["last_summary"]["posted"] == 1

    def test_abandoned_retries_and_acknowledge(self, client, engine):
        item = abandoned_item(engine)

        listed = client.get("/sync/retries/abandoned").json()
        assert [i["transaction_id"] for i in listed] == ["tx-9"]
        assert listed[0]["last_error"] == "accounting down"

        response = client.post(f"/sync/retries/{item.id}/acknowledge")
        assert response.status_code == 200
        assert response.json() == {"id": item.id, "state": "acknowledged"}
        assert client.get("/sync/retries/abandoned").json() == []

        assert client.post(f"/sync/retries/{item.id}/acknowledge").status_code == 409

    def test_acknowledge_unknown_item_is_404(self, client):
        assert client.post("/sync/retries/999/acknowledge").status_code == 404

    def test_shutdown_without_run(self, client):
        assert client.post("/sync/shutdown").json() == {"draining": False}
