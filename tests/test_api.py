"""Integration tests for the HTTP surface.

Uses the in-memory FakeMonday / FakeSimpro doubles wired into a real
service graph and httpx AsyncClient over ASGITransport. The lifespan does
not run under ASGITransport, so ``app.state.services`` is set directly.
"""

from __future__ import annotations

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from src.quotesync.api.deps import Services
from src.quotesync.core.security import SIGNATURE_HEADER, compute_signature
from src.quotesync.main import create_app
from src.quotesync.sync.dedup import DebounceCache, ExistenceCache
from src.quotesync.sync.resolver import BoardScanResolver
from src.quotesync.sync.source import QuoteSource
from src.quotesync.sync.upsert import DealUpserter
from src.quotesync.sync.webhooks import WebhookService
from tests.fakes import DEAL_COLUMNS, DEALS, build_sync_service

CRON_AUTH = {"Authorization": "Bearer cron-secret"}


def _services(monday, simpro, clock) -> Services:
    sync = build_sync_service(monday, simpro)
    webhooks = WebhookService(
        sync,
        QuoteSource(simpro),
        DealUpserter(monday, BoardScanResolver(monday), DEAL_COLUMNS),
        monday,
        DebounceCache(30, clock),
        ExistenceCache(300, clock),
        sleep=clock.sleep,
    )
    return Services(simpro=simpro, monday=monday, sync=sync, webhooks=webhooks)


@pytest.fixture
def app(sync_env, monday, simpro, clock):
    application = create_app()
    application.state.services = _services(monday, simpro, clock)
    return application


@pytest_asyncio.fixture
async def client(app):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


def _signed(payload: dict, secret: str = "hook-secret") -> tuple[bytes, dict]:
    body = json.dumps(payload).encode()
    return body, {SIGNATURE_HEADER: compute_signature(body, secret), "Content-Type": "application/json"}


QUOTE_CREATED = {"ID": "quote.created", "reference": {"companyID": 2, "quoteID": 501}}


# ── Health ────────────────────────────────────────────────────────────────────


class TestHealth:
    @pytest.mark.asyncio
    async def test_liveness(self, client):
        response = await client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok", "environment": "development"}
        assert response.headers["X-Request-ID"]

    @pytest.mark.asyncio
    async def test_request_id_is_echoed(self, client):
        response = await client.get("/health", headers={"X-Request-ID": "abc-123"})
        assert response.headers["X-Request-ID"] == "abc-123"

    @pytest.mark.asyncio
    async def test_ready(self, client):
        response = await client.get("/health/ready")
        assert response.status_code == 200
        assert response.json()["status"] == "ready"

    @pytest.mark.asyncio
    async def test_degraded(self, client, monday):
        monday.healthy = False
        response = await client.get("/health/ready")
        assert response.status_code == 503
        assert response.json()["status"] == "degraded"

    @pytest.mark.asyncio
    async def test_unconfigured(self, app, client, monkeypatch):
        monkeypatch.setenv("MONDAY_API_TOKEN", "")
        app.state.services = None
        response = await client.get("/health/ready")
        assert response.status_code == 503
        assert response.json() == {"status": "unconfigured", "missing_settings": ["MONDAY_API_TOKEN"]}


# ── Cron ──────────────────────────────────────────────────────────────────────


class TestCron:
    @pytest.mark.asyncio
    async def test_requires_bearer_secret(self, client):
        assert (await client.post("/cron/sync-quotes")).status_code == 401
        assert (await client.get("/cron/sync-quotes", headers={"Authorization": "Bearer no"})).status_code == 401

    @pytest.mark.asyncio
    @pytest.mark.parametrize("method", ["GET", "POST"])
    async def test_batch_sync(self, client, monday, method):
        response = await client.request(method, "/cron/sync-quotes", headers=CRON_AUTH)
        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["metrics"]["deals_created"] == 1
        assert len(monday.boards[DEALS]) == 1

    @pytest.mark.asyncio
    async def test_limit_must_be_positive(self, client):
        response = await client.post("/cron/sync-quotes?limit=0", headers=CRON_AUTH)
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_health_failure_is_503(self, client, simpro):
        simpro.healthy = False
        response = await client.post("/cron/sync-quotes", headers=CRON_AUTH)
        assert response.status_code == 503
        assert response.json()["reason"] == "health_check_failed"

    @pytest.mark.asyncio
    async def test_deadline_is_504(self, app, client, monkeypatch):
        monkeypatch.setenv("SYNC_DEADLINE_SECONDS", "0.01")

        async def slow_sync(limit=None):
            await asyncio.sleep(1)

        sync = MagicMock()
        sync.sync_all = AsyncMock(side_effect=slow_sync)
        app.state.services.sync = sync

        response = await client.post("/cron/sync-quotes", headers=CRON_AUTH)
        assert response.status_code == 504
        assert response.json()["success"] is False

    @pytest.mark.asyncio
    async def test_single_quote(self, client, monday):
        response = await client.post("/cron/sync-quotes/501", headers=CRON_AUTH)
        assert response.status_code == 200
        assert response.json()["deal_item_id"] == monday.boards[DEALS][0]["id"]

    @pytest.mark.asyncio
    async def test_unconfigured_services_is_503(self, app, client):
        app.state.services = None
        response = await client.post("/cron/sync-quotes", headers=CRON_AUTH)
        assert response.status_code == 503


# ── simPRO webhook ────────────────────────────────────────────────────────────


class TestSimproWebhook:
    @pytest.mark.asyncio
    async def test_valid_delivery_is_processed(self, client, monday):
        body, headers = _signed(QUOTE_CREATED)
        response = await client.post("/webhooks/simpro", content=body, headers=headers)
        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["action"] == "created"
        assert data["quote_id"] == 501
        assert len(monday.boards[DEALS]) == 1

    @pytest.mark.asyncio
    async def test_missing_signature_is_401(self, client, monday):
        body, _ = _signed(QUOTE_CREATED)
        response = await client.post("/webhooks/simpro", content=body)
        assert response.status_code == 401
        assert response.json()["error"] == "Missing signature"
        assert monday.calls == []

    @pytest.mark.asyncio
    async def test_bad_signature_is_401(self, client, monday):
        body, _ = _signed(QUOTE_CREATED)
        _, headers = _signed(QUOTE_CREATED, secret="wrong")
        response = await client.post("/webhooks/simpro", content=body, headers=headers)
        assert response.status_code == 401
        assert monday.calls == []

    @pytest.mark.asyncio
    async def test_unconfigured_secret_is_500(self, client, monkeypatch):
        monkeypatch.setenv("SIMPRO_WEBHOOK_SECRET", "")
        body, headers = _signed(QUOTE_CREATED)
        response = await client.post("/webhooks/simpro", content=body, headers=headers)
        assert response.status_code == 500

    @pytest.mark.asyncio
    async def test_missing_references_is_400(self, client):
        body, headers = _signed({"ID": "quote.created", "reference": {"companyID": 2}})
        response = await client.post("/webhooks/simpro", content=body, headers=headers)
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_non_json_body_is_400(self, client):
        body = b"not json"
        headers = {SIGNATURE_HEADER: compute_signature(body, "hook-secret")}
        response = await client.post("/webhooks/simpro", content=body, headers=headers)
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_non_quote_event_is_acknowledged(self, client):
        body, headers = _signed({"ID": "job.created", "reference": {"jobID": 7}})
        response = await client.post("/webhooks/simpro", content=body, headers=headers)
        assert response.status_code == 200
        assert response.json()["action"] == "ignored"


# ── monday webhook ────────────────────────────────────────────────────────────


class TestMondayWebhook:
    @pytest.mark.asyncio
    async def test_challenge_is_echoed(self, client):
        response = await client.post("/webhooks/monday", json={"challenge": "3eZbrw1aBm2rZgRNFdxV"})
        assert response.status_code == 200
        assert response.json() == {"challenge": "3eZbrw1aBm2rZgRNFdxV"}

    @pytest.mark.asyncio
    async def test_events_are_acknowledged(self, client, monday):
        response = await client.post("/webhooks/monday", json={"event": {"type": "change_column_value"}})
        assert response.status_code == 200
        assert response.json()["eventType"] == "change_column_value"
        assert monday.calls == []


@pytest.mark.asyncio
async def test_metrics_endpoint(client):
    """Prometheus exposition includes the sync counters."""
    await client.post("/cron/sync-quotes", headers=CRON_AUTH)
    response = await client.get("/metrics")
    assert response.status_code == 200
    assert "quote_sync_records_total" in response.text
