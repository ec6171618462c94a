"""Integration tests for the order sync HTTP endpoints.

Services on ``app.state`` are replaced with AsyncMocks; the real
APIKeyAuthenticator is used so the bearer-token rules are exercised
end to end. The lifespan is not run, so no database or Redis is needed.
"""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from src.ordersync.core.cache import ExpiringCache
from src.ordersync.core.security import APIKeyAuthenticator
from src.ordersync.errors import (
    CRMError,
    NotFoundError,
    OrderValidationError,
    PartialPushError,
)
from src.ordersync.main import create_app
from src.ordersync.sync.webhook import WebhookOutcome

API_KEY = "s3cret-key"
AUTH = {"Authorization": f"Bearer {API_KEY}"}


# ── Helpers ────────────────────────────────────────────────────────────────


def _make_amendment(**overrides) -> dict:
    payload = {
        "zoho_id": "SO-1",
        "grand_total": 236.40,
        "ordered_items": [
            {"zoho_id": "P-1", "price": 100.0, "quantity": 2, "total": 180.0},
            {"zoho_id": "P-SHIP", "price": 15.0, "quantity": 1, "total": 15.0},
        ],
    }
    payload.update(overrides)
    return payload


def _make_b2b(**overrides) -> dict:
    data = {
        "order_uid": "ord-1",
        "order_number": "B-1001",
        "client_uid": "cli-1",
        "total": 123.0,
        "currency_code": "EUR",
        "items": [{"product_uid": "uid-1", "quantity": 2, "price": 50.0, "total": 100.0}],
    }
    data.update(overrides)
    return {"event": "order_confirmed", "data": data}


@pytest_asyncio.fixture
async def app_state():
    app = create_app()
    app.state.authenticator = APIKeyAuthenticator(API_KEY, ExpiringCache())
    app.state.orchestrator = AsyncMock()
    app.state.reconciler = AsyncMock()
    app.state.b2b_builder = AsyncMock()
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client, app.state


# ── Authentication ─────────────────────────────────────────────────────────


class TestAuthentication:
    async def test_missing_header(self, app_state):
        client, state = app_state
        response = await client.get("/zoho/push/order/1")
        assert response.status_code == 401
        assert response.headers["WWW-Authenticate"] == "Bearer"
        state.orchestrator.push_order.assert_not_awaited()

    async def test_prefix_is_case_sensitive(self, app_state):
        client, _ = app_state
        response = await client.get(
            "/zoho/push/order/1", headers={"Authorization": f"bearer {API_KEY}"}
        )
        assert response.status_code == 401

    async def test_wrong_key(self, app_state):
        client, _ = app_state
        response = await client.get(
            "/zoho/push/order/1", headers={"Authorization": "Bearer nope"}
        )
        assert response.status_code == 401

    async def test_webhooks_require_auth(self, app_state):
        client, state = app_state
        response = await client.post("/zoho/webhook/order", json=_make_amendment())
        assert response.status_code == 401
        state.reconciler.handle.assert_not_awaited()

        response = await client.post("/zoho/webhook/b2b", json=_make_b2b())
        assert response.status_code == 401


# ── Push ───────────────────────────────────────────────────────────────────


class TestPushEndpoint:
    async def test_success(self, app_state):
        client, state = app_state
        state.orchestrator.push_order.return_value = "SO-77"

        response = await client.get("/zoho/push/order/42", headers=AUTH)

        assert response.status_code == 200
        assert response.json() == {"external_id": "SO-77"}
        state.orchestrator.push_order.assert_awaited_once_with(42)

    async def test_unknown_order(self, app_state):
        client, state = app_state
        state.orchestrator.push_order.side_effect = NotFoundError("order 42 not found")

        response = await client.get("/zoho/push/order/42", headers=AUTH)
        assert response.status_code == 404

    async def test_invalid_order(self, app_state):
        client, state = app_state
        state.orchestrator.push_order.side_effect = OrderValidationError("order has no items")

        response = await client.get("/zoho/push/order/42", headers=AUTH)
        assert response.status_code == 422

    async def test_crm_failure(self, app_state):
        client, state = app_state
        state.orchestrator.push_order.side_effect = CRMError("upstream 500")

        response = await client.get("/zoho/push/order/42", headers=AUTH)
        assert response.status_code == 502

    async def test_partial_push_reports_external_id(self, app_state):
        client, state = app_state
        state.orchestrator.push_order.side_effect = PartialPushError("SO-9", 2, "HTTP 500")

        response = await client.get("/zoho/push/order/42", headers=AUTH)

        assert response.status_code == 502
        assert response.json()["detail"]["external_id"] == "SO-9"

    async def test_non_numeric_id(self, app_state):
        client, _ = app_state
        response = await client.get("/zoho/push/order/abc", headers=AUTH)
        assert response.status_code == 422


# ── Amendment Webhook ──────────────────────────────────────────────────────


class TestOrderWebhook:
    async def test_applied_amendment(self, app_state):
        client, state = app_state
        state.reconciler.handle.return_value = WebhookOutcome(
            order_id=42, applied=True, total=23640, version=3
        )
        payload = _make_amendment()

        response = await client.post("/zoho/webhook/order", json=payload, headers=AUTH)

        assert response.status_code == 200
        assert response.json() == {"order_id": 42, "applied": True, "echo": False, "total": 236.4}
        event = state.reconciler.handle.await_args.args[0]
        assert event.zoho_id == "SO-1"
        assert state.reconciler.handle.await_args.kwargs["raw"] == payload

    async def test_echo_is_acknowledged(self, app_state):
        client, state = app_state
        state.reconciler.handle.return_value = WebhookOutcome(
            order_id=42, applied=False, echo=True, total=23640
        )

        response = await client.post("/zoho/webhook/order", json=_make_amendment(), headers=AUTH)

        assert response.status_code == 200
        assert response.json()["echo"] is True

    async def test_invalid_payload_is_rejected(self, app_state):
        client, state = app_state

        response = await client.post(
            "/zoho/webhook/order", json=_make_amendment(ordered_items=[]), headers=AUTH
        )

        assert response.status_code == 422
        state.reconciler.handle.assert_not_awaited()

    async def test_non_positive_total_is_rejected(self, app_state):
        client, state = app_state

        response = await client.post(
            "/zoho/webhook/order", json=_make_amendment(grand_total=0), headers=AUTH
        )

        assert response.status_code == 422
        state.reconciler.handle.assert_not_awaited()

    async def test_unknown_order(self, app_state):
        client, state = app_state
        state.reconciler.handle.side_effect = NotFoundError("no order with external id SO-1")

        response = await client.post("/zoho/webhook/order", json=_make_amendment(), headers=AUTH)
        assert response.status_code == 404

    async def test_total_mismatch(self, app_state):
        client, state = app_state
        state.reconciler.handle.side_effect = OrderValidationError("total mismatch")

        response = await client.post("/zoho/webhook/order", json=_make_amendment(), headers=AUTH)
        assert response.status_code == 422


# ── B2B Webhook ────────────────────────────────────────────────────────────


class TestB2BWebhook:
    async def test_deal_created(self, app_state):
        client, state = app_state
        state.b2b_builder.process.return_value = "D-5"

        response = await client.post("/zoho/webhook/b2b", json=_make_b2b(), headers=AUTH)

        assert response.status_code == 200
        assert response.json() == {"external_id": "D-5"}
        payload = state.b2b_builder.process.await_args.args[0]
        assert payload.data.order_number == "B-1001"

    async def test_unsupported_currency(self, app_state):
        client, state = app_state

        response = await client.post(
            "/zoho/webhook/b2b", json=_make_b2b(currency_code="GBP"), headers=AUTH
        )

        assert response.status_code == 422
        state.b2b_builder.process.assert_not_awaited()

    async def test_unknown_product(self, app_state):
        client, state = app_state
        state.b2b_builder.process.side_effect = NotFoundError("product uid-1 not in catalog")

        response = await client.post("/zoho/webhook/b2b", json=_make_b2b(), headers=AUTH)
        assert response.status_code == 404


# ── Service Endpoints ──────────────────────────────────────────────────────


class TestServiceEndpoints:
    async def test_health(self, app_state):
        client, _ = app_state
        response = await client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    async def test_metrics(self, app_state):
        client, _ = app_state
        response = await client.get("/metrics")
        assert response.status_code == 200
        assert "http_requests_total" in response.text

    async def test_request_id_header(self, app_state):
        client, _ = app_state
        generated = await client.get("/health")
        forwarded = await client.get("/health", headers={"X-Request-ID": "crm-req-1"})
        assert generated.headers["X-Request-ID"]
        assert forwarded.headers["X-Request-ID"] == "crm-req-1"

    async def test_ready_when_dependencies_answer(self, app_state, monkeypatch):
        client, _ = app_state
        monkeypatch.setattr("src.ordersync.api.v1.health._probe_database", AsyncMock(return_value=None))
        monkeypatch.setattr("src.ordersync.api.v1.health._probe_redis", AsyncMock(return_value=None))

        response = await client.get("/health/ready")

        assert response.status_code == 200
        assert response.json()["status"] == "ready"

    async def test_degraded_when_redis_is_down(self, app_state, monkeypatch):
        client, _ = app_state
        monkeypatch.setattr("src.ordersync.api.v1.health._probe_database", AsyncMock(return_value=None))
        monkeypatch.setattr(
            "src.ordersync.api.v1.health._probe_redis", AsyncMock(return_value="connection refused")
        )

        response = await client.get("/health/ready")

        assert response.status_code == 503
        body = response.json()
        assert body["checks"]["redis"] == "error"
        assert body["checks"]["redis_error"] == "connection refused"
