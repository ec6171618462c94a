"""Prometheus metrics and Sentry integration.

Provides:
- MetricsMiddleware: request count and latency per route template
- Domain counters for the push, webhook and relay pipelines
- init_sentry(): Initialize Sentry for the FastAPI app
- get_metrics_response(): Prometheus exposition for /metrics
"""

from __future__ import annotations

import time

import sentry_sdk
from prometheus_client import CONTENT_TYPE_LATEST, REGISTRY, Counter, Histogram, generate_latest
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.starlette import StarletteIntegration
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

# ── HTTP Metrics ─────────────────────────────────────────────────────────────

http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status_code"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

# ── Sync Metrics ─────────────────────────────────────────────────────────────

orders_pushed_total = Counter(
    "orders_pushed_total",
    "Orders processed by the push orchestrator, by final state",
    ["outcome"],
)

webhook_updates_total = Counter(
    "webhook_updates_total",
    "Inbound CRM amendment events, by outcome",
    ["outcome"],
)

crm_requests_total = Counter(
    "crm_requests_total",
    "Outbound CRM API requests",
    ["module", "status"],
)

chat_messages_forwarded_total = Counter(
    "chat_messages_forwarded_total",
    "Chat messages forwarded to the CRM messaging function",
)


# ── Metrics Middleware ───────────────────────────────────────────────────────

# Probe and scrape routes are not counted.
_UNTRACKED_PATHS = frozenset({"/metrics", "/health", "/health/ready"})


def _route_label(request: Request) -> str:
    """Route template (``/zoho/push/order/{order_id}``) so order ids do not
    create one series each; unmatched paths collapse into one label."""
    route = request.scope.get("route")
    return getattr(route, "path", None) or "unmatched"


class MetricsMiddleware(BaseHTTPMiddleware):
    """Counts requests and observes latency per method and route template."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if request.url.path in _UNTRACKED_PATHS:
            return await call_next(request)

        started = time.perf_counter()
        response = await call_next(request)
        elapsed = time.perf_counter() - started

        endpoint = _route_label(request)
        http_requests_total.labels(request.method, endpoint, str(response.status_code)).inc()
        http_request_duration_seconds.labels(request.method, endpoint).observe(elapsed)
        return response


# ── Sentry Integration ───────────────────────────────────────────────────────


def init_sentry(dsn: str, environment: str, traces_sample_rate: float | None = None) -> None:
    """Initialize Sentry for the API process.

    Order payloads carry customer addresses and phone numbers, so default
    PII collection stays off. Production samples 10% of traces unless a
    rate is given.
    """
    if traces_sample_rate is None:
        traces_sample_rate = 0.1 if environment == "production" else 1.0
    sentry_sdk.init(
        dsn=dsn,
        environment=environment,
        traces_sample_rate=traces_sample_rate,
        send_default_pii=False,
        integrations=[StarletteIntegration(), FastApiIntegration()],
    )


def get_metrics_response() -> Response:
    return Response(content=generate_latest(REGISTRY), media_type=CONTENT_TYPE_LATEST)
