"""Synchronization pipelines -- consumer order push, CRM amendment webhook and B2B deals.

Provides OrderPushOrchestrator (discovery, payload build, chunked push),
WebhookReconciler (race-tolerant lookup and transactional amendment) and
B2BDealBuilder, plus the pure payload builders they share.
"""

from src.ordersync.sync.b2b import B2BDealBuilder
from src.ordersync.sync.push import OrderPushOrchestrator, PushOutcome, PushReport, PushState
from src.ordersync.sync.webhook import WebhookOutcome, WebhookReconciler

__all__ = [
    "B2BDealBuilder",
    "OrderPushOrchestrator",
    "PushOutcome",
    "PushReport",
    "PushState",
    "WebhookOutcome",
    "WebhookReconciler",
]
