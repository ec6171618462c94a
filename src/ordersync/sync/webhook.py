"""Inbound CRM amendment handler.

The CRM calls back when an order is edited on its side. The local order is
found by external id; because the id is written right after the CRM create
call, an early callback can arrive before that write is visible, so the
lookup is retried a few times with a short fixed delay.

A status name in the event is applied first as an independent write. The
item, totals, grand-total and history changes then commit in one
transaction. The two are not atomic together.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

import structlog

from src.ordersync.core.monitoring import webhook_updates_total
from src.ordersync.errors import NotFoundError
from src.ordersync.orders.finance import from_cents, reconcile_amendment, tax_rate
from src.ordersync.orders.repository import OrderRepository
from src.ordersync.orders.schemas import AmendmentEvent, CheckoutOrder
from src.ordersync.orders.status import CONSUMER_STATUSES, UNKNOWN_STATUS_ID, StatusTable

logger = structlog.get_logger(__name__)

STATUS_COMMENT = "Updated via API"


@dataclass
class WebhookOutcome:
    order_id: int
    applied: bool
    echo: bool = False
    total: int = 0
    version: int | None = None


class WebhookReconciler:
    """Applies CRM amendment events to local orders.

    Args:
        repository: Local order store.
        lookup_attempts: Lookups by external id before giving up.
        lookup_delay: Seconds between lookups.
        statuses: Display-name table for status names in events.
        sleep: Awaitable sleep, injectable for tests.
    """

    def __init__(
        self,
        repository: OrderRepository,
        lookup_attempts: int = 5,
        lookup_delay: float = 0.2,
        statuses: StatusTable = CONSUMER_STATUSES,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._repository = repository
        self._attempts = max(lookup_attempts, 1)
        self._delay = lookup_delay
        self._statuses = statuses
        self._sleep = sleep

    async def _lookup(self, external_id: str) -> CheckoutOrder:
        for attempt in range(1, self._attempts + 1):
            try:
                order = await self._repository.get_order_by_external_id(external_id)
            except NotFoundError:
                order = None
            if order is not None:
                if attempt > 1:
                    logger.info("webhook.lookup_recovered", external_id=external_id, attempt=attempt)
                return order
            if attempt < self._attempts:
                logger.debug("webhook.lookup_retry", external_id=external_id, attempt=attempt)
                await self._sleep(self._delay)
        raise NotFoundError(f"no order with external id {external_id}")

    async def handle(self, event: AmendmentEvent, raw: dict[str, Any] | None = None) -> WebhookOutcome:
        """Reconcile one amendment event.

        Args:
            event: Validated amendment.
            raw: Original JSON body, stored as the version snapshot.

        Raises:
            NotFoundError: Order not visible after all lookups, or an amended
                line references an unknown product (nothing written).
        """
        try:
            order = await self._lookup(event.zoho_id)
        except NotFoundError:
            webhook_updates_total.labels(outcome="not_found").inc()
            raise
        log = logger.bind(order_id=order.id, external_id=event.zoho_id)

        if order.tracking:
            await self._repository.clear_tracking(order.id)
            log.info("webhook.echo_ignored", tracking=order.tracking)
            webhook_updates_total.labels(outcome="echo").inc()
            return WebhookOutcome(order.id, applied=False, echo=True)

        if event.status:
            status_id = self._statuses.id_for(event.status)
            if status_id > 0:
                await self._repository.change_status(order.id, status_id, STATUS_COMMENT)
            elif status_id == UNKNOWN_STATUS_ID:
                log.warning("webhook.unknown_status", status=event.status)

        local_rate = tax_rate(order.total, order.tax_value, order.shipping)
        shipping_id = await self._repository.shipping_external_id()
        totals = reconcile_amendment(
            event.ordered_items,
            event.grand_total,
            local_rate,
            shipping_external_id=shipping_id,
            with_coupon=bool(event.coupon),
        )
        await self._repository.apply_amendment(
            order.id,
            totals,
            comment=f"Order updated from CRM, total = {from_cents(totals.total):.2f}",
        )
        log.info(
            "webhook.order_updated",
            total=totals.total,
            tax=totals.tax,
            discount=totals.discount,
            coupon=totals.coupon,
            shipping=totals.shipping,
            crm_tax_rate=str(totals.crm_tax_rate),
        )
        webhook_updates_total.labels(outcome="applied").inc()

        version = None
        try:
            version = await self._repository.save_version(order.id, raw or event.model_dump(mode="json"))
        except Exception as exc:
            log.warning("webhook.snapshot_failed", error=str(exc))

        return WebhookOutcome(order.id, applied=True, total=totals.total, version=version)
