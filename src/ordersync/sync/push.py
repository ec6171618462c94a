"""Order push orchestrator -- discovers new orders and creates them in the CRM.

Per-order state machine::

    NEW -> CONTACT_RESOLVED -> ITEMS_RESOLVED -> PUSHED -> SYNCED
     |
     +-> RETAINED (stays in discovery; retried next cycle)
     +-> SKIPPED_B2B (terminal; stamped with the B2B marker)

The external id is persisted right after the CRM order is created, before
any follow-up chunk: from that moment discovery no longer selects the
order. A chunk failure therefore leaves a CRM record short of items; it is
logged with ``manual_followup=True`` and not repaired automatically.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import date
from enum import Enum

import structlog

from src.ordersync.core.monitoring import orders_pushed_total
from src.ordersync.crm.adapter import CRMAdapter
from src.ordersync.errors import NotFoundError, OrderValidationError, PartialPushError
from src.ordersync.orders.repository import OrderRepository
from src.ordersync.orders.schemas import B2B_EXTERNAL_ID, CheckoutOrder
from src.ordersync.products.client import ProductCatalogClient
from src.ordersync.scheduler import StopToken
from src.ordersync.sync.payloads import build_contact, build_sales_order

logger = structlog.get_logger(__name__)


class PushState(str, Enum):
    NEW = "new"
    CONTACT_RESOLVED = "contact_resolved"
    ITEMS_RESOLVED = "items_resolved"
    PUSHED = "pushed"
    SYNCED = "synced"
    RETAINED = "retained"
    SKIPPED_B2B = "skipped_b2b"


@dataclass
class PushOutcome:
    order_id: int
    state: PushState
    external_id: str = ""
    error: str = ""


@dataclass
class PushReport:
    """Result of one discovery cycle."""

    outcomes: list[PushOutcome] = field(default_factory=list)
    interrupted: bool = False

    def count(self, state: PushState) -> int:
        return sum(1 for o in self.outcomes if o.state == state)


class OrderPushOrchestrator:
    """Pushes checkout orders to the CRM.

    Args:
        repository: Local order store.
        crm: CRM adapter.
        catalog: Product catalog for missing CRM product ids.
        discovery_window_days: Only orders created this recently are discovered.
        today: Date source for the CRM due date.
    """

    def __init__(
        self,
        repository: OrderRepository,
        crm: CRMAdapter,
        catalog: ProductCatalogClient,
        discovery_window_days: int = 30,
        today: Callable[[], date] = date.today,
    ) -> None:
        self._repository = repository
        self._crm = crm
        self._catalog = catalog
        self._window_days = discovery_window_days
        self._today = today

    async def process_orders(self, stop: StopToken | None = None) -> PushReport:
        """Push every discoverable order; one order's failure never stops the rest."""
        report = PushReport()
        orders = await self._repository.get_new_orders(self._window_days)
        logger.info("push.cycle_started", orders=len(orders))

        for order in orders:
            if stop is not None and stop.is_set():
                report.interrupted = True
                logger.info("push.cycle_interrupted", remaining=len(orders) - len(report.outcomes))
                break
            outcome = await self._process_one(order, stop)
            orders_pushed_total.labels(outcome=outcome.state.value).inc()
            report.outcomes.append(outcome)

        logger.info(
            "push.cycle_complete",
            synced=report.count(PushState.SYNCED),
            retained=report.count(PushState.RETAINED),
            skipped_b2b=report.count(PushState.SKIPPED_B2B),
            partial=report.count(PushState.PUSHED),
        )
        return report

    async def push_order(self, order_id: int) -> str:
        """Operator path: push one order by local id and return its CRM id.

        An order that already carries an external id is returned as-is
        without contacting the CRM.

        Raises:
            NotFoundError: Unknown order, or products without CRM ids.
            OrderValidationError: Order lacks client, items or UIDs.
            PartialPushError: Order created but a follow-up chunk failed.
        """
        order = await self._repository.get_order(order_id)
        if order.external_id:
            logger.info("push.already_synced", order_id=order_id, external_id=order.external_id)
            return order.external_id
        outcome = await self._push(order, stop=None)
        return outcome.external_id

    async def _process_one(self, order: CheckoutOrder, stop: StopToken | None) -> PushOutcome:
        log = logger.bind(order_id=order.id, currency=order.currency, total=order.total)
        try:
            return await self._push(order, stop)
        except PartialPushError as exc:
            log.error("push.partial", external_id=exc.external_id, chunk=exc.chunk,
                      error=exc.reason, manual_followup=True)
            return PushOutcome(order.id, PushState.PUSHED, exc.external_id, str(exc))
        except (OrderValidationError, NotFoundError) as exc:
            log.warning("push.order_retained", error=str(exc))
            return PushOutcome(order.id, PushState.RETAINED, error=str(exc))
        except Exception as exc:
            log.error("push.order_failed", error=str(exc), exc_info=True)
            return PushOutcome(order.id, PushState.RETAINED, error=str(exc))

    async def _push(self, order: CheckoutOrder, stop: StopToken | None) -> PushOutcome:
        client = order.validate_for_push()

        if client.is_b2b:
            await self._repository.set_external_id(order.id, B2B_EXTERNAL_ID)
            logger.info("push.b2b_skipped", order_id=order.id, group_id=client.group_id)
            return PushOutcome(order.id, PushState.SKIPPED_B2B, B2B_EXTERNAL_ID)

        order.require_positive_total()
        contact_id = await self._crm.create_contact(build_contact(client))
        logger.debug("push.state", order_id=order.id, state=PushState.CONTACT_RESOLVED.value, contact_id=contact_id)

        missing = order.missing_uids()
        if missing:
            raise OrderValidationError(
                f"order {order.id}: {len(missing)} line item(s) without product UID"
            )
        order = await self._resolve_products(order)
        logger.debug("push.state", order_id=order.id, state=PushState.ITEMS_RESOLVED.value)

        sales_order, chunks = build_sales_order(order, contact_id, self._today())
        external_id = await self._crm.create_sales_order(sales_order)
        await self._repository.set_external_id(order.id, external_id)

        for index, chunk in enumerate(chunks, start=1):
            if stop is not None and stop.is_set():
                raise PartialPushError(external_id, index, "stopped before chunk upload")
            try:
                await self._crm.append_order_items(external_id, chunk)
            except Exception as exc:
                raise PartialPushError(external_id, index, str(exc)) from exc

        logger.info(
            "push.order_synced",
            order_id=order.id,
            external_id=external_id,
            items=len(order.line_items),
            chunks=len(chunks),
        )
        return PushOutcome(order.id, PushState.SYNCED, external_id)

    async def _resolve_products(self, order: CheckoutOrder) -> CheckoutOrder:
        """Fill missing CRM product ids from the catalog and persist the mapping.

        Raises:
            NotFoundError: Some line items still lack a CRM product id.
        """
        if not order.missing_external_ids():
            return order

        items = []
        for item in order.line_items:
            if not item.external_id:
                try:
                    external_id = await self._catalog.get_external_id(item.uid)
                except NotFoundError as exc:
                    logger.warning("push.product_unresolved", order_id=order.id, uid=item.uid, error=str(exc))
                else:
                    await self._repository.set_product_external_id(item.uid, external_id)
                    item = item.model_copy(update={"external_id": external_id})
            items.append(item)

        order = order.model_copy(update={"line_items": items})
        still_missing = order.missing_external_ids()
        if still_missing:
            raise NotFoundError(
                f"order {order.id}: no CRM product id for "
                + ", ".join(item.uid for item in still_missing)
            )
        return order
