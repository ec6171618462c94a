"""B2B deal builder -- pushes portal-confirmed B2B orders to the CRM as deals.

Runs the same contact -> products -> create -> chunks sequence as the
consumer pipeline, with three differences: the discount percent comes from
the portal payload, money lands in the currency-specific deal fields of
the order currency only, and VAT is ``total_vat * 100 / subtotal``.
Amounts arrive already in the order currency (rate 1).
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

import structlog

from src.ordersync.crm.adapter import CRMAdapter
from src.ordersync.crm.schemas import Contact, Deal, Good, RecordRef
from src.ordersync.errors import NotFoundError, OrderValidationError, PartialPushError
from src.ordersync.orders.address import country_code, normalize_zip
from src.ordersync.orders.finance import round_money, round_percent
from src.ordersync.orders.schemas import B2BOrderData, B2BOrderItem, B2BWebhookPayload
from src.ordersync.orders.status import B2B_STATUSES, OrderStatus
from src.ordersync.products.client import ProductCatalogClient
from src.ordersync.sync.payloads import ORDER_LOCATION, chunk_items

logger = structlog.get_logger(__name__)

DEAL_PIPELINE = "B2B"
DEAL_SOURCE = "B2B Portal"
PLACEHOLDER_FIRST_NAME = "B2B Client"
PLACEHOLDER_EMAIL_DOMAIN = "b2b.placeholder.local"


@dataclass(frozen=True)
class ResolvedItem:
    item: B2BOrderItem
    external_id: str


def _amount(value: float, rate: Decimal) -> float:
    return round_money(Decimal(str(value)) * rate)


def build_b2b_contact(data: B2BOrderData) -> Contact:
    """Contact for the B2B client, with placeholders for missing identity fields."""
    first_name, last_name = data.client_name.strip(), ""
    if not first_name:
        first_name, last_name = PLACEHOLDER_FIRST_NAME, data.client_uid
    email = data.client_email.strip()
    phone = data.client_phone.strip()
    if not email and not phone:
        email = f"{data.client_uid}@{PLACEHOLDER_EMAIL_DOMAIN}"
    return Contact(
        first_name=first_name,
        last_name=last_name,
        email=email or None,
        phone=phone or None,
        country=country_code(data.client_country) or None,
        city=data.client_city or None,
        street=data.client_street or None,
        zip_code=normalize_zip(data.client_zip_code) if data.client_zip_code else None,
        tax_id=data.client_tax_id or None,
    )


def vat_percent(total_vat: float, subtotal: float) -> int:
    if total_vat <= 0 or subtotal <= 0:
        return 0
    return round_percent(Decimal(str(total_vat)) * 100 / Decimal(str(subtotal)))


def build_good(resolved: ResolvedItem, currency: str, discount_percent: int, rate: Decimal) -> Good:
    suffix = currency.lower()
    return Good(
        product=RecordRef(id=resolved.external_id),
        quantity=resolved.item.quantity,
        discount_percent=discount_percent,
        **{
            f"price_{suffix}": _amount(resolved.item.price, rate),
            f"total_{suffix}": _amount(resolved.item.total, rate),
        },
    )


def build_deal(
    data: B2BOrderData,
    contact_id: str,
    items: list[ResolvedItem],
    location: str = ORDER_LOCATION,
    rate: Decimal = Decimal(1),
) -> tuple[Deal, list[list[Good]]]:
    """Build the deal create payload and the follow-up goods chunks."""
    discount_percent = round_percent(data.discount_percent)
    suffix = data.currency_code.lower()
    goods = [build_good(item, data.currency_code, discount_percent, rate) for item in items]
    embedded, chunks = chunk_items(goods)

    deal = Deal(
        contact=RecordRef(id=contact_id),
        goods=embedded,
        discount_percent=discount_percent,
        description=data.comment,
        vat=vat_percent(data.total_vat, data.subtotal),
        currency=data.currency_code,
        country=data.client_country,
        stage=B2B_STATUSES.name_for(OrderStatus.NEW),
        pipeline=DEAL_PIPELINE,
        delivery_street=data.shipping_address,
        deal_name=f"B2B Order {data.order_number}",
        location=location,
        order_source=DEAL_SOURCE,
        **{
            f"grand_total_{suffix}": _amount(data.total, rate),
            f"sub_total_{suffix}": _amount(data.subtotal, rate),
        },
    )
    return deal, chunks


class B2BDealBuilder:
    """Creates CRM deals from confirmed B2B portal orders.

    Args:
        crm: CRM adapter.
        catalog: Product catalog resolving product UIDs to CRM ids.
        location: Warehouse location stamped on the deal.
    """

    def __init__(
        self,
        crm: CRMAdapter,
        catalog: ProductCatalogClient,
        location: str = ORDER_LOCATION,
    ) -> None:
        self._crm = crm
        self._catalog = catalog
        self._location = location

    async def _resolve_products(self, items: list[B2BOrderItem]) -> list[ResolvedItem]:
        resolved = []
        for item in items:
            if not item.product_uid:
                raise OrderValidationError(f"product without UID (sku {item.product_sku or '-'})")
            external_id = await self._catalog.get_external_id(item.product_uid)
            if not external_id:
                raise NotFoundError(f"product {item.product_uid} has no CRM id")
            resolved.append(ResolvedItem(item=item, external_id=external_id))
        return resolved

    async def process(self, payload: B2BWebhookPayload) -> str:
        """Create the deal for ``payload`` and return its CRM id.

        Raises:
            OrderValidationError: An item has no product UID.
            NotFoundError: A product has no CRM id.
            PartialPushError: The deal was created but a goods chunk failed.
        """
        data = payload.data
        log = logger.bind(order_uid=data.order_uid, order_number=data.order_number)

        items = await self._resolve_products(data.items)
        contact_id = await self._crm.create_contact(build_b2b_contact(data))
        deal, chunks = build_deal(data, contact_id, items, location=self._location)

        deal_id = await self._crm.create_deal(deal)
        for index, chunk in enumerate(chunks, start=1):
            try:
                await self._crm.append_deal_goods(deal_id, chunk)
            except Exception as exc:
                log.error("b2b.chunk_failed", deal_id=deal_id, chunk=index, error=str(exc),
                          manual_followup=True)
                raise PartialPushError(deal_id, index, str(exc)) from exc

        log.info("b2b.deal_created", deal_id=deal_id, items=len(items), chunks=len(chunks))
        return deal_id
