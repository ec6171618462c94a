"""CRM payload construction for consumer sales orders.

Builds the SalesOrder and its ordered items from a CheckoutOrder using the
financial reconciler. The CRM accepts at most CHUNK_SIZE sub-form rows
per call: the first CHUNK_SIZE items are embedded in the create call and
the remainder is returned as follow-up chunks.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import date
from decimal import Decimal
from typing import TypeVar

from src.ordersync.crm.schemas import Contact, OrderedItem, RecordRef, SalesOrder
from src.ordersync.orders.address import country_code, normalize_zip
from src.ordersync.orders.finance import (
    discount,
    recalc_with_discount,
    round_money,
    round_percent,
    tax_rate,
)
from src.ordersync.orders.schemas import CheckoutOrder, ClientDetails
from src.ordersync.orders.status import CONSUMER_STATUSES, StatusTable

T = TypeVar("T")

CHUNK_SIZE = 100

ORDER_LOCATION = "Польша"
ORDER_SOURCE = "OpenCart"
TERMS_AND_CONDITIONS = "Standard terms apply."


def _money(cents: int | Decimal) -> float:
    return round_money(Decimal(cents) / 100)


def chunk_items(items: Sequence[T], size: int = CHUNK_SIZE) -> tuple[list[T], list[list[T]]]:
    """Split items into the embedded batch and follow-up chunks.

    Returns:
        ``(embedded, chunks)`` where ``embedded`` holds the first ``size``
        items and every chunk holds at most ``size`` items, in order.
    """
    if size < 1:
        raise ValueError("chunk size must be positive")
    embedded = list(items[:size])
    rest = items[size:]
    chunks = [list(rest[i:i + size]) for i in range(0, len(rest), size)]
    return embedded, chunks


def build_contact(client: ClientDetails) -> Contact:
    return Contact(
        first_name=client.first_name,
        last_name=client.last_name,
        email=client.email or None,
        phone=client.phone or None,
        country=country_code(client.country) or None,
        city=client.city or None,
        street=client.street or None,
        zip_code=normalize_zip(client.zip_code) if client.zip_code else None,
        tax_id=client.tax_id or None,
    )


def build_ordered_items(order: CheckoutOrder) -> list[OrderedItem]:
    """Ordered items with one uniform discount percent on every product line.

    Line totals come from recalc_with_discount against the order's net
    amount, so they add up to the net total exactly; the shipping line
    keeps its full amount and a zero discount.
    """
    _, percent = discount(order.line_items, order.total, order.tax_value, order.shipping)
    discount_percent = round_percent(percent)
    lines = recalc_with_discount(order.line_items, order.total - order.tax_value, order.shipping)

    return [
        OrderedItem(
            product=RecordRef(id=line.external_id),
            quantity=line.quantity,
            discount_percent=0 if line.shipping else discount_percent,
            list_price=_money(line.price),
            total=_money(line.total),
        )
        for line in lines
    ]


def build_sales_order(
    order: CheckoutOrder,
    contact_id: str,
    today: date,
    statuses: StatusTable = CONSUMER_STATUSES,
) -> tuple[SalesOrder, list[list[OrderedItem]]]:
    """Build the create-call payload and the follow-up item chunks.

    Args:
        order: Validated order whose line items all carry external ids.
        contact_id: CRM contact the order belongs to.
        today: Due date stamped on the order.
        statuses: Display-name table for the status field.
    """
    client = order.client or ClientDetails()
    embedded, chunks = chunk_items(build_ordered_items(order))
    amount, percent = discount(order.line_items, order.total, order.tax_value, order.shipping)

    sales_order = SalesOrder(
        contact=RecordRef(id=contact_id),
        ordered_items=embedded,
        discount=_money(amount),
        discount_percent=round_percent(percent),
        vat=round_percent(tax_rate(order.total, order.tax_value, order.shipping)),
        grand_total=_money(order.total),
        sub_total=_money(order.total - order.tax_value),
        currency=order.currency,
        billing_country=country_code(client.country),
        billing_street=client.street,
        billing_code=normalize_zip(client.zip_code),
        status=statuses.name_for(order.status),
        due_date=today.isoformat(),
        terms_and_conditions=TERMS_AND_CONDITIONS,
        subject=f"Order #{order.id}",
        site_id=str(order.id),
        location=ORDER_LOCATION,
        order_source=ORDER_SOURCE,
        description=order.comment,
    )
    return sales_order, chunks
