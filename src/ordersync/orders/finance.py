"""Financial reconciler -- pure tax, discount and rounding functions.

Monetary amounts on a CheckoutOrder are integer minor units (cents). All
intermediate arithmetic goes through Decimal so results are independent
of binary float rounding; the CRM payload helpers convert to float only
at the very end.

Rounding policy: finalized CRM values take the absolute value and then
round half-up (money to 2 decimals, percentages to whole numbers). Cent
conversions round half-up without dropping the sign.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import Union

from src.ordersync.orders.schemas import AmendmentItem, LineItem

Number = Union[int, float, Decimal]

_ZERO = Decimal(0)
_HUNDRED = Decimal(100)


def _dec(value: Number) -> Decimal:
    if isinstance(value, Decimal):
        return value
    # str() keeps 0.1 as 0.1 instead of its binary expansion.
    return Decimal(str(value))


# ── Rounding ────────────────────────────────────────────────────────────────


def round_half_up(value: Number, places: int = 0) -> Decimal:
    """Round to ``places`` decimals, halves away from zero."""
    return _dec(value).quantize(Decimal(1).scaleb(-places), rounding=ROUND_HALF_UP)


def round_money(value: Number) -> float:
    """Absolute value rounded half-up to 2 decimals (CRM money fields)."""
    return float(round_half_up(abs(_dec(value)), 2))


def round_percent(value: Number) -> int:
    """Absolute value rounded half-up to a whole number (CRM percent fields)."""
    return int(round_half_up(abs(_dec(value))))


def to_cents(value: Number) -> int:
    """Convert a major-unit amount to integer cents, rounding half-up."""
    return int(round_half_up(_dec(value) * _HUNDRED))


def from_cents(cents: int) -> Decimal:
    return Decimal(cents) / _HUNDRED


def _div_half_up(numerator: int, denominator: int) -> int:
    """Integer division rounding half away from zero; denominator > 0."""
    if numerator >= 0:
        return (2 * numerator + denominator) // (2 * denominator)
    return -((2 * -numerator + denominator) // (2 * denominator))


# ── Tax & Discount ──────────────────────────────────────────────────────────


def tax_rate(total: Number, tax_value: Number, shipping: Number = 0) -> Decimal:
    """Tax rate in percent of the net (post-discount, pre-shipping) amount.

    Args:
        total: Grand total including tax and shipping.
        tax_value: Tax amount.
        shipping: Shipping amount (untaxed).

    Returns:
        ``tax_value * 100 / ((total - shipping) - tax_value)``; 0 when there is
        no tax, when the tax swallows the whole total, or when nothing net
        remains to tax.
    """
    total, tax_value, shipping = _dec(total), _dec(tax_value), _dec(shipping)
    if tax_value == 0 or total <= tax_value:
        return _ZERO
    base = (total - shipping) - tax_value
    if base <= 0:
        return _ZERO
    return tax_value * _HUNDRED / base


def discount(
    line_items: Sequence[LineItem],
    total: Number,
    tax_value: Number,
    shipping: Number = 0,
) -> tuple[Decimal, Decimal]:
    """Derive the order discount from line totals and the authoritative total.

    The baseline is the sum of non-shipping line totals. Whatever the grand
    total lacks against ``baseline + tax + shipping`` is the discount.

    Returns:
        ``(discount_amount, discount_percent)``; ``(0, 0)`` for an empty baseline.
    """
    baseline = sum((_dec(item.total) for item in line_items if not item.shipping), _ZERO)
    if baseline == 0:
        return _ZERO, _ZERO
    actual = _dec(total) - _dec(tax_value) - _dec(shipping)
    amount = baseline - actual
    return amount, amount / baseline * _HUNDRED


def recalc_with_discount(
    line_items: Sequence[LineItem],
    total: int,
    shipping: int = 0,
) -> list[LineItem]:
    """Spread one derived discount over non-shipping lines, exact to the cent.

    Every non-shipping line total is scaled by ``(total - shipping) / baseline``
    and rounded half-up; the rounding residue goes to the largest line so the
    discounted totals add up to exactly ``total - shipping``. Shipping lines
    are returned unchanged. Applying the function to its own output is a no-op.

    Args:
        line_items: Lines with integer-cent totals.
        total: Authoritative amount the lines plus shipping must reach.
        shipping: Shipping amount carried outside the product lines.

    Returns:
        New LineItem copies with discounted totals, in input order.
    """
    target = total - shipping
    products = [i for i, item in enumerate(line_items) if not item.shipping]
    baseline = sum(line_items[i].total for i in products)

    if not products or baseline <= 0 or target < 0 or baseline == target:
        return [item.model_copy() for item in line_items]

    totals = {i: _div_half_up(line_items[i].total * target, baseline) for i in products}
    residue = target - sum(totals.values())
    if residue:
        largest = max(products, key=lambda i: (totals[i], -i))
        totals[largest] += residue

    return [
        item.model_copy(update={"total": totals[i]}) if i in totals else item.model_copy()
        for i, item in enumerate(line_items)
    ]


# ── Amendment Reconciliation ────────────────────────────────────────────────


@dataclass(frozen=True)
class AmendedLine:
    """One product line rebuilt from a CRM amendment (all amounts in cents)."""

    external_id: str
    quantity: int
    price: int
    tax: int
    total: int


@dataclass(frozen=True)
class AmendmentTotals:
    """Totals recomputed from a CRM amendment, ready for one local transaction."""

    lines: list[AmendedLine] = field(default_factory=list)
    sub_total: int = 0
    tax: int = 0
    shipping: int = 0
    discount: int = 0
    coupon: int = 0
    total: int = 0
    discount_percent: Decimal = _ZERO
    crm_tax_rate: Decimal = _ZERO


def reconcile_amendment(
    items: Sequence[AmendmentItem],
    grand_total: Number,
    local_tax_rate: Number,
    shipping_external_id: str = "",
    with_coupon: bool = False,
) -> AmendmentTotals:
    """Recompute local totals from a CRM-side order amendment.

    The CRM reports per-line discounted totals and its own grand total but
    no explicit tax. The discount percent is recovered by comparing the
    reported totals with full ``price * quantity``; the CRM's implied tax
    rate is then ``(grand - (items + shipping - discount)) / (items - discount)``.

    Args:
        items: Amended lines as reported by the CRM (major units).
        grand_total: CRM grand total (major units).
        local_tax_rate: Tax rate in percent from the stored order totals,
            used for the per-unit tax column.
        shipping_external_id: Product id of the shipping pseudo-line.
        with_coupon: Book the discount as a coupon instead of a discount.
    """

    def is_shipping(item: AmendmentItem) -> bool:
        return item.is_shipping or bool(shipping_external_id and item.zoho_id == shipping_external_id)

    unit_tax_fraction = _dec(local_tax_rate) / _HUNDRED

    full = sum((_dec(i.price) * i.quantity for i in items if not is_shipping(i)), _ZERO)
    reported = sum((_dec(i.total) for i in items if not is_shipping(i)), _ZERO)
    discount_percent = Decimal(1) - reported / full if full > 0 else _ZERO

    lines: list[AmendedLine] = []
    items_total = 0
    shipping = 0
    for item in items:
        if is_shipping(item):
            shipping += to_cents(_dec(item.price) * item.quantity)
            continue
        line_total = to_cents(_dec(item.price) * item.quantity)
        lines.append(
            AmendedLine(
                external_id=item.zoho_id,
                quantity=item.quantity,
                price=to_cents(item.price),
                tax=to_cents(_dec(item.price) * unit_tax_fraction),
                total=line_total,
            )
        )
        items_total += line_total

    discount_amount = int(round_half_up(Decimal(items_total) * discount_percent))
    crm_tax = to_cents(grand_total) - (items_total + shipping - discount_amount)
    net = items_total - discount_amount
    crm_tax_rate = Decimal(crm_tax) / Decimal(net) if net > 0 else _ZERO
    tax_total = int(round_half_up(Decimal(items_total) * crm_tax_rate * (1 - discount_percent)))
    total = items_total + tax_total + shipping - discount_amount

    coupon = 0
    if with_coupon:
        coupon, discount_amount = discount_amount, 0

    return AmendmentTotals(
        lines=lines,
        sub_total=items_total,
        tax=tax_total,
        shipping=shipping,
        discount=discount_amount,
        coupon=coupon,
        total=total,
        discount_percent=discount_percent,
        crm_tax_rate=crm_tax_rate,
    )
