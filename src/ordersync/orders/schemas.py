"""Pydantic schemas for checkout orders and inbound CRM/B2B payloads.

Money on CheckoutOrder and LineItem is stored in integer minor units
(cents) of the order currency. Inbound webhook payloads carry major-unit
decimals exactly as the CRM or portal sends them.
"""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field, field_validator

from src.ordersync.errors import OrderValidationError
from src.ordersync.orders.status import OrderStatus

# Customer groups that denote a B2B account.
B2B_GROUP_IDS: frozenset[int] = frozenset({6, 7, 16, 18, 19})

# Stable product UID of the synthetic shipping line.
SHIPPING_ITEM_UID = "cd3cc23c-6dfb-11ec-b75f-00155d018000"

# External id stamped on B2B orders so consumer discovery skips them.
B2B_EXTERNAL_ID = "[B2B]"


# ── Checkout Order ──────────────────────────────────────────────────────────


class LineItem(BaseModel):
    """One ordered product (or the synthetic shipping line)."""

    id: int = 0
    uid: str = ""
    name: str = ""
    sku: str = ""
    external_id: str = ""
    quantity: int = Field(default=1, ge=1)
    price: int = Field(default=0, ge=0)
    tax: int = 0
    total: int = 0
    shipping: bool = False


class ClientDetails(BaseModel):
    """Buyer contact and billing address as stored by the storefront."""

    first_name: str = ""
    last_name: str = ""
    email: str = ""
    phone: str = ""
    country: str = ""
    zip_code: str = ""
    city: str = ""
    street: str = ""
    tax_id: str = ""
    group_id: int = 0

    @field_validator(
        "first_name", "last_name", "email", "phone", "country", "zip_code", "city", "street", "tax_id"
    )
    @classmethod
    def _strip(cls, value: str) -> str:
        return value.strip()

    @property
    def is_b2b(self) -> bool:
        return self.group_id in B2B_GROUP_IDS


class CheckoutOrder(BaseModel):
    """A locally stored order, hydrated with its items and aggregate totals."""

    id: int
    client: ClientDetails | None = None
    line_items: list[LineItem] = Field(default_factory=list)
    currency: str = "PLN"
    currency_value: float = 1.0
    total: int = 0
    sub_total: int = 0
    tax_value: int = 0
    tax_title: str = ""
    shipping: int = 0
    shipping_title: str = ""
    discount: int = 0
    coupon: int = 0
    coupon_title: str = ""
    status: OrderStatus = OrderStatus.NEW
    created_at: datetime | None = None
    external_id: str = ""
    tracking: str = ""
    source: str = ""
    comment: str = ""

    @property
    def products(self) -> list[LineItem]:
        """Line items excluding the synthetic shipping line."""
        return [item for item in self.line_items if not item.shipping]

    def validate_for_push(self) -> ClientDetails:
        """Return the client, or raise OrderValidationError when the order has
        no client details or no line items."""
        if self.client is None:
            raise OrderValidationError(f"order {self.id}: no client details")
        if not self.line_items:
            raise OrderValidationError(f"order {self.id}: no line items")
        return self.client

    def require_positive_total(self) -> None:
        """Consumer pushes only; B2B orders are routed before this check."""
        if self.total <= 0:
            raise OrderValidationError(f"order {self.id}: non-positive total")

    def missing_uids(self) -> list[LineItem]:
        return [item for item in self.line_items if not item.uid]

    def missing_external_ids(self) -> list[LineItem]:
        return [item for item in self.line_items if not item.external_id]


# ── CRM Amendment Webhook ───────────────────────────────────────────────────


class AmendmentItem(BaseModel):
    """One line of an order as amended in the CRM."""

    zoho_id: str = Field(min_length=1)
    price: float = Field(ge=0)
    total: float = Field(ge=0)
    quantity: int = Field(default=1, ge=1)
    is_shipping: bool = False


class AmendmentEvent(BaseModel):
    """CRM-originated order amendment, keyed by the CRM order id."""

    zoho_id: str = Field(min_length=1)
    status: str = ""
    grand_total: float = Field(gt=0)
    coupon: str = ""
    ordered_items: list[AmendmentItem] = Field(min_length=1)


# ── B2B Portal Webhook ──────────────────────────────────────────────────────

B2BCurrency = Literal["USD", "EUR", "PLN", "UAH"]


class B2BOrderItem(BaseModel):
    product_uid: str = ""
    product_sku: str = ""
    quantity: int = Field(gt=0)
    price: float = Field(ge=0)
    discount: float = 0.0
    price_discount: float = 0.0
    tax: float = 0.0
    total: float = 0.0


class B2BOrderData(BaseModel):
    order_uid: str = Field(min_length=1)
    order_number: str = Field(min_length=1)
    client_uid: str = Field(min_length=1)
    client_name: str = ""
    client_email: str = ""
    client_phone: str = ""
    client_country: str = ""
    client_city: str = ""
    client_street: str = ""
    client_zip_code: str = ""
    client_tax_id: str = ""
    store_uid: str = ""
    status: str = ""
    total: float = Field(gt=0)
    subtotal: float = 0.0
    total_vat: float = 0.0
    discount_percent: float = Field(default=0.0, ge=0, le=100)
    discount_amount: float = 0.0
    currency_code: B2BCurrency
    shipping_address: str = ""
    comment: str = ""
    created_at: datetime | None = None
    items: list[B2BOrderItem] = Field(min_length=1)


class B2BWebhookPayload(BaseModel):
    event: Literal["order_confirmed"]
    timestamp: datetime | None = None
    data: B2BOrderData
