"""CRM record payloads and API response envelopes.

Python attribute names are snake_case; the CRM's field names are kept as
aliases and used on the wire (``model_dump(by_alias=True)``). Money fields
are floats here because the CRM expects JSON numbers, and every value
reaching these models has already been rounded by the financial reconciler.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class _CRMModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class RecordRef(_CRMModel):
    """Lookup reference to another CRM record."""

    id: str
    name: str | None = None


# ── Contacts ────────────────────────────────────────────────────────────────


class Contact(_CRMModel):
    first_name: str = Field(default="", alias="First_Name")
    last_name: str = Field(default="", alias="Last_Name")
    email: str | None = Field(default=None, alias="Email")
    phone: str | None = Field(default=None, alias="Phone")
    country: str | None = Field(default=None, alias="Mailing_Country")
    city: str | None = Field(default=None, alias="Mailing_City")
    street: str | None = Field(default=None, alias="Mailing_Street")
    zip_code: str | None = Field(default=None, alias="Mailing_Zip")
    tax_id: str | None = Field(default=None, alias="Tax_ID")


# ── Consumer Sales Orders ───────────────────────────────────────────────────


class OrderedItem(_CRMModel):
    product: RecordRef = Field(alias="Product_Name")
    quantity: int = Field(alias="Quantity")
    discount_percent: float = Field(default=0.0, alias="DiscountP")
    list_price: float = Field(alias="List_Price")
    total: float = Field(alias="Total")


class SalesOrder(_CRMModel):
    contact: RecordRef = Field(alias="Contact_Name")
    ordered_items: list[OrderedItem] = Field(default_factory=list, alias="Ordered_Items")
    discount: float = Field(default=0.0, alias="Discount")
    discount_percent: float = Field(default=0.0, alias="DiscountP")
    vat: float = Field(default=0.0, alias="VAT")
    grand_total: float = Field(alias="Grand_Total")
    sub_total: float = Field(alias="Sub_Total")
    currency: str = Field(alias="Currency")
    billing_country: str = Field(default="", alias="Billing_Country")
    billing_street: str = Field(default="", alias="Billing_Street")
    billing_code: str = Field(default="", alias="Billing_Code")
    status: str = Field(default="", alias="Status")
    due_date: str = Field(default="", alias="Due_Date")
    terms_and_conditions: str = Field(default="", alias="Terms_and_Conditions")
    subject: str = Field(alias="Subject")
    site_id: str = Field(alias="ID_site")
    location: str = Field(default="", alias="Location_DR")
    order_source: str = Field(default="", alias="Order_Source")
    description: str = Field(default="", alias="Description")


# ── B2B Deals ───────────────────────────────────────────────────────────────


class Good(_CRMModel):
    """Deal sub-form line; only the price/total pair of the deal currency is set."""

    product: RecordRef = Field(alias="Product")
    deal: RecordRef | None = Field(default=None, alias="Deal")
    quantity: int = Field(alias="Goods_quantity")
    discount_percent: float = Field(default=0.0, alias="Discount")
    price_uah: float | None = Field(default=None, alias="Good_price")
    price_usd: float | None = Field(default=None, alias="Price_USD")
    price_eur: float | None = Field(default=None, alias="Price_EUR")
    price_pln: float | None = Field(default=None, alias="Price_PLN")
    total_uah: float | None = Field(default=None, alias="Total")
    total_usd: float | None = Field(default=None, alias="Total_USD")
    total_eur: float | None = Field(default=None, alias="Total_EUR")
    total_pln: float | None = Field(default=None, alias="Total_PLN")


class Deal(_CRMModel):
    contact: RecordRef = Field(alias="Contact_Name")
    goods: list[Good] = Field(default_factory=list, alias="Products")
    discount_percent: float = Field(default=0.0, alias="total_discount")
    description: str = Field(default="", alias="Description")
    vat: float = Field(default=0.0, alias="VAT")
    grand_total_uah: float | None = Field(default=None, alias="Grand_Total_UAH")
    grand_total_usd: float | None = Field(default=None, alias="Grand_Total_USD")
    grand_total_eur: float | None = Field(default=None, alias="Grand_Total_EUR")
    grand_total_pln: float | None = Field(default=None, alias="Grand_Total_PLN")
    sub_total_uah: float | None = Field(default=None, alias="Total_UAH")
    sub_total_usd: float | None = Field(default=None, alias="Total_USD")
    sub_total_eur: float | None = Field(default=None, alias="Total_EUR")
    sub_total_pln: float | None = Field(default=None, alias="Total_PLN")
    currency: str = Field(alias="Currency")
    country: str = Field(default="", alias="Country")
    stage: str = Field(default="", alias="Stage")
    pipeline: str = Field(default="", alias="Pipeline")
    delivery_street: str = Field(default="", alias="delivery_street")
    deal_name: str = Field(alias="Deal_Name")
    location: str = Field(default="", alias="Location")
    order_source: str = Field(default="", alias="Order_Source")


# ── API Envelopes ───────────────────────────────────────────────────────────


class ResponseItem(BaseModel):
    """One per-record entry of ``{"data": [...]}`` in a CRM write response."""

    status: str = ""
    code: str = ""
    message: str = ""
    details: dict[str, Any] = Field(default_factory=dict)


class APIResponse(BaseModel):
    data: list[ResponseItem] = Field(default_factory=list)


class TokenResponse(BaseModel):
    access_token: str = ""
    api_domain: str = ""
    token_type: str = ""
    expires_in: int = 3600
    error: str = ""
