"""SQLAlchemy models for the local order store.

Six tables:
- OrderModel: order header with client, currency and sync fields
- OrderProductModel: ordered lines (prices in the store's base currency)
- OrderTotalModel: aggregate totals keyed by code (sub_total, tax, shipping, ...)
- OrderHistoryModel: status/audit trail
- ProductModel: catalog products with their CRM product id
- OrderVersionModel: append-only JSON snapshots of CRM amendments
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from src.ordersync.core.database import Base

MONEY = Numeric(15, 4)


class OrderModel(Base):
    """Checkout order header.

    ``external_id`` stays empty until the order is created in the CRM; once
    set, discovery never selects the order again.
    """

    __tablename__ = "orders"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    customer_group_id: Mapped[int] = mapped_column(Integer, default=0, server_default="0")
    first_name: Mapped[str] = mapped_column(String(64), default="")
    last_name: Mapped[str] = mapped_column(String(64), default="")
    email: Mapped[str] = mapped_column(String(128), default="")
    telephone: Mapped[str] = mapped_column(String(32), default="")
    payment_country: Mapped[str] = mapped_column(String(128), default="")
    payment_postcode: Mapped[str] = mapped_column(String(16), default="")
    payment_city: Mapped[str] = mapped_column(String(128), default="")
    payment_address: Mapped[str] = mapped_column(String(256), default="")
    custom_field: Mapped[str] = mapped_column(Text, default="")
    comment: Mapped[str] = mapped_column(Text, default="")
    total: Mapped[Decimal] = mapped_column(MONEY, default=Decimal(0))
    status_id: Mapped[int] = mapped_column(Integer, default=0, index=True)
    currency_code: Mapped[str] = mapped_column(String(3), default="PLN")
    currency_value: Mapped[Decimal] = mapped_column(Numeric(15, 8), default=Decimal(1))
    source: Mapped[str] = mapped_column(String(64), default="")
    external_id: Mapped[str] = mapped_column(String(64), default="", server_default="", index=True)
    tracking: Mapped[str] = mapped_column(String(128), default="", server_default="")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        onupdate=func.now(),
        nullable=True,
    )


class ProductModel(Base):
    """Catalog product; ``external_id`` is the CRM product id (may be empty)."""

    __tablename__ = "products"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    uid: Mapped[str] = mapped_column(String(64), unique=True, default="")
    sku: Mapped[str] = mapped_column(String(64), default="")
    name: Mapped[str] = mapped_column(String(255), default="")
    external_id: Mapped[str] = mapped_column(String(64), default="", server_default="", index=True)


class OrderProductModel(Base):
    __tablename__ = "order_products"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    order_id: Mapped[int] = mapped_column(ForeignKey("orders.id", ondelete="CASCADE"), index=True)
    product_id: Mapped[int] = mapped_column(ForeignKey("products.id"))
    name: Mapped[str] = mapped_column(String(255), default="")
    sku: Mapped[str] = mapped_column(String(64), default="")
    quantity: Mapped[int] = mapped_column(Integer, default=1)
    price: Mapped[Decimal] = mapped_column(MONEY, default=Decimal(0))
    total: Mapped[Decimal] = mapped_column(MONEY, default=Decimal(0))
    tax: Mapped[Decimal] = mapped_column(MONEY, default=Decimal(0))


class OrderTotalModel(Base):
    """Aggregate total row; one per ``code`` per order."""

    __tablename__ = "order_totals"
    __table_args__ = (UniqueConstraint("order_id", "code", name="uq_order_total_code"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    order_id: Mapped[int] = mapped_column(ForeignKey("orders.id", ondelete="CASCADE"), index=True)
    code: Mapped[str] = mapped_column(String(32))
    title: Mapped[str] = mapped_column(String(255), default="")
    value: Mapped[Decimal] = mapped_column(MONEY, default=Decimal(0))
    sort_order: Mapped[int] = mapped_column(Integer, default=0)


class OrderHistoryModel(Base):
    __tablename__ = "order_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    order_id: Mapped[int] = mapped_column(ForeignKey("orders.id", ondelete="CASCADE"), index=True)
    status_id: Mapped[int] = mapped_column(Integer)
    notify: Mapped[bool] = mapped_column(Boolean, default=False)
    comment: Mapped[str] = mapped_column(Text, default="")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )


class OrderVersionModel(Base):
    """Snapshot of an inbound CRM amendment payload, numbered per order from 0."""

    __tablename__ = "order_versions"
    __table_args__ = (UniqueConstraint("order_id", "version", name="uq_order_version"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    order_id: Mapped[int] = mapped_column(Integer, index=True)
    version: Mapped[int] = mapped_column(Integer)
    payload: Mapped[dict] = mapped_column(JSON, default=dict)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        index=True,
    )
