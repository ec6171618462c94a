"""Order repository -- async reads and writes against the local order store.

Provides OrderRepository with the session_factory callable pattern. Rows
are converted to integer-cent CheckoutOrder schemas in the order currency;
writes convert back to base-currency decimals.

The only multi-statement write that must be atomic is apply_amendment(),
which runs inside one database transaction.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, Callable
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any

import structlog
from pydantic import ValidationError
from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from src.ordersync.errors import NotFoundError
from src.ordersync.orders.address import parse_tax_id
from src.ordersync.orders.finance import AmendmentTotals, from_cents, to_cents
from src.ordersync.orders.models import (
    OrderHistoryModel,
    OrderModel,
    OrderProductModel,
    OrderTotalModel,
    OrderVersionModel,
    ProductModel,
)
from src.ordersync.orders.schemas import (
    SHIPPING_ITEM_UID,
    CheckoutOrder,
    ClientDetails,
    LineItem,
)
from src.ordersync.orders.status import PUSHABLE_STATUSES, OrderStatus

logger = structlog.get_logger(__name__)

SessionFactory = Callable[[], AsyncGenerator[AsyncSession, None]]

# A stored per-unit tax above this share of the unit price is a row total.
_ROW_TAX_THRESHOLD = Decimal("0.25")

_TOTAL_SORT = {"sub_total": 1, "discount": 2, "coupon": 3, "shipping": 4, "tax": 5, "total": 9}


# ── Serialization Helpers ───────────────────────────────────────────────────


def _in_order_currency(value: Decimal | None, currency_value: Decimal) -> int:
    return to_cents((value or Decimal(0)) * currency_value)


def _in_base_currency(cents: int, currency_value: Decimal) -> Decimal:
    return from_cents(cents) / currency_value


def _to_status(value: int | None) -> OrderStatus:
    try:
        return OrderStatus(value or 0)
    except ValueError:
        return OrderStatus.PENDING


def _model_to_client(model: OrderModel, tax_field_id: str) -> ClientDetails:
    tax_id = ""
    try:
        tax_id = parse_tax_id(tax_field_id, model.custom_field or "")
    except ValueError:
        logger.warning("orders.tax_id_unparseable", order_id=model.id)
    return ClientDetails(
        first_name=model.first_name or "",
        last_name=model.last_name or "",
        email=model.email or "",
        phone=model.telephone or "",
        country=model.payment_country or "",
        zip_code=model.payment_postcode or "",
        city=model.payment_city or "",
        street=model.payment_address or "",
        tax_id=tax_id,
        group_id=model.customer_group_id or 0,
    )


def _row_to_line_item(
    row: OrderProductModel,
    product: ProductModel | None,
    currency_value: Decimal,
) -> LineItem:
    quantity = max(row.quantity or 1, 1)
    price = _in_order_currency(row.price, currency_value)
    tax_value = row.tax or Decimal(0)
    if row.price and tax_value / row.price > _ROW_TAX_THRESHOLD:
        tax_value = tax_value / quantity
    return LineItem(
        id=row.id,
        uid=product.uid if product else "",
        name=row.name or "",
        sku=row.sku or "",
        external_id=product.external_id if product else "",
        quantity=quantity,
        price=price,
        tax=_in_order_currency(tax_value, currency_value),
        total=_in_order_currency(row.total, currency_value),
    )


class OrderRepository:
    """Async persistence for checkout orders, products and amendment snapshots.

    Args:
        session_factory: Async generator yielding an AsyncSession.
        tax_id_field: Key of the tax id inside the order's custom-field JSON.
    """

    def __init__(self, session_factory: SessionFactory, tax_id_field: str = "2") -> None:
        self._session_factory = session_factory
        self._tax_id_field = tax_id_field
        self._shipping_external_id: str | None = None

    # ── Reads ───────────────────────────────────────────────────────────────

    async def _hydrate(self, session: AsyncSession, model: OrderModel) -> CheckoutOrder:
        currency_value = model.currency_value or Decimal(1)

        rows = await session.execute(
            select(OrderProductModel, ProductModel)
            .outerjoin(ProductModel, ProductModel.id == OrderProductModel.product_id)
            .where(OrderProductModel.order_id == model.id)
            .order_by(OrderProductModel.id)
        )
        items = [_row_to_line_item(row, product, currency_value) for row, product in rows.all()]

        totals_result = await session.execute(
            select(OrderTotalModel).where(OrderTotalModel.order_id == model.id)
        )
        totals = {t.code: t for t in totals_result.scalars().all()}

        def amount(code: str) -> int:
            row = totals.get(code)
            return abs(_in_order_currency(row.value, currency_value)) if row else 0

        def title(code: str) -> str:
            row = totals.get(code)
            return row.title if row else ""

        shipping = amount("shipping")
        if shipping > 0:
            items.append(
                LineItem(
                    uid=SHIPPING_ITEM_UID,
                    name=title("shipping") or "Shipping",
                    external_id=await self._load_shipping_external_id(session),
                    quantity=1,
                    price=shipping,
                    total=shipping,
                    shipping=True,
                )
            )

        return CheckoutOrder(
            id=model.id,
            client=_model_to_client(model, self._tax_id_field),
            line_items=items,
            currency=model.currency_code,
            currency_value=float(currency_value),
            total=_in_order_currency(model.total, currency_value),
            sub_total=amount("sub_total"),
            tax_value=amount("tax"),
            tax_title=title("tax"),
            shipping=shipping,
            shipping_title=title("shipping"),
            discount=amount("discount"),
            coupon=amount("coupon"),
            coupon_title=title("coupon"),
            status=_to_status(model.status_id),
            created_at=model.created_at,
            external_id=model.external_id or "",
            tracking=model.tracking or "",
            source=model.source or "",
            comment=model.comment or "",
        )

    async def _load_shipping_external_id(self, session: AsyncSession) -> str:
        if self._shipping_external_id is None:
            result = await session.execute(
                select(ProductModel.external_id).where(ProductModel.uid == SHIPPING_ITEM_UID)
            )
            self._shipping_external_id = result.scalar_one_or_none() or ""
        return self._shipping_external_id

    async def shipping_external_id(self) -> str:
        """CRM product id of the shipping pseudo-product ("" if unmapped)."""
        async for session in self._session_factory():
            return await self._load_shipping_external_id(session)
        return ""

    async def get_new_orders(self, window_days: int = 30) -> list[CheckoutOrder]:
        """Orders eligible for a push: pushable status, recent, no external id."""
        since = datetime.now(timezone.utc) - timedelta(days=window_days)
        async for session in self._session_factory():
            result = await session.execute(
                select(OrderModel)
                .where(
                    OrderModel.status_id.in_([int(s) for s in PUSHABLE_STATUSES]),
                    OrderModel.created_at >= since,
                    OrderModel.external_id == "",
                )
                .order_by(OrderModel.id)
            )
            orders: list[CheckoutOrder] = []
            for model in result.scalars().all():
                # A row that cannot be hydrated must not block its siblings.
                try:
                    orders.append(await self._hydrate(session, model))
                except (ValidationError, ValueError) as exc:
                    logger.error("orders.hydrate_failed", order_id=model.id, error=str(exc))
            return orders
        return []

    async def get_order(self, order_id: int) -> CheckoutOrder:
        """Load one order by local id.

        Raises:
            NotFoundError: No such order.
        """
        async for session in self._session_factory():
            model = await session.get(OrderModel, order_id)
            if model is None:
                raise NotFoundError(f"order {order_id} not found")
            return await self._hydrate(session, model)
        raise NotFoundError(f"order {order_id} not found")

    async def get_order_by_external_id(self, external_id: str) -> CheckoutOrder | None:
        async for session in self._session_factory():
            result = await session.execute(
                select(OrderModel).where(OrderModel.external_id == external_id).limit(1)
            )
            model = result.scalar_one_or_none()
            if model is None:
                return None
            return await self._hydrate(session, model)
        return None

    # ── Writes ──────────────────────────────────────────────────────────────

    async def set_external_id(self, order_id: int, external_id: str) -> None:
        async for session in self._session_factory():
            await session.execute(
                update(OrderModel).where(OrderModel.id == order_id).values(external_id=external_id)
            )
            await session.commit()

    async def change_status(self, order_id: int, status: OrderStatus | int, comment: str) -> None:
        """Set the order status and append a history row."""
        async for session in self._session_factory():
            await session.execute(
                update(OrderModel).where(OrderModel.id == order_id).values(status_id=int(status))
            )
            session.add(OrderHistoryModel(order_id=order_id, status_id=int(status), comment=comment))
            await session.commit()

    async def clear_tracking(self, order_id: int) -> None:
        async for session in self._session_factory():
            await session.execute(
                update(OrderModel).where(OrderModel.id == order_id).values(tracking="")
            )
            await session.commit()

    async def apply_amendment(self, order_id: int, totals: AmendmentTotals, comment: str) -> None:
        """Replace lines, totals and grand total and log history in one transaction.

        Raises:
            NotFoundError: The order, or a product for one of the lines, is
                missing; nothing is written in that case.
        """
        async for session in self._session_factory():
            async with session.begin():
                order = await session.get(OrderModel, order_id)
                if order is None:
                    raise NotFoundError(f"order {order_id} not found")
                currency_value = order.currency_value or Decimal(1)

                await session.execute(
                    delete(OrderProductModel).where(OrderProductModel.order_id == order_id)
                )
                for line in totals.lines:
                    product = (
                        await session.execute(
                            select(ProductModel).where(ProductModel.external_id == line.external_id).limit(1)
                        )
                    ).scalar_one_or_none()
                    if product is None:
                        raise NotFoundError(f"product with external id {line.external_id} not found")
                    session.add(
                        OrderProductModel(
                            order_id=order_id,
                            product_id=product.id,
                            name=product.name,
                            sku=product.sku,
                            quantity=line.quantity,
                            price=_in_base_currency(line.price, currency_value),
                            total=_in_base_currency(line.total, currency_value),
                            tax=_in_base_currency(line.tax, currency_value),
                        )
                    )

                order.total = _in_base_currency(totals.total, currency_value)

                await session.execute(
                    update(OrderTotalModel).where(OrderTotalModel.order_id == order_id).values(value=0)
                )
                existing = {
                    t.code: t
                    for t in (
                        await session.execute(
                            select(OrderTotalModel).where(OrderTotalModel.order_id == order_id)
                        )
                    ).scalars().all()
                }
                for code, cents in (
                    ("sub_total", totals.sub_total),
                    ("tax", totals.tax),
                    ("discount", -totals.discount),
                    ("coupon", -totals.coupon),
                    ("shipping", totals.shipping),
                    ("total", totals.total),
                ):
                    value = _in_base_currency(cents, currency_value)
                    if code in existing:
                        existing[code].value = value
                    elif cents:
                        session.add(
                            OrderTotalModel(
                                order_id=order_id,
                                code=code,
                                title=code.replace("_", " ").title(),
                                value=value,
                                sort_order=_TOTAL_SORT[code],
                            )
                        )

                session.add(
                    OrderHistoryModel(order_id=order_id, status_id=order.status_id, comment=comment)
                )

    # ── Products ────────────────────────────────────────────────────────────

    async def get_product_external_id(self, uid: str) -> str:
        async for session in self._session_factory():
            result = await session.execute(
                select(ProductModel.external_id).where(ProductModel.uid == uid)
            )
            return result.scalar_one_or_none() or ""
        return ""

    async def set_product_external_id(self, uid: str, external_id: str) -> None:
        async for session in self._session_factory():
            await session.execute(
                update(ProductModel).where(ProductModel.uid == uid).values(external_id=external_id)
            )
            await session.commit()
        logger.info("orders.product_mapping_saved", uid=uid, external_id=external_id)

    # ── Version Snapshots ───────────────────────────────────────────────────

    async def save_version(self, order_id: int, payload: dict[str, Any]) -> int:
        """Append a snapshot; versions are numbered per order from 0."""
        async for session in self._session_factory():
            result = await session.execute(
                select(func.max(OrderVersionModel.version)).where(OrderVersionModel.order_id == order_id)
            )
            current = result.scalar_one_or_none()
            version = 0 if current is None else current + 1
            session.add(OrderVersionModel(order_id=order_id, version=version, payload=payload))
            await session.commit()
            return version
        return 0

    async def delete_expired_versions(self, expired_days: int) -> int:
        cutoff = datetime.now(timezone.utc) - timedelta(days=expired_days)
        async for session in self._session_factory():
            result = await session.execute(
                delete(OrderVersionModel).where(OrderVersionModel.created_at < cutoff)
            )
            await session.commit()
            return result.rowcount or 0
        return 0
