"""Tests for OrderRepository against an in-memory SQLite database.

Covers the discovery filter (status, window and the external-id barrier),
isolation of unreadable rows during discovery, and the all-or-nothing
amendment transaction.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
import pytest_asyncio
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from src.ordersync.core.database import Base
from src.ordersync.errors import NotFoundError
from src.ordersync.orders.finance import AmendedLine, AmendmentTotals
from src.ordersync.orders.models import (
    OrderHistoryModel,
    OrderModel,
    OrderProductModel,
    OrderTotalModel,
    ProductModel,
)
from src.ordersync.orders.repository import OrderRepository
from src.ordersync.orders.status import OrderStatus


# ── Helpers ────────────────────────────────────────────────────────────────


def _make_order(order_id: int, **overrides) -> OrderModel:
    defaults = {
        "id": order_id,
        "first_name": "Anna",
        "last_name": "Nowak",
        "email": "anna@example.com",
        "total": Decimal("123.00"),
        "status_id": int(OrderStatus.NEW),
        "currency_code": "PLN",
        "currency_value": Decimal("1"),
        "external_id": "",
        "created_at": datetime.now(timezone.utc) - timedelta(days=1),
    }
    defaults.update(overrides)
    return OrderModel(**defaults)


def _make_line(order_id: int, price: str = "100.00", quantity: int = 1) -> OrderProductModel:
    return OrderProductModel(
        order_id=order_id,
        product_id=1,
        name="Widget",
        quantity=quantity,
        price=Decimal(price),
        total=Decimal(price) * quantity,
        tax=Decimal("23.00"),
    )


def _make_totals(order_id: int) -> list[OrderTotalModel]:
    return [
        OrderTotalModel(order_id=order_id, code="sub_total", title="Sub-Total", value=Decimal("100.00"), sort_order=1),
        OrderTotalModel(order_id=order_id, code="tax", title="VAT 23%", value=Decimal("23.00"), sort_order=5),
        OrderTotalModel(order_id=order_id, code="total", title="Total", value=Decimal("123.00"), sort_order=9),
    ]


@pytest_asyncio.fixture
async def sessionmaker():
    engine = create_async_engine("sqlite+aiosqlite://", poolclass=StaticPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    factory = async_sessionmaker(engine, expire_on_commit=False)
    async with factory() as session:
        session.add(ProductModel(id=1, uid="u1", sku="W-1", name="Widget", external_id="P-1"))
        await session.commit()
    yield factory
    await engine.dispose()


@pytest.fixture
def repository(sessionmaker) -> OrderRepository:
    async def session_factory():
        async with sessionmaker() as session:
            yield session

    return OrderRepository(session_factory)


async def _seed(sessionmaker, *rows) -> None:
    async with sessionmaker() as session:
        session.add_all(rows)
        await session.commit()


# ── Discovery ──────────────────────────────────────────────────────────────


class TestGetNewOrders:
    async def test_synced_orders_are_never_selected(self, sessionmaker, repository):
        await _seed(
            sessionmaker,
            _make_order(1),
            _make_order(2, external_id="SO-2"),
            _make_order(3, external_id="[B2B]"),
            _make_line(1),
            _make_line(2),
            _make_line(3),
        )

        orders = await repository.get_new_orders()

        assert [o.id for o in orders] == [1]

    async def test_status_and_window_filters(self, sessionmaker, repository):
        old = datetime.now(timezone.utc) - timedelta(days=60)
        await _seed(
            sessionmaker,
            _make_order(1, status_id=int(OrderStatus.PAYED)),
            _make_order(2, status_id=int(OrderStatus.CANCELED)),
            _make_order(3, status_id=int(OrderStatus.PENDING)),
            _make_order(4, created_at=old),
        )

        orders = await repository.get_new_orders(window_days=30)

        assert [o.id for o in orders] == [1]

    async def test_unreadable_order_does_not_block_others(self, sessionmaker, repository):
        await _seed(
            sessionmaker,
            _make_order(1),
            _make_order(2),
            _make_line(1, price="-5.00"),
            _make_line(2),
        )

        orders = await repository.get_new_orders()

        assert [o.id for o in orders] == [2]

    async def test_hydrates_items_and_totals_in_cents(self, sessionmaker, repository):
        await _seed(sessionmaker, _make_order(1), _make_line(1), *_make_totals(1))

        order = (await repository.get_new_orders())[0]

        assert order.total == 12300
        assert order.sub_total == 10000
        assert order.tax_value == 2300
        item = order.line_items[0]
        assert (item.uid, item.external_id, item.price, item.total) == ("u1", "P-1", 10000, 10000)


# ── Amendment Transaction ──────────────────────────────────────────────────


class TestApplyAmendment:
    async def _history_count(self, sessionmaker, order_id: int) -> int:
        async with sessionmaker() as session:
            result = await session.execute(
                select(func.count()).select_from(OrderHistoryModel).where(OrderHistoryModel.order_id == order_id)
            )
            return result.scalar_one()

    async def test_replaces_lines_and_totals(self, sessionmaker, repository):
        await _seed(sessionmaker, _make_order(1, external_id="SO-1"), _make_line(1), *_make_totals(1))
        totals = AmendmentTotals(
            lines=[AmendedLine(external_id="P-1", quantity=2, price=10000, tax=2300, total=20000)],
            sub_total=20000,
            tax=4600,
            total=24600,
        )

        await repository.apply_amendment(1, totals, "Order updated from CRM, total = 246.00")

        order = await repository.get_order(1)
        assert order.total == 24600
        assert order.tax_value == 4600
        assert [(i.quantity, i.total) for i in order.line_items] == [(2, 20000)]
        assert await self._history_count(sessionmaker, 1) == 1

    async def test_unknown_product_rolls_everything_back(self, sessionmaker, repository):
        await _seed(sessionmaker, _make_order(1, external_id="SO-1"), _make_line(1), *_make_totals(1))
        totals = AmendmentTotals(
            lines=[
                AmendedLine(external_id="P-1", quantity=2, price=10000, tax=2300, total=20000),
                AmendedLine(external_id="P-404", quantity=1, price=500, tax=0, total=500),
            ],
            sub_total=20500,
            tax=4600,
            total=25100,
        )

        with pytest.raises(NotFoundError):
            await repository.apply_amendment(1, totals, "Order updated from CRM, total = 251.00")

        order = await repository.get_order(1)
        assert order.total == 12300
        assert order.tax_value == 2300
        assert [(i.quantity, i.total) for i in order.line_items] == [(1, 10000)]
        assert await self._history_count(sessionmaker, 1) == 0

    async def test_unknown_order(self, repository):
        with pytest.raises(NotFoundError):
            await repository.apply_amendment(99, AmendmentTotals(), "noop")


# ── External Ids ───────────────────────────────────────────────────────────


class TestExternalIds:
    async def test_set_external_id_removes_order_from_discovery(self, sessionmaker, repository):
        await _seed(sessionmaker, _make_order(1), _make_line(1))

        await repository.set_external_id(1, "SO-1")

        assert await repository.get_new_orders() == []
        found = await repository.get_order_by_external_id("SO-1")
        assert found is not None and found.id == 1

    async def test_product_mapping_round_trip(self, repository):
        await repository.set_product_external_id("u1", "P-77")
        assert await repository.get_product_external_id("u1") == "P-77"
        assert await repository.get_product_external_id("nope") == ""
