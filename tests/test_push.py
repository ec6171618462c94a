"""Tests for the order push orchestrator state machine.

The repository, CRM and product catalog are AsyncMocks; each test checks
the final PushState and which collaborator calls were (not) made.
"""

from __future__ import annotations

import warnings
from datetime import date
from pathlib import Path

import pytest

from src.ordersync.errors import CRMError, NotFoundError, OrderValidationError, PartialPushError
from src.ordersync.orders.schemas import B2B_EXTERNAL_ID, CheckoutOrder, ClientDetails, LineItem
from src.ordersync.scheduler import StopToken
from src.ordersync.sync import push
from src.ordersync.sync.push import OrderPushOrchestrator, PushState


# ── Helpers ────────────────────────────────────────────────────────────────


def _make_order(**overrides) -> CheckoutOrder:
    defaults = {
        "id": 42,
        "client": ClientDetails(first_name="Anna", last_name="Nowak", email="anna@example.com", group_id=1),
        "line_items": [LineItem(id=1, uid="u1", external_id="P-1", price=10000, total=10000)],
        "total": 12300,
        "sub_total": 10000,
        "tax_value": 2300,
    }
    defaults.update(overrides)
    return CheckoutOrder(**defaults)


def _many_items(n: int) -> list[LineItem]:
    return [LineItem(id=i, uid=f"u{i}", external_id=f"P-{i}", price=100, total=100) for i in range(n)]


@pytest.fixture
def orchestrator(repository, crm, catalog) -> OrderPushOrchestrator:
    return OrderPushOrchestrator(repository, crm, catalog, today=lambda: date(2026, 3, 1))


# ── Discovery Cycle ────────────────────────────────────────────────────────


class TestProcessOrders:
    async def test_happy_path_syncs_order(self, orchestrator, repository, crm):
        repository.get_new_orders.return_value = [_make_order()]

        report = await orchestrator.process_orders()

        assert [o.state for o in report.outcomes] == [PushState.SYNCED]
        assert report.outcomes[0].external_id == "SO-1"
        repository.set_external_id.assert_awaited_once_with(42, "SO-1")
        crm.append_order_items.assert_not_awaited()

    async def test_discovery_window_is_passed_through(self, repository, crm, catalog):
        repository.get_new_orders.return_value = []
        orchestrator = OrderPushOrchestrator(repository, crm, catalog, discovery_window_days=7)

        await orchestrator.process_orders()

        repository.get_new_orders.assert_awaited_once_with(7)

    @pytest.mark.parametrize("group_id", [6, 7, 16, 18, 19])
    async def test_b2b_client_is_stamped_and_skipped(self, orchestrator, repository, crm, group_id):
        order = _make_order(client=ClientDetails(email="b2b@example.com", group_id=group_id))
        repository.get_new_orders.return_value = [order]

        report = await orchestrator.process_orders()

        assert report.outcomes[0].state == PushState.SKIPPED_B2B
        repository.set_external_id.assert_awaited_once_with(42, B2B_EXTERNAL_ID)
        crm.create_contact.assert_not_awaited()
        crm.create_sales_order.assert_not_awaited()

    async def test_zero_total_b2b_order_is_still_stamped(self, orchestrator, repository, crm):
        order = _make_order(client=ClientDetails(email="b2b@example.com", group_id=6), total=0)
        repository.get_new_orders.return_value = [order]

        report = await orchestrator.process_orders()

        assert report.outcomes[0].state == PushState.SKIPPED_B2B
        repository.set_external_id.assert_awaited_once_with(42, B2B_EXTERNAL_ID)

    async def test_zero_total_consumer_order_is_retained(self, orchestrator, repository, crm):
        repository.get_new_orders.return_value = [_make_order(total=0)]

        report = await orchestrator.process_orders()

        assert report.outcomes[0].state == PushState.RETAINED
        crm.create_contact.assert_not_awaited()

    async def test_order_without_items_is_retained(self, orchestrator, repository, crm):
        repository.get_new_orders.return_value = [_make_order(line_items=[])]

        report = await orchestrator.process_orders()

        assert report.outcomes[0].state == PushState.RETAINED
        crm.create_contact.assert_not_awaited()
        repository.set_external_id.assert_not_awaited()

    async def test_order_without_client_is_retained(self, orchestrator, repository):
        repository.get_new_orders.return_value = [_make_order(client=None)]

        report = await orchestrator.process_orders()

        assert report.outcomes[0].state == PushState.RETAINED

    async def test_missing_uid_is_retained(self, orchestrator, repository, crm):
        order = _make_order(line_items=[LineItem(id=1, uid="", price=10000, total=10000)])
        repository.get_new_orders.return_value = [order]

        report = await orchestrator.process_orders()

        assert report.outcomes[0].state == PushState.RETAINED
        assert "UID" in report.outcomes[0].error
        crm.create_sales_order.assert_not_awaited()

    async def test_missing_external_id_is_resolved_and_persisted(
        self, orchestrator, repository, crm, catalog
    ):
        order = _make_order(line_items=[LineItem(id=1, uid="u1", external_id="", price=10000, total=10000)])
        repository.get_new_orders.return_value = [order]
        catalog.get_external_id.return_value = "P-9"

        report = await orchestrator.process_orders()

        assert report.outcomes[0].state == PushState.SYNCED
        catalog.get_external_id.assert_awaited_once_with("u1")
        repository.set_product_external_id.assert_awaited_once_with("u1", "P-9")
        sales_order = crm.create_sales_order.await_args.args[0]
        assert sales_order.ordered_items[0].product.id == "P-9"

    async def test_unresolvable_product_retains_order(self, orchestrator, repository, crm, catalog):
        order = _make_order(line_items=[LineItem(id=1, uid="u1", external_id="", price=10000, total=10000)])
        repository.get_new_orders.return_value = [order]
        catalog.get_external_id.side_effect = NotFoundError("product u1 not in catalog")

        report = await orchestrator.process_orders()

        assert report.outcomes[0].state == PushState.RETAINED
        repository.set_product_external_id.assert_not_awaited()
        crm.create_sales_order.assert_not_awaited()
        repository.set_external_id.assert_not_awaited()

    async def test_one_failure_does_not_stop_siblings(self, orchestrator, repository, crm):
        repository.get_new_orders.return_value = [_make_order(id=1), _make_order(id=2)]
        crm.create_contact.side_effect = [CRMError("rejected", code="INVALID_DATA"), "C-2"]

        report = await orchestrator.process_orders()

        assert [o.state for o in report.outcomes] == [PushState.RETAINED, PushState.SYNCED]
        repository.set_external_id.assert_awaited_once_with(2, "SO-1")

    async def test_unexpected_exception_is_contained(self, orchestrator, repository, crm):
        repository.get_new_orders.return_value = [_make_order()]
        crm.create_sales_order.side_effect = RuntimeError("socket closed")

        report = await orchestrator.process_orders()

        assert report.outcomes[0].state == PushState.RETAINED
        repository.set_external_id.assert_not_awaited()

    async def test_stop_before_next_order(self, orchestrator, repository, crm):
        repository.get_new_orders.return_value = [_make_order(id=1), _make_order(id=2)]
        stop = StopToken()

        async def create_and_stop(sales_order):
            stop.set()
            return "SO-1"

        crm.create_sales_order.side_effect = create_and_stop

        report = await orchestrator.process_orders(stop)

        assert report.interrupted
        assert len(report.outcomes) == 1
        assert crm.create_sales_order.await_count == 1


# ── Chunked Upload ─────────────────────────────────────────────────────────


class TestChunkedPush:
    async def test_remaining_items_are_appended(self, orchestrator, repository, crm):
        order = _make_order(line_items=_many_items(250), total=30750, tax_value=5750)
        repository.get_new_orders.return_value = [order]

        report = await orchestrator.process_orders()

        assert report.outcomes[0].state == PushState.SYNCED
        assert len(crm.create_sales_order.await_args.args[0].ordered_items) == 100
        sizes = [len(c.args[1]) for c in crm.append_order_items.await_args_list]
        assert sizes == [100, 50]
        assert all(c.args[0] == "SO-1" for c in crm.append_order_items.await_args_list)

    async def test_external_id_is_persisted_before_chunks(self, orchestrator, repository, crm):
        order = _make_order(line_items=_many_items(150), total=18450, tax_value=3450)
        repository.get_new_orders.return_value = [order]
        events: list[str] = []
        repository.set_external_id.side_effect = lambda *a: events.append("set_external_id")
        crm.append_order_items.side_effect = lambda *a: events.append("append")

        await orchestrator.process_orders()

        assert events == ["set_external_id", "append"]

    async def test_chunk_failure_is_flagged_not_retried(self, orchestrator, repository, crm):
        order = _make_order(line_items=_many_items(350), total=43050, tax_value=8050)
        repository.get_new_orders.return_value = [order]
        crm.append_order_items.side_effect = [None, CRMError("limit exceeded")]

        report = await orchestrator.process_orders()

        outcome = report.outcomes[0]
        assert outcome.state == PushState.PUSHED
        assert outcome.external_id == "SO-1"
        assert crm.append_order_items.await_count == 2
        repository.set_external_id.assert_awaited_once_with(42, "SO-1")

    async def test_stop_is_checked_between_chunks(self, orchestrator, repository, crm):
        order = _make_order(line_items=_many_items(250), total=30750, tax_value=5750)
        repository.get_new_orders.return_value = [order]
        stop = StopToken()

        async def append_and_stop(order_id, items):
            stop.set()

        crm.append_order_items.side_effect = append_and_stop

        report = await orchestrator.process_orders(stop)

        assert report.outcomes[0].state == PushState.PUSHED
        assert crm.append_order_items.await_count == 1


# ── Operator Push ──────────────────────────────────────────────────────────


class TestPushOrder:
    async def test_returns_new_external_id(self, orchestrator, repository):
        repository.get_order.return_value = _make_order()

        assert await orchestrator.push_order(42) == "SO-1"
        repository.get_order.assert_awaited_once_with(42)

    async def test_already_synced_order_is_not_pushed_again(self, orchestrator, repository, crm):
        repository.get_order.return_value = _make_order(external_id="SO-7")

        assert await orchestrator.push_order(42) == "SO-7"
        crm.create_contact.assert_not_awaited()
        crm.create_sales_order.assert_not_awaited()

    async def test_validation_errors_propagate(self, orchestrator, repository):
        repository.get_order.return_value = _make_order(line_items=[])

        with pytest.raises(OrderValidationError):
            await orchestrator.push_order(42)

    async def test_chunk_failure_propagates(self, orchestrator, repository, crm):
        repository.get_order.return_value = _make_order(
            line_items=_many_items(150), total=18450, tax_value=3450
        )
        crm.append_order_items.side_effect = CRMError("limit exceeded")

        with pytest.raises(PartialPushError) as exc_info:
            await orchestrator.push_order(42)
        assert exc_info.value.external_id == "SO-1"
        assert exc_info.value.chunk == 1

    async def test_contact_is_created_from_client(self, orchestrator, repository, crm):
        repository.get_order.return_value = _make_order()

        await orchestrator.push_order(42)

        contact = crm.create_contact.await_args.args[0]
        assert contact.email == "anna@example.com"
        assert crm.create_sales_order.await_args.args[0].contact.id == "C-1"


class TestModuleSource:
    def test_compiles_without_warnings(self):
        source = Path(push.__file__).read_text(encoding="utf-8")
        with warnings.catch_warnings():
            warnings.simplefilter("error")
            compile(source, push.__file__, "exec")
