"""Tests for the CRM amendment webhook reconciler."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from src.ordersync.errors import NotFoundError
from src.ordersync.orders.schemas import AmendmentEvent, CheckoutOrder, ClientDetails, LineItem
from src.ordersync.sync.webhook import STATUS_COMMENT, WebhookReconciler


# ── Helpers ────────────────────────────────────────────────────────────────


def _make_order(**overrides) -> CheckoutOrder:
    """Stored order at 23% tax, already synced as SO-1."""
    defaults = {
        "id": 42,
        "client": ClientDetails(email="anna@example.com"),
        "line_items": [LineItem(id=1, uid="u1", external_id="P-1", price=10000, total=10000)],
        "total": 12300,
        "sub_total": 10000,
        "tax_value": 2300,
        "external_id": "SO-1",
    }
    defaults.update(overrides)
    return CheckoutOrder(**defaults)


def _make_payload(**overrides) -> dict:
    """Two units at 100.00 with 10% off, 15.00 shipping, 23% tax."""
    payload = {
        "zoho_id": "SO-1",
        "grand_total": 236.40,
        "ordered_items": [
            {"zoho_id": "P-1", "price": 100.0, "quantity": 2, "total": 180.0},
            {"zoho_id": "P-SHIP", "price": 15.0, "quantity": 1, "total": 15.0},
        ],
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def sleep() -> AsyncMock:
    return AsyncMock()


@pytest.fixture
def reconciler(repository, sleep) -> WebhookReconciler:
    return WebhookReconciler(repository, lookup_attempts=5, lookup_delay=0.2, sleep=sleep)


# ── Lookup Race ────────────────────────────────────────────────────────────


class TestLookupRace:
    async def test_succeeds_on_fifth_attempt(self, reconciler, repository, sleep):
        repository.get_order_by_external_id.side_effect = [
            None,
            None,
            NotFoundError("not yet"),
            None,
            _make_order(),
        ]

        outcome = await reconciler.handle(AmendmentEvent.model_validate(_make_payload()))

        assert outcome.applied
        assert repository.get_order_by_external_id.await_count == 5
        assert sleep.await_count == 4
        sleep.assert_awaited_with(0.2)

    async def test_gives_up_after_five_attempts(self, reconciler, repository, sleep):
        repository.get_order_by_external_id.return_value = None

        with pytest.raises(NotFoundError):
            await reconciler.handle(AmendmentEvent.model_validate(_make_payload()))

        assert repository.get_order_by_external_id.await_count == 5
        assert sleep.await_count == 4
        repository.apply_amendment.assert_not_awaited()


# ── Echo Guard ─────────────────────────────────────────────────────────────


class TestEchoGuard:
    async def test_tracked_order_is_treated_as_echo(self, reconciler, repository):
        repository.get_order_by_external_id.return_value = _make_order(tracking="20450000111")

        outcome = await reconciler.handle(
            AmendmentEvent.model_validate(_make_payload(status="Нове"))
        )

        assert outcome.echo
        assert not outcome.applied
        repository.clear_tracking.assert_awaited_once_with(42)
        repository.change_status.assert_not_awaited()
        repository.apply_amendment.assert_not_awaited()
        repository.save_version.assert_not_awaited()


# ── Reconciliation ─────────────────────────────────────────────────────────


class TestReconcile:
    async def test_applies_recomputed_totals(self, reconciler, repository):
        repository.get_order_by_external_id.return_value = _make_order()

        outcome = await reconciler.handle(AmendmentEvent.model_validate(_make_payload()))

        assert outcome.applied
        assert outcome.total == 23640
        order_id, totals = repository.apply_amendment.await_args.args
        assert order_id == 42
        assert totals.sub_total == 20000
        assert totals.shipping == 1500
        assert totals.discount == 2000
        assert totals.tax == 4140
        assert [line.external_id for line in totals.lines] == ["P-1"]
        assert repository.apply_amendment.await_args.kwargs["comment"] == (
            "Order updated from CRM, total = 236.40"
        )

    async def test_coupon_code_books_coupon(self, reconciler, repository):
        repository.get_order_by_external_id.return_value = _make_order()

        await reconciler.handle(AmendmentEvent.model_validate(_make_payload(coupon="SPRING10")))

        totals = repository.apply_amendment.await_args.args[1]
        assert totals.coupon == 2000
        assert totals.discount == 0

    async def test_known_status_is_written_before_amendment(self, reconciler, repository):
        repository.get_order_by_external_id.return_value = _make_order()
        events: list[str] = []
        repository.change_status.side_effect = lambda *a: events.append("status")
        repository.apply_amendment.side_effect = lambda *a, **kw: events.append("amend")

        await reconciler.handle(
            AmendmentEvent.model_validate(_make_payload(status="Оплачено, формування ТТН"))
        )

        repository.change_status.assert_awaited_once_with(42, 2, STATUS_COMMENT)
        assert events == ["status", "amend"]

    async def test_unknown_status_is_ignored(self, reconciler, repository):
        repository.get_order_by_external_id.return_value = _make_order()

        outcome = await reconciler.handle(
            AmendmentEvent.model_validate(_make_payload(status="Delivered"))
        )

        assert outcome.applied
        repository.change_status.assert_not_awaited()

    async def test_raw_payload_is_stored_as_version(self, reconciler, repository):
        repository.get_order_by_external_id.return_value = _make_order()
        repository.save_version.return_value = 3
        raw = _make_payload()

        outcome = await reconciler.handle(AmendmentEvent.model_validate(raw), raw=raw)

        repository.save_version.assert_awaited_once_with(42, raw)
        assert outcome.version == 3

    async def test_version_failure_does_not_fail_the_update(self, reconciler, repository):
        repository.get_order_by_external_id.return_value = _make_order()
        repository.save_version.side_effect = RuntimeError("disk full")

        outcome = await reconciler.handle(AmendmentEvent.model_validate(_make_payload()))

        assert outcome.applied
        assert outcome.version is None

    async def test_unknown_product_aborts_without_snapshot(self, reconciler, repository):
        repository.get_order_by_external_id.return_value = _make_order()
        repository.apply_amendment.side_effect = NotFoundError("product P-1 unknown")

        with pytest.raises(NotFoundError):
            await reconciler.handle(AmendmentEvent.model_validate(_make_payload()))
        repository.save_version.assert_not_awaited()


class TestAmendmentEventValidation:
    def test_requires_items(self):
        with pytest.raises(ValueError):
            AmendmentEvent.model_validate(_make_payload(ordered_items=[]))

    def test_requires_positive_grand_total(self):
        with pytest.raises(ValueError):
            AmendmentEvent.model_validate(_make_payload(grand_total=0))
