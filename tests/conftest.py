"""Shared test fixtures.

Provides:
- A fake clock usable by ExpiringCache, TokenBucket and the relay loop
- Async mocks standing in for the order repository, CRM and product catalog

No test touches a real database, Redis or HTTP endpoint.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest


class FakeClock:
    """Manually advanced clock returning floats or UTC datetimes."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
        self.monotonic = 1000.0

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)
        self.monotonic += seconds

    def __call__(self) -> float:
        return self.monotonic

    def utcnow(self) -> datetime:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.advance(seconds)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def repository() -> AsyncMock:
    repo = AsyncMock()
    repo.shipping_external_id.return_value = "P-SHIP"
    repo.save_version.return_value = 0
    return repo


@pytest.fixture
def crm() -> AsyncMock:
    client = AsyncMock()
    client.create_contact.return_value = "C-1"
    client.create_sales_order.return_value = "SO-1"
    client.create_deal.return_value = "D-1"
    return client


@pytest.fixture
def catalog() -> AsyncMock:
    return AsyncMock()
