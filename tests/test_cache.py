"""Tests for ExpiringCache get-or-compute semantics."""

from __future__ import annotations

import asyncio

from src.ordersync.core.cache import ExpiringCache


# ── Helpers ────────────────────────────────────────────────────────────────


def _counter(value: str = "v", ttl: float | None = None):
    calls = {"n": 0}

    async def compute():
        calls["n"] += 1
        await asyncio.sleep(0)
        return f"{value}{calls['n']}", ttl

    return compute, calls


# ── Tests ──────────────────────────────────────────────────────────────────


class TestExpiringCache:
    async def test_computes_once_while_live(self, clock):
        cache: ExpiringCache[str] = ExpiringCache(default_ttl=60, clock=clock)
        compute, calls = _counter()

        assert await cache.get_or_compute("k", compute) == "v1"
        assert await cache.get_or_compute("k", compute) == "v1"
        assert calls["n"] == 1

    async def test_recomputes_after_expiry(self, clock):
        cache: ExpiringCache[str] = ExpiringCache(default_ttl=60, clock=clock)
        compute, calls = _counter()

        await cache.get_or_compute("k", compute)
        clock.advance(61)
        assert cache.peek("k") is None
        assert await cache.get_or_compute("k", compute) == "v2"

    async def test_compute_supplied_ttl_wins(self, clock):
        cache: ExpiringCache[str] = ExpiringCache(default_ttl=60, clock=clock)
        compute, _ = _counter(ttl=5)

        await cache.get_or_compute("k", compute)
        clock.advance(6)
        assert cache.peek("k") is None

    async def test_concurrent_misses_share_one_computation(self, clock):
        cache: ExpiringCache[str] = ExpiringCache(clock=clock)
        compute, calls = _counter()

        results = await asyncio.gather(*(cache.get_or_compute("k", compute) for _ in range(5)))

        assert results == ["v1"] * 5
        assert calls["n"] == 1

    async def test_refresh_forces_recomputation(self, clock):
        cache: ExpiringCache[str] = ExpiringCache(clock=clock)
        compute, _ = _counter()

        await cache.get_or_compute("k", compute)
        assert await cache.refresh("k", compute) == "v2"
        assert cache.peek("k") == "v2"

    async def test_invalidate_and_len(self, clock):
        cache: ExpiringCache[str] = ExpiringCache(clock=clock)
        compute, _ = _counter()

        await cache.get_or_compute("a", compute)
        await cache.get_or_compute("b", compute)
        assert len(cache) == 2
        cache.invalidate("a")
        assert len(cache) == 1
        assert cache.peek("a") is None
