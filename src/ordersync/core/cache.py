"""Small get-or-compute cache with per-entry expiry.

Used for the CRM access token and for validated API keys. A single
asyncio.Lock serializes computation, so concurrent callers that miss on the
same key wait for one refresh instead of racing several.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Generic, TypeVar

T = TypeVar("T")


@dataclass
class _Entry(Generic[T]):
    value: T
    expires_at: float


class ExpiringCache(Generic[T]):
    """Async key/value cache whose entries expire after a TTL.

    Args:
        default_ttl: Lifetime in seconds applied when ``compute`` does not supply one.
        clock: Monotonic time source, injectable for tests.
    """

    def __init__(
        self,
        default_ttl: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._default_ttl = default_ttl
        self._clock = clock
        self._entries: dict[str, _Entry[T]] = {}
        self._lock = asyncio.Lock()

    def peek(self, key: str) -> T | None:
        """Return a live value without computing; None when missing or expired."""
        entry = self._entries.get(key)
        if entry is None or entry.expires_at <= self._clock():
            return None
        return entry.value

    async def get_or_compute(
        self,
        key: str,
        compute: Callable[[], Awaitable[tuple[T, float | None]]],
    ) -> T:
        """Return the cached value for ``key`` or compute and store it.

        Args:
            key: Cache key.
            compute: Coroutine factory returning ``(value, ttl_seconds)``; a None
                TTL falls back to the cache default.

        Returns:
            The live cached value or the freshly computed one.
        """
        value = self.peek(key)
        if value is not None:
            return value

        async with self._lock:
            # Another waiter may have filled the entry while we queued.
            value = self.peek(key)
            if value is not None:
                return value
            value, ttl = await compute()
            self._entries[key] = _Entry(
                value=value,
                expires_at=self._clock() + (ttl if ttl is not None else self._default_ttl),
            )
            return value

    async def refresh(
        self,
        key: str,
        compute: Callable[[], Awaitable[tuple[T, float | None]]],
    ) -> T:
        """Force recomputation of ``key`` regardless of expiry."""
        async with self._lock:
            value, ttl = await compute()
            self._entries[key] = _Entry(
                value=value,
                expires_at=self._clock() + (ttl if ttl is not None else self._default_ttl),
            )
            return value

    def invalidate(self, key: str) -> None:
        self._entries.pop(key, None)

    def __len__(self) -> int:
        now = self._clock()
        return sum(1 for e in self._entries.values() if e.expires_at > now)
