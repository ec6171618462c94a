"""Process-wide Redis client used for chat relay watermarks.

Created on first use from ``REDIS_URL`` with string decoding, and closed in
the application lifespan.
"""

from __future__ import annotations

import redis.asyncio as aioredis

from src.ordersync.config import get_settings

_client: aioredis.Redis | None = None


def get_redis_pool() -> aioredis.Redis:
    """Return the shared client, creating it on first call."""
    global _client
    if _client is None:
        _client = aioredis.from_url(
            get_settings().REDIS_URL,
            decode_responses=True,
            health_check_interval=30,
        )
    return _client


async def ping_redis() -> bool:
    """True when Redis answers PING."""
    return bool(await get_redis_pool().ping())


async def close_redis() -> None:
    global _client
    if _client is not None:
        await _client.aclose()
        _client = None
