"""Persistent per-conversation watermarks in a Redis hash."""

from __future__ import annotations

from datetime import datetime

import redis.asyncio as aioredis
import structlog

logger = structlog.get_logger(__name__)

WATERMARK_KEY = "chat:watermarks"


class WatermarkStore:
    """Stores the newest forwarded message timestamp per conversation.

    Args:
        redis_client: Redis client created with ``decode_responses=True``.
        key: Hash key holding ``chat_id -> ISO-8601 timestamp``.
    """

    def __init__(self, redis_client: aioredis.Redis, key: str = WATERMARK_KEY) -> None:
        self._redis = redis_client
        self._key = key

    async def load_all(self) -> dict[str, datetime]:
        raw = await self._redis.hgetall(self._key)
        watermarks: dict[str, datetime] = {}
        for chat_id, value in raw.items():
            try:
                watermarks[chat_id] = datetime.fromisoformat(value)
            except (TypeError, ValueError):
                logger.warning("watermarks.unparseable", chat_id=chat_id, value=value)
        return watermarks

    async def save(self, chat_id: str, timestamp: datetime) -> None:
        await self._redis.hset(self._key, chat_id, timestamp.isoformat())
