"""In-memory relay state shared between relay cycles.

Holds the per-conversation watermark cache, the global rate-limit-until
timestamp and the resume cursor. Writers are serialized by one
asyncio.Lock; readers take no lock and never block each other (reads
are plain attribute lookups between awaits).
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta


class RelayState:
    def __init__(self, watermarks: dict[str, datetime] | None = None) -> None:
        self._watermarks: dict[str, datetime] = dict(watermarks or {})
        self._rate_limit_until: datetime | None = None
        self._resume_cursor: str | None = None
        self._lock = asyncio.Lock()

    # ── Watermarks ──────────────────────────────────────────────────────

    def watermark(self, chat_id: str) -> datetime | None:
        return self._watermarks.get(chat_id)

    async def load_watermarks(self, watermarks: dict[str, datetime]) -> None:
        async with self._lock:
            self._watermarks.update(watermarks)

    async def advance_watermark(self, chat_id: str, timestamp: datetime) -> bool:
        """Move the watermark forward; returns False if ``timestamp`` is not newer."""
        async with self._lock:
            current = self._watermarks.get(chat_id)
            if current is not None and timestamp <= current:
                return False
            self._watermarks[chat_id] = timestamp
            return True

    # ── Rate-limit backoff ──────────────────────────────────────────────

    @property
    def rate_limit_until(self) -> datetime | None:
        return self._rate_limit_until

    def backoff_active(self, now: datetime) -> bool:
        return self._rate_limit_until is not None and now < self._rate_limit_until

    async def set_backoff(self, now: datetime, seconds: float) -> datetime:
        async with self._lock:
            until = now + timedelta(seconds=seconds)
            if self._rate_limit_until is None or until > self._rate_limit_until:
                self._rate_limit_until = until
            return self._rate_limit_until

    # ── Resume cursor ───────────────────────────────────────────────────

    @property
    def resume_cursor(self) -> str | None:
        return self._resume_cursor

    async def set_resume_cursor(self, chat_id: str) -> None:
        async with self._lock:
            self._resume_cursor = chat_id

    async def take_resume_cursor(self) -> str | None:
        """Return and clear the resume cursor."""
        async with self._lock:
            cursor, self._resume_cursor = self._resume_cursor, None
            return cursor

    async def clear_resume_cursor(self) -> None:
        async with self._lock:
            self._resume_cursor = None
