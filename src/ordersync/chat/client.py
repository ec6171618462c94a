"""Async HTTP client for the chat provider API.

Every request first takes a token from the client's TokenBucket, then runs
under a tenacity retry loop: 429/423 and 5xx responses and transport
failures are retried up to five times. A server-supplied Retry-After
(seconds or HTTP date) is honored up to MAX_DELAY, otherwise the delay
grows exponentially from BASE_DELAY with jitter. Rate-limit responses that
survive the retries surface as RateLimitedError carrying the backoff the
relay loop should observe.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any

import httpx
import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)

from src.ordersync.chat.schemas import Chat, ChatPage, Message, MessagePage
from src.ordersync.core.rate_limiter import TokenBucket
from src.ordersync.errors import MalformedResponseError, OrderSyncError, RateLimitedError

logger = structlog.get_logger(__name__)

MAX_RETRIES = 5
BASE_DELAY = 0.5
MAX_DELAY = 10.0
JITTER = 0.2

CHATS_PAGE_SIZE = 20
MESSAGES_PAGE_SIZE = 100

# Backoff applied when a rate-limit response carries no Retry-After.
DEFAULT_RETRY_AFTER = {423: 720.0, 429: 5.0}
RATE_LIMIT_STATUSES = frozenset(DEFAULT_RETRY_AFTER)


class ChatAPIError(OrderSyncError):
    """Non-200 response other than a rate limit."""

    def __init__(self, status_code: int, body: str = "") -> None:
        super().__init__(f"chat API error: HTTP {status_code}")
        self.status_code = status_code
        self.body = body


def parse_retry_after(value: str | None, now: datetime | None = None) -> float | None:
    """Parse a Retry-After header given as seconds or as an HTTP date."""
    if not value:
        return None
    value = value.strip()
    if value.isdigit():
        return float(value)
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return max((when - (now or datetime.now(timezone.utc))).total_seconds(), 0.0)


def _is_retriable(exc: BaseException) -> bool:
    if isinstance(exc, RateLimitedError):
        return True
    if isinstance(exc, ChatAPIError):
        return 500 <= exc.status_code <= 599
    return isinstance(exc, (httpx.ConnectError, httpx.TimeoutException, httpx.ReadError))


_exponential = wait_exponential(multiplier=BASE_DELAY, max=MAX_DELAY) + wait_random(0, BASE_DELAY * JITTER)


def _wait(retry_state: RetryCallState) -> float:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    if isinstance(exc, RateLimitedError) and exc.retry_after:
        return min(exc.retry_after, MAX_DELAY)
    return _exponential(retry_state)


class ChatProviderClient:
    """Reads conversations and messages from the chat provider.

    Args:
        base_url: API base URL.
        token: Bearer token.
        limiter: Token bucket shared by all requests of this client.
        timeout: Request timeout in seconds.
        max_retries: Retries after the first attempt.
        transport: Optional httpx transport for tests.
        sleep: Sleep used between retries, injectable for tests.
    """

    TIMEOUT = 30.0

    def __init__(
        self,
        base_url: str,
        token: str,
        limiter: TokenBucket,
        timeout: float = TIMEOUT,
        max_retries: int = MAX_RETRIES,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._headers = {"Authorization": f"Bearer {token}", "Accept": "application/json"}
        self._limiter = limiter
        self._timeout = timeout
        self._max_retries = max_retries
        self._transport = transport
        self._sleep = sleep

    async def _request(self, path: str, params: dict[str, Any]) -> Any:
        await self._limiter.acquire()
        async with httpx.AsyncClient(
            headers=self._headers, timeout=self._timeout, transport=self._transport
        ) as client:
            response = await client.get(f"{self._base_url}/{path}", params=params)

        if response.status_code == 200:
            try:
                return response.json()
            except ValueError as exc:
                raise MalformedResponseError(f"chat API {path}: non-JSON body") from exc

        if response.status_code in RATE_LIMIT_STATUSES:
            retry_after = parse_retry_after(response.headers.get("Retry-After"))
            if not retry_after:
                retry_after = DEFAULT_RETRY_AFTER[response.status_code]
            logger.debug("chat.rate_limited", path=path, status_code=response.status_code,
                         retry_after=retry_after)
            raise RateLimitedError(response.status_code, retry_after, response.text)
        raise ChatAPIError(response.status_code, response.text)

    async def _get(self, path: str, params: dict[str, Any]) -> Any:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self._max_retries + 1),
            wait=_wait,
            retry=retry_if_exception(_is_retriable),
            sleep=self._sleep,
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                return await self._request(path, params)
        raise MalformedResponseError(f"chat API {path}: no attempt made")

    async def list_chats(self) -> list[Chat]:
        """All conversations, following the page cursor to the end."""
        chats: list[Chat] = []
        page = 1
        while True:
            body = await self._get("chats", {"page": page, "limitation": CHATS_PAGE_SIZE})
            result = ChatPage.model_validate(body)
            chats.extend(result.collection)
            if result.cursor.page >= result.cursor.pages or not result.collection:
                break
            page += 1
        return chats

    async def get_messages(self, chat_id: str, limit: int = MESSAGES_PAGE_SIZE) -> list[Message]:
        """Newest page of messages of one conversation."""
        body = await self._get(f"chats/{chat_id}/messages", {"limitation": limit, "page": 1})
        return MessagePage.model_validate(body).collection

    async def get_messages_after(self, chat_id: str, after: datetime | None) -> list[Message]:
        """Messages created strictly after ``after``, oldest first."""
        messages = await self.get_messages(chat_id)
        if after is not None:
            messages = [m for m in messages if m.created_at > after]
        return sorted(messages, key=lambda m: m.created_at)
