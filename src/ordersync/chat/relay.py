"""Chat relay loop -- forwards new chat messages to the CRM messaging function.

One cycle lists all conversations and walks them in order, forwarding text
messages newer than each conversation's watermark. The watermark moves
only after a successful forward, so delivery is at-least-once.

A rate-limit response pauses the whole relay: the backoff deadline is
recorded, the conversation being processed becomes the resume cursor and
the cycle ends. The next cycle after the deadline starts at that
conversation. Hitting the per-cycle cap or a stop request also leaves a
resume cursor; a cycle that reaches the end clears it.

Conversations not yet linked to a CRM contact are skipped without moving
their watermark, so nothing is lost while the link is missing.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timezone

import structlog

from src.ordersync.chat.client import DEFAULT_RETRY_AFTER, ChatProviderClient
from src.ordersync.chat.schemas import Chat
from src.ordersync.chat.state import RelayState
from src.ordersync.chat.watermarks import WatermarkStore
from src.ordersync.crm.messaging import CRMMessenger, ForwardedMessage
from src.ordersync.errors import RateLimitedError
from src.ordersync.scheduler import StopToken

logger = structlog.get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class RelayReport:
    skipped: bool = False
    processed: int = 0
    forwarded: int = 0
    failed: int = 0
    interrupted: bool = False
    resume_cursor: str | None = None


class ChatRelay:
    """Relays chat messages into the CRM.

    Args:
        client: Chat provider client.
        messenger: CRM messaging collaborator.
        state: Shared relay state.
        store: Persistent watermark store.
        max_chats_per_cycle: Conversations processed per cycle.
        inter_chat_delay: Pause between conversations, in seconds.
        clock: Current UTC time.
        sleep: Awaitable sleep.
    """

    def __init__(
        self,
        client: ChatProviderClient,
        messenger: CRMMessenger,
        state: RelayState,
        store: WatermarkStore,
        max_chats_per_cycle: int = 100,
        inter_chat_delay: float = 0.5,
        clock: Callable[[], datetime] = _utcnow,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._client = client
        self._messenger = messenger
        self._state = state
        self._store = store
        self._max_chats = max_chats_per_cycle
        self._delay = inter_chat_delay
        self._clock = clock
        self._sleep = sleep

    async def load_state(self) -> int:
        """Seed the watermark cache from the persistent store."""
        watermarks = await self._store.load_all()
        await self._state.load_watermarks(watermarks)
        logger.info("relay.state_loaded", conversations=len(watermarks))
        return len(watermarks)

    async def _pause(self, exc: RateLimitedError) -> datetime:
        seconds = exc.retry_after or DEFAULT_RETRY_AFTER.get(exc.status_code, 5.0)
        until = await self._state.set_backoff(self._clock(), seconds)
        logger.warning("relay.rate_limited", status_code=exc.status_code, until=until.isoformat())
        return until

    async def run_cycle(self, stop: StopToken | None = None) -> RelayReport:
        report = RelayReport()
        if self._state.backoff_active(self._clock()):
            logger.info("relay.cycle_skipped", until=self._state.rate_limit_until.isoformat())
            report.skipped = True
            return report

        try:
            chats = await self._client.list_chats()
        except RateLimitedError as exc:
            await self._pause(exc)
            report.interrupted = True
            return report

        resume = await self._state.take_resume_cursor()
        if resume:
            start = next((i for i, chat in enumerate(chats) if chat.id == resume), 0)
            chats = chats[start:]
            logger.info("relay.resumed", chat_id=resume)

        for position, chat in enumerate(chats):
            if (
                (stop is not None and stop.is_set())
                or self._state.backoff_active(self._clock())
                or report.processed >= self._max_chats
            ):
                await self._state.set_resume_cursor(chat.id)
                report.interrupted = True
                break

            try:
                report.forwarded += await self._relay_chat(chat)
            except RateLimitedError as exc:
                await self._pause(exc)
                await self._state.set_resume_cursor(chat.id)
                report.interrupted = True
                break
            except Exception as exc:
                report.failed += 1
                logger.warning("relay.chat_failed", chat_id=chat.id, error=str(exc))
            report.processed += 1

            if self._delay and position < len(chats) - 1:
                await self._sleep(self._delay)

        if not report.interrupted:
            await self._state.clear_resume_cursor()
        report.resume_cursor = self._state.resume_cursor

        logger.info(
            "relay.cycle_complete",
            processed=report.processed,
            forwarded=report.forwarded,
            failed=report.failed,
            interrupted=report.interrupted,
        )
        return report

    async def _relay_chat(self, chat: Chat) -> int:
        messages = await self._client.get_messages_after(chat.id, self._state.watermark(chat.id))
        texts = [m for m in messages if m.is_text]
        if not texts:
            return 0
        if not chat.contact.original_id:
            # The watermark stays put so these messages are delivered once
            # the conversation is linked to a CRM contact.
            logger.warning("relay.chat_without_contact", chat_id=chat.id, pending=len(texts))
            return 0

        await self._messenger.send_messages(
            chat.contact.original_id,
            [
                ForwardedMessage(
                    message_id=m.id,
                    chat_id=chat.id,
                    content=m.text,
                    sender=m.sender.full_name,
                )
                for m in texts
            ],
        )

        newest = max(m.created_at for m in texts)
        if await self._state.advance_watermark(chat.id, newest):
            await self._store.save(chat.id, newest)
        return len(texts)
