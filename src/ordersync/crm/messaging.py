"""CRM messaging function client -- delivers relayed chat messages to a contact."""

from __future__ import annotations

import httpx
import structlog
from pydantic import BaseModel, Field
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

from src.ordersync.core.monitoring import chat_messages_forwarded_total
from src.ordersync.crm.client import is_transient

logger = structlog.get_logger(__name__)

_messaging_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    retry=retry_if_exception(is_transient),
    reraise=True,
)


class ForwardedMessage(BaseModel):
    message_id: str
    chat_id: str
    content: str
    sender: str = ""


class MessageBatch(BaseModel):
    contact_id: str
    messages: list[ForwardedMessage] = Field(default_factory=list)


class CRMMessenger:
    """Posts message batches to the CRM's API-key authenticated function URL.

    Args:
        url: Function endpoint.
        api_key: Function API key (sent as ``zapikey``).
        timeout: Request timeout in seconds.
        transport: Optional httpx transport for tests.
    """

    TIMEOUT = 30.0

    def __init__(
        self,
        url: str,
        api_key: str,
        timeout: float = TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._url = url
        self._api_key = api_key
        self._timeout = timeout
        self._transport = transport

    @_messaging_retry
    async def send_messages(self, contact_id: str, messages: list[ForwardedMessage]) -> None:
        """Deliver ``messages`` to the CRM contact.

        Raises:
            httpx.HTTPStatusError: The function answered with a non-2xx status.
        """
        batch = MessageBatch(contact_id=contact_id, messages=messages)
        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            response = await client.post(
                self._url,
                params={"auth_type": "apikey", "zapikey": self._api_key},
                json=batch.model_dump(),
            )
            response.raise_for_status()
        chat_messages_forwarded_total.inc(len(messages))
        logger.info("messaging.sent", contact_id=contact_id, count=len(messages))
