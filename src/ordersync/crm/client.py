"""Async HTTP client for the CRM REST API (Zoho-style modules).

Implements CRMAdapter with httpx. The OAuth access token is obtained with
the refresh-token grant and held in an ExpiringCache, so concurrent
callers share one refresh. Calls retry transport failures and 5xx
responses with tenacity (3 attempts, exponential backoff 1-10s); 4xx
responses carry per-record error envelopes and are interpreted instead.
"""

from __future__ import annotations

from typing import Any

import httpx
import structlog
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

from src.ordersync.core.cache import ExpiringCache
from src.ordersync.core.monitoring import crm_requests_total
from src.ordersync.crm.adapter import CRMAdapter
from src.ordersync.crm.responses import record_id
from src.ordersync.crm.schemas import (
    Contact,
    Deal,
    Good,
    OrderedItem,
    SalesOrder,
    TokenResponse,
)
from src.ordersync.errors import CRMError, DuplicateRecordError, MalformedResponseError, TransientError
from src.ordersync.orders.address import digits_only

logger = structlog.get_logger(__name__)

_TOKEN_KEY = "access_token"
# Refresh this many seconds before the CRM-declared expiry.
_TOKEN_EXPIRY_MARGIN = 60


def is_transient(exc: BaseException) -> bool:
    """Retry predicate: network failures, timeouts and 5xx statuses."""
    if isinstance(exc, (httpx.ConnectError, httpx.TimeoutException, TransientError)):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code >= 500
    return False


_crm_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    retry=retry_if_exception(is_transient),
    reraise=True,
)


class CRMClient(CRMAdapter):
    """CRM REST client.

    Args:
        api_base: Versioned REST base, e.g. ``https://www.zohoapis.eu/crm/v7``.
        refresh_url: OAuth token endpoint.
        client_id: OAuth client id.
        client_secret: OAuth client secret.
        refresh_token: Long-lived refresh token.
        token_cache: Cache holding the current access token.
        timeout: Per-request timeout in seconds.
        transport: Optional httpx transport (tests use httpx.MockTransport).
    """

    def __init__(
        self,
        api_base: str,
        refresh_url: str,
        client_id: str,
        client_secret: str,
        refresh_token: str,
        token_cache: ExpiringCache[str],
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._api_base = api_base.rstrip("/")
        self._refresh_url = refresh_url
        self._client_id = client_id
        self._client_secret = client_secret
        self._refresh_token = refresh_token
        self._token_cache = token_cache
        self._timeout = timeout
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        """Create a new httpx client with the configured timeout."""
        return httpx.AsyncClient(timeout=self._timeout, transport=self._transport)

    # ── Authentication ──────────────────────────────────────────────────

    async def _fetch_token(self) -> tuple[str, float | None]:
        async with self._client() as client:
            response = await client.post(
                self._refresh_url,
                data={
                    "client_id": self._client_id,
                    "client_secret": self._client_secret,
                    "refresh_token": self._refresh_token,
                    "grant_type": "refresh_token",
                },
            )
        if response.status_code >= 500:
            raise TransientError(f"token refresh failed: HTTP {response.status_code}")
        try:
            token = TokenResponse.model_validate(response.json())
        except ValueError as exc:
            raise MalformedResponseError(f"token response: {exc}") from exc
        if not token.access_token:
            raise CRMError(token.error or "token refresh returned no access token", code="AUTH")
        logger.info("crm.token_refreshed", expires_in=token.expires_in)
        return token.access_token, float(max(token.expires_in - _TOKEN_EXPIRY_MARGIN, _TOKEN_EXPIRY_MARGIN))

    async def _access_token(self) -> str:
        return await self._token_cache.get_or_compute(_TOKEN_KEY, self._fetch_token)

    async def refresh_token(self) -> None:
        await self._token_cache.refresh(_TOKEN_KEY, self._fetch_token)

    # ── Transport ───────────────────────────────────────────────────────

    @_crm_retry
    async def _send(self, method: str, module: str, path: str, payload: dict[str, Any]) -> Any:
        token = await self._access_token()
        async with self._client() as client:
            response = await client.request(
                method,
                f"{self._api_base}/{path}",
                json=payload,
                headers={"Authorization": f"Zoho-oauthtoken {token}"},
            )
        crm_requests_total.labels(module=module, status=str(response.status_code)).inc()
        logger.debug("crm.response", module=module, status_code=response.status_code)

        if response.status_code == 401:
            self._token_cache.invalidate(_TOKEN_KEY)
            raise TransientError("CRM rejected the access token")
        if response.status_code >= 500:
            raise TransientError(f"CRM {module} failed: HTTP {response.status_code}")
        try:
            return response.json()
        except ValueError as exc:
            raise MalformedResponseError(
                f"CRM {module} returned non-JSON body (HTTP {response.status_code})"
            ) from exc

    async def _create(self, module: str, record: dict[str, Any]) -> str:
        body = await self._send("POST", module, module, {"data": [record]})
        return record_id(body)

    # ── CRMAdapter ──────────────────────────────────────────────────────

    async def create_contact(self, contact: Contact) -> str:
        if contact.phone:
            contact = contact.model_copy(update={"phone": digits_only(contact.phone)})
        try:
            return await self._create("Contacts", contact.to_payload())
        except DuplicateRecordError as exc:
            logger.info("crm.contact_duplicate", existing_id=exc.existing_id)
            return exc.existing_id

    async def create_sales_order(self, order: SalesOrder) -> str:
        try:
            return await self._create("Sales_Orders", order.to_payload())
        except DuplicateRecordError as exc:
            logger.warning("crm.sales_order_duplicate", existing_id=exc.existing_id, subject=order.subject)
            return exc.existing_id

    async def append_order_items(self, order_id: str, items: list[OrderedItem]) -> str:
        body = await self._send(
            "PUT",
            "Sales_Orders",
            f"Sales_Orders/{order_id}",
            {"data": [{"Ordered_Items": [item.to_payload() for item in items]}]},
        )
        return record_id(body)

    async def create_deal(self, deal: Deal) -> str:
        try:
            return await self._create("Deals", deal.to_payload())
        except DuplicateRecordError as exc:
            logger.warning("crm.deal_duplicate", existing_id=exc.existing_id, deal_name=deal.deal_name)
            return exc.existing_id

    async def append_deal_goods(self, deal_id: str, goods: list[Good]) -> str:
        body = await self._send(
            "PUT",
            "Deals",
            f"Deals/{deal_id}",
            {"data": [{"Products": [good.to_payload() for good in goods]}]},
        )
        return record_id(body)
