"""Async HTTP client for the product catalog service.

The catalog knows which CRM product corresponds to each internal product
UID. GET ``{base}/{uid}`` with HTTP Basic auth returns
``{"success": bool, "message": str, "data": {"id": str}}``.
"""

from __future__ import annotations

import httpx
import structlog
from pydantic import BaseModel, Field, ValidationError
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

from src.ordersync.crm.client import is_transient
from src.ordersync.errors import MalformedResponseError, NotFoundError

logger = structlog.get_logger(__name__)

_catalog_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    retry=retry_if_exception(is_transient),
    reraise=True,
)


class _ProductData(BaseModel):
    id: str = ""


class _ProductResponse(BaseModel):
    success: bool = False
    message: str = ""
    data: _ProductData = Field(default_factory=_ProductData)


class ProductCatalogClient:
    """Looks up CRM product ids by internal product UID.

    Args:
        base_url: Catalog endpoint; the UID is appended as a path segment.
        login: Basic-auth user.
        password: Basic-auth password.
        timeout: Request timeout in seconds.
        transport: Optional httpx transport for tests.
    """

    TIMEOUT_READ = 10.0

    def __init__(
        self,
        base_url: str,
        login: str,
        password: str,
        timeout: float = TIMEOUT_READ,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._auth = httpx.BasicAuth(login, password)
        self._timeout = timeout
        self._transport = transport

    @_catalog_retry
    async def get_external_id(self, uid: str) -> str:
        """Return the CRM product id for ``uid``.

        Raises:
            NotFoundError: The catalog has no mapping for the UID.
            MalformedResponseError: The response body has an unexpected shape.
        """
        async with httpx.AsyncClient(
            auth=self._auth, timeout=self._timeout, transport=self._transport
        ) as client:
            response = await client.get(f"{self._base_url}/{uid}")
        if response.status_code == 404:
            raise NotFoundError(f"product {uid} not in catalog")
        response.raise_for_status()

        try:
            body = _ProductResponse.model_validate(response.json())
        except (ValueError, ValidationError) as exc:
            raise MalformedResponseError(f"catalog response for {uid}: {exc}") from exc

        if not body.success or not body.data.id:
            raise NotFoundError(f"product {uid}: {body.message or 'no CRM id'}")
        logger.debug("catalog.product_resolved", uid=uid, external_id=body.data.id)
        return body.data.id
