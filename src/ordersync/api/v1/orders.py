"""Order sync endpoints: CRM amendment webhook and operator push.

All routes require ``Authorization: Bearer <API_KEY>``.
"""

from __future__ import annotations

from typing import Any

import structlog
from fastapi import APIRouter, Body, Depends, HTTPException, status
from pydantic import BaseModel, ValidationError

from src.ordersync.api.deps import get_orchestrator, get_reconciler, require_api_key
from src.ordersync.errors import NotFoundError, OrderSyncError, OrderValidationError, PartialPushError
from src.ordersync.orders.schemas import AmendmentEvent
from src.ordersync.sync.push import OrderPushOrchestrator
from src.ordersync.sync.webhook import WebhookReconciler

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/zoho", tags=["orders"], dependencies=[Depends(require_api_key)])


# ── Response Schemas ─────────────────────────────────────────────────────────


class PushResponse(BaseModel):
    external_id: str


class WebhookResponse(BaseModel):
    order_id: int
    applied: bool
    echo: bool = False
    total: float = 0.0


def _http_error(exc: OrderSyncError) -> HTTPException:
    if isinstance(exc, OrderValidationError):
        return HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc))
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc))


# ── Endpoints ────────────────────────────────────────────────────────────────


@router.post("/webhook/order", response_model=WebhookResponse)
async def order_webhook(
    payload: dict[str, Any] = Body(...),
    reconciler: WebhookReconciler = Depends(get_reconciler),
) -> WebhookResponse:
    """Apply an order amendment made in the CRM.

    The raw body is validated here rather than by FastAPI so that it can
    be stored verbatim as the order version snapshot.
    """
    try:
        event = AmendmentEvent.model_validate(payload)
    except ValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=exc.errors(include_url=False),
        ) from exc

    try:
        outcome = await reconciler.handle(event, raw=payload)
    except OrderSyncError as exc:
        logger.warning("api.webhook_failed", external_id=event.zoho_id, error=str(exc))
        raise _http_error(exc) from exc

    return WebhookResponse(
        order_id=outcome.order_id,
        applied=outcome.applied,
        echo=outcome.echo,
        total=outcome.total / 100,
    )


@router.get("/push/order/{order_id}", response_model=PushResponse)
async def push_order(
    order_id: int,
    orchestrator: OrderPushOrchestrator = Depends(get_orchestrator),
) -> PushResponse:
    """Push one order to the CRM on operator request."""
    try:
        external_id = await orchestrator.push_order(order_id)
    except PartialPushError as exc:
        logger.error("api.push_partial", order_id=order_id, external_id=exc.external_id,
                     chunk=exc.chunk, manual_followup=True)
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail={"external_id": exc.external_id, "error": str(exc)},
        ) from exc
    except OrderSyncError as exc:
        logger.warning("api.push_failed", order_id=order_id, error=str(exc))
        raise _http_error(exc) from exc
    return PushResponse(external_id=external_id)
