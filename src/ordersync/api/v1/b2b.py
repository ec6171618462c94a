"""B2B portal webhook: confirmed portal orders become CRM deals."""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel

from src.ordersync.api.deps import get_b2b_builder, require_api_key
from src.ordersync.errors import NotFoundError, OrderSyncError, OrderValidationError, PartialPushError
from src.ordersync.orders.schemas import B2BWebhookPayload
from src.ordersync.sync.b2b import B2BDealBuilder

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/zoho", tags=["b2b"], dependencies=[Depends(require_api_key)])


class DealResponse(BaseModel):
    external_id: str


@router.post("/webhook/b2b", response_model=DealResponse)
async def b2b_webhook(
    payload: B2BWebhookPayload,
    builder: B2BDealBuilder = Depends(get_b2b_builder),
) -> DealResponse:
    """Create a CRM deal for a confirmed B2B portal order."""
    try:
        deal_id = await builder.process(payload)
    except PartialPushError as exc:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail={"external_id": exc.external_id, "error": str(exc)},
        ) from exc
    except OrderValidationError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc
    except NotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except OrderSyncError as exc:
        logger.warning("api.b2b_failed", order_uid=payload.data.order_uid, error=str(exc))
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc)) from exc
    return DealResponse(external_id=deal_id)
