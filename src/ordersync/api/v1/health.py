"""Liveness and readiness probes.

``/health`` answers without touching anything external. ``/health/ready``
checks the order database and Redis and also reports whether the
background scheduler and the chat relay are running.
"""

from __future__ import annotations

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy import text

from src.ordersync.config import get_settings
from src.ordersync.core.database import get_engine
from src.ordersync.core.redis import ping_redis

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check():
    return {"status": "ok", "environment": get_settings().ENVIRONMENT.value}


async def _probe_database() -> str | None:
    """Return an error string, or None when the database answers."""
    try:
        async with get_engine().connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as exc:
        return str(exc)
    return None


async def _probe_redis() -> str | None:
    try:
        if not await ping_redis():
            return "PING did not return PONG"
    except Exception as exc:
        return str(exc)
    return None


@router.get("/health/ready")
async def readiness_check(request: Request):
    """200 when the database and Redis respond, 503 otherwise."""
    checks: dict[str, str] = {}
    for name, probe in (("database", _probe_database), ("redis", _probe_redis)):
        error = await probe()
        checks[name] = "ok" if error is None else "error"
        if error is not None:
            checks[f"{name}_error"] = error

    scheduler = getattr(request.app.state, "scheduler", None)
    relay = getattr(request.app.state, "relay", None)
    ready = checks["database"] == "ok" and checks["redis"] == "ok"
    return JSONResponse(
        status_code=status.HTTP_200_OK if ready else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={
            "status": "ready" if ready else "degraded",
            "checks": checks,
            "scheduler": sorted(scheduler.task_names) if scheduler is not None else [],
            "chat_relay": relay is not None,
        },
    )
