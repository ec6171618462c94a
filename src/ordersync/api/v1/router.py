"""V1 API router -- aggregates all endpoint routers."""

from __future__ import annotations

from fastapi import APIRouter

from src.ordersync.api.v1 import b2b, health, orders

router = APIRouter()

router.include_router(health.router)
router.include_router(orders.router)
router.include_router(b2b.router)
