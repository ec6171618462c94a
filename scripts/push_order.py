#!/usr/bin/env python3
"""CLI script to push a single checkout order to the CRM.

Usage:
    python scripts/push_order.py 1234
    python scripts/push_order.py 1234 1235 --dry-run

Connects directly to the database using DATABASE_URL from environment or .env file.
An order that already has a CRM id is reported without contacting the CRM.
"""

from __future__ import annotations

import argparse
import asyncio
import os
import sys

# Ensure project root is on sys.path so we can import src.ordersync
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from dotenv import load_dotenv  # noqa: E402

# Load .env from project root
load_dotenv(os.path.join(os.path.dirname(__file__), "..", ".env"))


async def push(order_ids: list[int], dry_run: bool) -> int:
    """Push each order id; returns the number of failures."""
    from src.ordersync.api.middleware.logging import configure_structlog
    from src.ordersync.config import get_settings
    from src.ordersync.core.cache import ExpiringCache
    from src.ordersync.core.database import close_db, get_session
    from src.ordersync.crm.client import CRMClient
    from src.ordersync.errors import OrderSyncError
    from src.ordersync.orders.repository import OrderRepository
    from src.ordersync.products.client import ProductCatalogClient
    from src.ordersync.sync.push import OrderPushOrchestrator

    configure_structlog()
    settings = get_settings()
    repository = OrderRepository(session_factory=get_session)
    orchestrator = OrderPushOrchestrator(
        repository=repository,
        crm=CRMClient(
            api_base=settings.crm_api_base(),
            refresh_url=settings.CRM_REFRESH_URL,
            client_id=settings.CRM_CLIENT_ID,
            client_secret=settings.CRM_CLIENT_SECRET,
            refresh_token=settings.CRM_REFRESH_TOKEN,
            token_cache=ExpiringCache(),
            timeout=settings.CRM_TIMEOUT_SECONDS,
        ),
        catalog=ProductCatalogClient(
            base_url=settings.PRODUCT_CATALOG_URL,
            login=settings.PRODUCT_CATALOG_LOGIN,
            password=settings.PRODUCT_CATALOG_PASSWORD,
        ),
    )

    failures = 0
    try:
        for order_id in order_ids:
            if dry_run:
                order = await repository.get_order(order_id)
                print(
                    f"Order {order.id}: client={order.client.email if order.client else '-'} "
                    f"items={len(order.line_items)} total={order.total / 100:.2f} {order.currency} "
                    f"external_id={order.external_id or '-'}"
                )
                continue
            try:
                external_id = await orchestrator.push_order(order_id)
            except OrderSyncError as exc:
                failures += 1
                print(f"Order {order_id}: FAILED ({type(exc).__name__}: {exc})")
                continue
            print(f"Order {order_id}: external_id={external_id}")
    finally:
        await close_db()
    return failures


def main() -> None:
    parser = argparse.ArgumentParser(description="Push checkout orders to the CRM")
    parser.add_argument("order_ids", nargs="+", type=int, help="Local order id(s)")
    parser.add_argument("--dry-run", action="store_true", help="Only show what would be pushed")
    args = parser.parse_args()

    failures = asyncio.run(push(args.order_ids, args.dry_run))
    sys.exit(1 if failures else 0)


if __name__ == "__main__":
    main()
