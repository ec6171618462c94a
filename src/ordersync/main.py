"""FastAPI application factory.

Creates the app with logging middleware, metrics middleware, CORS, Sentry,
and a lifespan that builds the sync services, stores them on ``app.state``
and runs the periodic background tasks (order push, CRM token refresh,
chat relay, version cleanup) until shutdown.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from collections.abc import AsyncGenerator

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.requests import Request
from fastapi.responses import Response

from src.ordersync.api.middleware.logging import LoggingMiddleware, configure_structlog
from src.ordersync.api.v1.router import router as v1_router
from src.ordersync.chat.client import ChatProviderClient
from src.ordersync.chat.relay import ChatRelay
from src.ordersync.chat.state import RelayState
from src.ordersync.chat.watermarks import WatermarkStore
from src.ordersync.config import Settings, get_settings
from src.ordersync.core.cache import ExpiringCache
from src.ordersync.core.database import close_db, get_session, init_db
from src.ordersync.core.monitoring import MetricsMiddleware, get_metrics_response, init_sentry
from src.ordersync.core.rate_limiter import TokenBucket
from src.ordersync.core.redis import close_redis, get_redis_pool
from src.ordersync.core.security import APIKeyAuthenticator
from src.ordersync.crm.client import CRMClient
from src.ordersync.crm.messaging import CRMMessenger
from src.ordersync.orders.repository import OrderRepository
from src.ordersync.products.client import ProductCatalogClient
from src.ordersync.scheduler import PeriodicTask, StopToken, TaskScheduler
from src.ordersync.sync.b2b import B2BDealBuilder
from src.ordersync.sync.push import OrderPushOrchestrator
from src.ordersync.sync.webhook import WebhookReconciler

logger = structlog.get_logger(__name__)


def build_services(app: FastAPI, settings: Settings) -> None:
    """Construct the service graph and attach it to ``app.state``."""
    repository = OrderRepository(session_factory=get_session)
    crm = CRMClient(
        api_base=settings.crm_api_base(),
        refresh_url=settings.CRM_REFRESH_URL,
        client_id=settings.CRM_CLIENT_ID,
        client_secret=settings.CRM_CLIENT_SECRET,
        refresh_token=settings.CRM_REFRESH_TOKEN,
        token_cache=ExpiringCache(default_ttl=3000.0),
        timeout=settings.CRM_TIMEOUT_SECONDS,
    )
    catalog = ProductCatalogClient(
        base_url=settings.PRODUCT_CATALOG_URL,
        login=settings.PRODUCT_CATALOG_LOGIN,
        password=settings.PRODUCT_CATALOG_PASSWORD,
    )

    app.state.repository = repository
    app.state.crm = crm
    app.state.authenticator = APIKeyAuthenticator(
        settings.API_KEY,
        ExpiringCache(default_ttl=settings.API_KEY_CACHE_TTL_SECONDS),
    )
    app.state.orchestrator = OrderPushOrchestrator(
        repository=repository,
        crm=crm,
        catalog=catalog,
        discovery_window_days=settings.ORDER_DISCOVERY_WINDOW_DAYS,
    )
    app.state.reconciler = WebhookReconciler(
        repository=repository,
        lookup_attempts=settings.WEBHOOK_LOOKUP_ATTEMPTS,
        lookup_delay=settings.WEBHOOK_LOOKUP_DELAY_SECONDS,
    )
    app.state.b2b_builder = B2BDealBuilder(crm=crm, catalog=catalog)

    app.state.relay = None
    if settings.CHAT_RELAY_ENABLED:
        chat_client = ChatProviderClient(
            base_url=settings.CHAT_API_URL,
            token=settings.CHAT_API_TOKEN,
            limiter=TokenBucket(rate=settings.CHAT_RATE_PER_SECOND, burst=settings.CHAT_BURST),
        )
        app.state.relay = ChatRelay(
            client=chat_client,
            messenger=CRMMessenger(settings.CRM_MESSAGES_URL, settings.CRM_MESSAGES_API_KEY),
            state=RelayState(),
            store=WatermarkStore(get_redis_pool()),
            max_chats_per_cycle=settings.CHAT_MAX_CHATS_PER_CYCLE,
            inter_chat_delay=settings.CHAT_INTER_CHAT_DELAY_SECONDS,
        )


def build_scheduler(app: FastAPI, settings: Settings) -> TaskScheduler:
    """Register the periodic jobs for the services on ``app.state``."""
    orchestrator: OrderPushOrchestrator = app.state.orchestrator
    repository: OrderRepository = app.state.repository
    crm: CRMClient = app.state.crm

    async def order_sync(stop: StopToken):
        report = await orchestrator.process_orders(stop)
        return len(report.outcomes)

    async def crm_token_refresh(stop: StopToken):
        await crm.refresh_token()

    async def version_cleanup(stop: StopToken):
        deleted = await repository.delete_expired_versions(settings.ORDER_VERSION_EXPIRED_DAYS)
        logger.info("versions.cleanup", deleted=deleted)
        return deleted

    scheduler = TaskScheduler()
    scheduler.add(PeriodicTask("order_sync", settings.ORDER_SYNC_INTERVAL_SECONDS, order_sync))
    scheduler.add(
        PeriodicTask("crm_token_refresh", settings.CRM_TOKEN_REFRESH_INTERVAL_SECONDS, crm_token_refresh)
    )
    if app.state.relay is not None:
        relay: ChatRelay = app.state.relay

        async def chat_relay(stop: StopToken):
            report = await relay.run_cycle(stop)
            return report.forwarded

        scheduler.add(PeriodicTask("chat_relay", settings.CHAT_POLL_INTERVAL_SECONDS, chat_relay))
    scheduler.add(
        PeriodicTask(
            "version_cleanup",
            settings.VERSION_CLEANUP_INTERVAL_SECONDS,
            version_cleanup,
            run_immediately=False,
        )
    )
    return scheduler


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: init DB, Sentry and services; run the scheduler."""
    settings = get_settings()
    configure_structlog()
    await init_db()

    if settings.SENTRY_DSN:
        init_sentry(dsn=settings.SENTRY_DSN, environment=settings.ENVIRONMENT.value)

    build_services(app, settings)
    if app.state.relay is not None:
        try:
            await app.state.relay.load_state()
        except Exception:
            logger.warning("relay.state_load_failed", exc_info=True)

    scheduler = build_scheduler(app, settings)
    app.state.scheduler = scheduler
    if settings.SCHEDULER_ENABLED:
        scheduler.start()
    logger.info("app.started", environment=settings.ENVIRONMENT.value, tasks=scheduler.task_names)

    yield

    await scheduler.stop()
    await close_db()
    await close_redis()
    logger.info("app.stopped")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="OrderSync API",
        version="0.1.0",
        description="Order reconciliation and CRM synchronization service",
        lifespan=lifespan,
    )

    # Middleware is added in reverse order (last added = outermost)

    if settings.CORS_ALLOWED_ORIGINS == "*":
        origins = ["*"]
    else:
        origins = [o.strip() for o in settings.CORS_ALLOWED_ORIGINS.split(",")]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_middleware(LoggingMiddleware)

    # Metrics middleware (outermost -- records Prometheus metrics for all requests)
    app.add_middleware(MetricsMiddleware)

    app.include_router(v1_router)

    @app.get("/metrics", include_in_schema=False)
    async def metrics(request: Request) -> Response:
        """Prometheus metrics endpoint."""
        return get_metrics_response()

    return app


# Module-level app for uvicorn
app = create_app()
