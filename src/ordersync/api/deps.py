"""FastAPI dependency injection for services and API-key authentication.

Services are built once in the application lifespan and stored on
``app.state``; these dependencies hand them to endpoint functions.
"""

from __future__ import annotations

from fastapi import HTTPException, Request, status

from src.ordersync.core.security import APIKeyAuthenticator, extract_bearer_token
from src.ordersync.sync.b2b import B2BDealBuilder
from src.ordersync.sync.push import OrderPushOrchestrator
from src.ordersync.sync.webhook import WebhookReconciler


def _service(request: Request, name: str):
    service = getattr(request.app.state, name, None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"{name} not initialized",
        )
    return service


async def get_orchestrator(request: Request) -> OrderPushOrchestrator:
    return _service(request, "orchestrator")


async def get_reconciler(request: Request) -> WebhookReconciler:
    return _service(request, "reconciler")


async def get_b2b_builder(request: Request) -> B2BDealBuilder:
    return _service(request, "b2b_builder")


async def require_api_key(request: Request) -> str:
    """Validate ``Authorization: Bearer <API_KEY>``.

    Returns the authenticated principal name.

    Raises:
        HTTPException(401): Missing, malformed or wrong token.
    """
    authenticator: APIKeyAuthenticator = _service(request, "authenticator")
    token = extract_bearer_token(request.headers.get("Authorization"))
    principal = await authenticator.authenticate(token)
    if principal is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing API key",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return principal
