"""Bearer API-key authentication for the operator and webhook routes.

The service accepts a single configured key. Successful validations are
memoized in an ExpiringCache so repeated webhook calls skip the comparison
path and log lookups.
"""

from __future__ import annotations

import hmac

import structlog

from src.ordersync.core.cache import ExpiringCache

logger = structlog.get_logger(__name__)

BEARER_PREFIX = "Bearer "


def extract_bearer_token(header: str | None) -> str:
    """Return the token following an exact ``Bearer `` prefix, or "".

    The prefix match is case-sensitive; everything after the single
    separating space is the token, including any further whitespace.
    """
    if not header or not header.startswith(BEARER_PREFIX):
        return ""
    return header[len(BEARER_PREFIX):]


class APIKeyAuthenticator:
    """Validates bearer tokens against the configured API key.

    Args:
        api_key: The accepted key. An empty key disables authentication
            entirely (every request is rejected).
        cache: Cache for validated tokens.
    """

    def __init__(self, api_key: str, cache: ExpiringCache[str]) -> None:
        self._api_key = api_key
        self._cache = cache

    @property
    def enabled(self) -> bool:
        return bool(self._api_key)

    async def authenticate(self, token: str) -> str | None:
        """Return the principal name for a valid token, otherwise None."""
        if not self.enabled or not token:
            return None
        if self._cache.peek(token) is not None:
            return self._cache.peek(token)
        if not hmac.compare_digest(token.encode(), self._api_key.encode()):
            logger.warning("auth.invalid_token")
            return None

        async def _principal() -> tuple[str, float | None]:
            return "operator", None

        return await self._cache.get_or_compute(token, _principal)
