"""Tests for bearer-token extraction and API-key authentication."""

from __future__ import annotations

import pytest

from src.ordersync.core.cache import ExpiringCache
from src.ordersync.core.security import APIKeyAuthenticator, extract_bearer_token


class TestExtractBearerToken:
    @pytest.mark.parametrize(
        "header, expected",
        [
            ("Bearer secret", "secret"),
            ("Bearer  secret", " secret"),
            ("bearer secret", ""),
            ("Basic secret", ""),
            ("Bearer", ""),
            ("", ""),
            (None, ""),
        ],
    )
    def test_exact_prefix(self, header, expected):
        assert extract_bearer_token(header) == expected


class TestAPIKeyAuthenticator:
    async def test_valid_key(self):
        auth = APIKeyAuthenticator("secret", ExpiringCache())
        assert await auth.authenticate("secret") == "operator"

    async def test_valid_key_is_memoized(self):
        cache: ExpiringCache[str] = ExpiringCache()
        auth = APIKeyAuthenticator("secret", cache)
        await auth.authenticate("secret")
        assert cache.peek("secret") == "operator"

    async def test_wrong_key(self):
        auth = APIKeyAuthenticator("secret", ExpiringCache())
        assert await auth.authenticate("Secret") is None
        assert await auth.authenticate("") is None

    async def test_empty_configured_key_rejects_everything(self):
        auth = APIKeyAuthenticator("", ExpiringCache())
        assert not auth.enabled
        assert await auth.authenticate("") is None
        assert await auth.authenticate("anything") is None
