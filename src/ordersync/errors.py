"""Error taxonomy shared by the push, webhook and relay pipelines.

Callers distinguish failures by class rather than by message:

- OrderValidationError: the order cannot be pushed as-is (retained for a later cycle)
- NotFoundError: an order or product lookup missed
- DuplicateRecordError: the CRM already holds the record; carries its id
- RateLimitedError: an upstream asked us to back off
- TransientError: network or storage failure worth retrying later
- MalformedResponseError: an upstream replied with an unexpected shape
- CRMError: the CRM rejected a record
- PartialPushError: a CRM record exists but misses some item chunks
"""

from __future__ import annotations

from typing import Any


class OrderSyncError(Exception):
    """Base class for all service errors."""


class OrderValidationError(OrderSyncError):
    """Order is missing data required for a push."""


class NotFoundError(OrderSyncError):
    """A local order or a product mapping could not be found."""


class DuplicateRecordError(OrderSyncError):
    """CRM reported a duplicate; ``existing_id`` is the record already stored."""

    def __init__(self, existing_id: str, message: str = "duplicate record") -> None:
        super().__init__(f"{message}: {existing_id}")
        self.existing_id = existing_id


class RateLimitedError(OrderSyncError):
    """Upstream returned a rate-limit class status (429 or 423)."""

    def __init__(self, status_code: int, retry_after: float | None = None, body: str = "") -> None:
        super().__init__(f"rate limited: HTTP {status_code}")
        self.status_code = status_code
        self.retry_after = retry_after
        self.body = body


class TransientError(OrderSyncError):
    """Network or storage failure that a later attempt may not hit."""


class MalformedResponseError(OrderSyncError):
    """Upstream response did not have the expected structure."""


class CRMError(OrderSyncError):
    """CRM rejected the submitted record."""

    def __init__(
        self,
        message: str,
        code: str = "",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(f"{code}: {message}" if code else message)
        self.code = code
        self.details = details or {}


class PartialPushError(OrderSyncError):
    """CRM record was created but a follow-up item chunk failed.

    The record stays short of items and needs manual follow-up; the local
    order already carries ``external_id`` and is not rediscovered.
    """

    def __init__(self, external_id: str, chunk: int, reason: str) -> None:
        super().__init__(f"chunk {chunk} of {external_id} not uploaded: {reason}")
        self.external_id = external_id
        self.chunk = chunk
        self.reason = reason
