"""Interpretation of CRM write responses.

The CRM answers every write with ``{"data": [item, ...]}``. A successful
item carries ``details.id``. A duplicate arrives as ``code ==
"DUPLICATE_DATA"`` with the existing record either directly under
``details.duplicate_record`` or, in the multi-error shape, under
``details.errors[].duplicate_record``. Both resolve to the existing id.
"""

from __future__ import annotations

from typing import Any

from pydantic import ValidationError

from src.ordersync.crm.schemas import APIResponse, ResponseItem
from src.ordersync.errors import CRMError, DuplicateRecordError, MalformedResponseError

DUPLICATE_CODE = "DUPLICATE_DATA"


def parse_response(body: Any) -> ResponseItem:
    """Validate the envelope and return its first item.

    Raises:
        MalformedResponseError: Not an envelope, or an empty ``data`` list.
    """
    try:
        response = APIResponse.model_validate(body)
    except ValidationError as exc:
        raise MalformedResponseError(f"unexpected CRM response: {exc}") from exc
    if not response.data:
        raise MalformedResponseError("empty CRM response data")
    return response.data[0]


def duplicate_id(item: ResponseItem) -> str:
    """Existing record id from a duplicate error, in either shape; "" if absent."""
    record = item.details.get("duplicate_record")
    if isinstance(record, dict) and record.get("id"):
        return str(record["id"])
    for error in item.details.get("errors") or []:
        if not isinstance(error, dict):
            continue
        record = error.get("duplicate_record")
        if isinstance(record, dict) and record.get("id"):
            return str(record["id"])
    return ""


def record_id(body: Any) -> str:
    """Return the created record id or raise.

    Raises:
        DuplicateRecordError: The CRM already holds the record.
        CRMError: Any other per-record error.
        MalformedResponseError: Success without an id, or a broken envelope.
    """
    item = parse_response(body)
    if item.status == "error":
        if item.code == DUPLICATE_CODE:
            existing = duplicate_id(item)
            if existing:
                raise DuplicateRecordError(existing, item.message or "duplicate data")
        details = {k: item.details.get(k) for k in ("api_name", "json_path") if k in item.details}
        raise CRMError(item.message or "record rejected", code=item.code, details=details or item.details)
    created = item.details.get("id")
    if not created:
        raise MalformedResponseError("CRM success response without record id")
    return str(created)
