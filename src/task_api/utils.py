from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def total_pages(total: int, page_size: int) -> int:
    if page_size <= 0:
        return 0
    return math.ceil(total / page_size)


# PUBLIC_INTERFACE
def success_envelope(message: str, data: Any = None) -> Dict[str, Any]:
    """Standard body for successful responses: {success, message, data}."""
    return {"success": True, "message": message, "data": data}


# PUBLIC_INTERFACE
def error_envelope(error: str, details: Optional[Any] = None) -> Dict[str, Any]:
    """Standard body for failed responses: {success: false, error, details?}."""
    body: Dict[str, Any] = {"success": False, "error": error}
    if details is not None:
        body["details"] = details
    return body


# PUBLIC_INTERFACE
def pagination_envelope(
    message: str,
    items: Union[Sequence[Any], Iterable[Any]],
    total: int,
    page: int,
    page_size: int,
) -> Dict[str, Any]:
    """
    Build a standard pagination envelope for list endpoints.

    Args:
        message: Human readable summary.
        items: The list/iterable of items for the current page.
        total: Total number of items that match the query (ignoring pagination).
        page: 1-based page number that was requested.
        page_size: Page size that was applied.

    Returns:
        Dict with keys: success, message, data, pagination{total, page, page_size, total_pages}.
    """
    # Ensure items is materialized as a list (in case an iterator is passed)
    materialized: List[Any] = list(items) if not isinstance(items, list) else items
    body = success_envelope(message, materialized)
    body["pagination"] = {
        "total": int(total),
        "page": int(page),
        "page_size": int(page_size),
        "total_pages": total_pages(int(total), int(page_size)),
    }
    return body
