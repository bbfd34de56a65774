"""Response envelope helpers shared by every router."""
from datetime import datetime, date
from math import ceil
from typing import Any, Optional

from bson import ObjectId


def serialize(value: Any) -> Any:
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: serialize(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [serialize(v) for v in value]
    return value


def ok(data: Any = None, message: Optional[str] = None, **extra) -> dict:
    body = {"success": True}
    if message is not None:
        body["message"] = message
    if data is not None:
        body["data"] = serialize(data)
    for key, value in extra.items():
        body[key] = serialize(value)
    return body


def fail(message: str, **extra) -> dict:
    body = {"success": False, "message": message}
    body.update({k: serialize(v) for k, v in extra.items() if v is not None})
    return body


def page_window(page, limit, default_limit: int):
    """Parse 1-based page/limit query values into (page, limit, skip)."""
    page = _positive_int(page, 1)
    limit = _positive_int(limit, default_limit)
    return page, limit, (page - 1) * limit


def pagination(page: int, limit: int, total: int, include_limit: bool = False) -> dict:
    total_pages = ceil(total / limit) if limit else 0
    info = {
        "currentPage": page,
        "totalPages": total_pages,
        "total": total,
        "hasNext": page < total_pages,
        "hasPrev": page > 1,
    }
    if include_limit:
        info["limit"] = limit
    return info


def _positive_int(value, default: int) -> int:
    try:
        n = int(value)
    except (TypeError, ValueError):
        return default
    return n if n > 0 else default
