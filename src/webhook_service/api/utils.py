"""Helper utilities for API handlers."""
from __future__ import annotations

from typing import Any, Sequence
from uuid import UUID

from aiohttp import web

from backend_common.aiohttp_app import read_json as read_json  # noqa: F401

DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 100


def parse_uuid(value: str, label: str) -> UUID:
    try:
        return UUID(str(value))
    except ValueError as exc:
        raise web.HTTPBadRequest(text=f"Invalid {label}") from exc


def _query_int(request: web.Request, name: str, default: int) -> int:
    raw = request.rel_url.query.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise web.HTTPBadRequest(text=f"{name} must be an integer") from exc


def pagination_params(request: web.Request) -> tuple[int, int]:
    """``(limit, offset)`` from the query string, clamped to sane bounds."""
    limit = _query_int(request, "limit", DEFAULT_PAGE_SIZE)
    offset = _query_int(request, "offset", 0)
    if limit <= 0:
        limit = DEFAULT_PAGE_SIZE
    return min(limit, MAX_PAGE_SIZE), max(offset, 0)


def paginated_response(items: Sequence[Any], *, key: str, total: int, limit: int, offset: int) -> dict[str, Any]:
    return {
        key: list(items),
        "total": total,
        "limit": limit,
        "offset": offset,
    }
