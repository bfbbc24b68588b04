"""Search query sanitization and filter normalization.

Everything above :class:`SearchService` is pure: no clock reads beyond the
explicit ``now_ms`` argument, no I/O. The same functions gate the database
query and re-filter an already fetched result set.
"""
from __future__ import annotations

import asyncio
import re
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable, Mapping
from uuid import UUID

import structlog
from pydantic import BaseModel

from webhook_service.domain.search import (
    DATE_RANGE_DAYS,
    SEARCH_TYPES,
    NormalizedSearchFilters,
    SavedSearch,
    SavedSearchCreate,
    SearchHistoryEntry,
    SearchMeta,
    SearchRequest,
    SearchResponse,
    SearchResults,
)
from webhook_service.repositories.search import SearchRepository
from webhook_service.services.signing import utc_timestamp

logger = structlog.get_logger(__name__)

_PATTERN_CHARS = re.compile(r"[%_,]")
MIN_QUERY_LENGTH = 2
_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_DAY_MS = 86_400_000

META_SAVED_LIMIT = 6
META_HISTORY_LIMIT = 6
HISTORY_SCAN_LIMIT = 20


def sanitize_query(raw: Any) -> str:
    """Replace LIKE wildcards and commas with spaces, then trim."""
    if not isinstance(raw, str):
        return ""
    return _PATTERN_CHARS.sub(" ", raw).strip()


def is_query_meaningful(raw: Any) -> bool:
    return len(sanitize_query(raw)) >= MIN_QUERY_LENGTH


def _normalize_text(value: str | None) -> str:
    return sanitize_query(value or "").lower()


def _unique_values(values: Any) -> tuple[str, ...]:
    if isinstance(values, str) or not isinstance(values, Iterable):
        return ()
    seen: dict[str, None] = {}
    for raw in values:
        if not isinstance(raw, str):
            continue
        value = raw.strip()
        if value:
            seen.setdefault(value, None)
    return tuple(seen)


def _resolve_types(values: Any) -> tuple[str, ...]:
    valid = tuple(v for v in _unique_values(values) if v in SEARCH_TYPES)
    return valid or SEARCH_TYPES


def _as_mapping(raw: Any) -> Mapping[str, Any]:
    if raw is None:
        return {}
    if isinstance(raw, BaseModel):
        return raw.model_dump(by_alias=True)
    if isinstance(raw, Mapping):
        return raw
    return {}


def normalize_filters(raw: Any = None) -> NormalizedSearchFilters:
    """Canonical form of a client filter object.

    ``types`` falls back to every search type when nothing valid is given;
    empty ``stages``/``statuses`` mean no restriction. Normalizing an already
    normalized value returns an equal value.
    """
    data = _as_mapping(raw)
    date_range = data.get("dateRange", data.get("date_range"))
    return NormalizedSearchFilters(
        types=_resolve_types(data.get("types")),
        stages=_unique_values(data.get("stages")),
        statuses=_unique_values(data.get("statuses")),
        date_range=date_range if date_range in ("all", *DATE_RANGE_DAYS) else "all",
    )


def _date_from(date_range: str | None, now_ms: int) -> datetime | None:
    days = DATE_RANGE_DAYS.get(date_range or "all")
    if days is None:
        return None
    try:
        return _EPOCH + timedelta(milliseconds=now_ms - days * _DAY_MS)
    except (OverflowError, ValueError):
        return None


def build_date_from(date_range: str | None, now_ms: int) -> str | None:
    """Lower bound for ``updated_at`` as an ISO-8601 UTC string, or ``None`` for ``all``."""
    bound = _date_from(date_range, now_ms)
    return utc_timestamp(bound) if bound is not None else None


def _matches_date(updated_at: datetime, date_from: datetime | None) -> bool:
    if date_from is None:
        return True
    if updated_at.tzinfo is None:
        updated_at = updated_at.replace(tzinfo=timezone.utc)
    return updated_at >= date_from


def _includes_query(query: str, values: Iterable[str | None]) -> bool:
    if not query:
        return True
    return any(query in _normalize_text(v) for v in values)


def apply_filters(
    results: SearchResults,
    raw_query: Any,
    raw_filters: Any,
    now_ms: int,
) -> SearchResults:
    """Re-apply query and filters to fetched results without another round trip."""
    filters = normalize_filters(raw_filters)
    query = _normalize_text(raw_query if isinstance(raw_query, str) else "")
    date_from = _date_from(filters.date_range, now_ms)

    deals = []
    if "deals" in filters.types:
        deals = [
            deal
            for deal in results.deals
            if (not filters.stages or deal.stage in filters.stages)
            and _matches_date(deal.updated_at, date_from)
            and _includes_query(
                query,
                [
                    deal.title,
                    deal.contact.full_name if deal.contact else None,
                    deal.contact.company if deal.contact else None,
                ],
            )
        ]

    contacts = []
    if "contacts" in filters.types:
        contacts = [
            contact
            for contact in results.contacts
            if _matches_date(contact.updated_at, date_from)
            and _includes_query(query, [contact.full_name, contact.email, contact.company])
        ]

    proposals = []
    if "proposals" in filters.types:
        proposals = [
            proposal
            for proposal in results.proposals
            if (not filters.statuses or proposal.status in filters.statuses)
            and _matches_date(proposal.updated_at, date_from)
            and _includes_query(
                query,
                [proposal.title, proposal.contact.full_name if proposal.contact else None],
            )
        ]

    return SearchResults(deals=deals, contacts=contacts, proposals=proposals)


def toggle_filter_value(current: Iterable[str], value: str) -> list[str]:
    """Remove ``value`` if present, append it otherwise."""
    items = list(current)
    if value in items:
        return [item for item in items if item != value]
    return [*items, value]


def distinct_history(entries: Iterable[SearchHistoryEntry], limit: int) -> list[SearchHistoryEntry]:
    """First entry per query, newest first as given, at most ``limit`` of them."""
    seen: set[str] = set()
    distinct: list[SearchHistoryEntry] = []
    for entry in entries:
        if entry.query in seen:
            continue
        seen.add(entry.query)
        distinct.append(entry)
        if len(distinct) == limit:
            break
    return distinct


class SearchService:
    def __init__(self, repository: SearchRepository, *, result_limit: int = 20):
        self._repository = repository
        self._result_limit = result_limit

    async def search(
        self,
        tenant_id: UUID,
        user_id: UUID,
        request: SearchRequest,
    ) -> SearchResponse:
        sanitized = sanitize_query(request.query)
        if len(sanitized) < MIN_QUERY_LENGTH:
            return SearchResponse(query=sanitized)

        filters = normalize_filters(request.filters)
        date_from = _date_from(filters.date_range, _now_ms())
        results = await self._repository.search(
            tenant_id,
            sanitized,
            filters,
            date_from=date_from,
            limit=self._result_limit,
        )
        if request.track:
            try:
                await self._repository.record_history(user_id, sanitized, filters, tenant_id=tenant_id)
            except Exception:
                logger.exception("search history write failed", user_id=str(user_id))
        return SearchResponse(query=sanitized, results=results)

    async def list_saved(self, user_id: UUID) -> list[SavedSearch]:
        return await self._repository.list_saved(user_id)

    async def save(
        self, user_id: UUID, payload: SavedSearchCreate, *, tenant_id: UUID | None = None
    ) -> SavedSearch:
        return await self._repository.create_saved(
            user_id,
            name=payload.name,
            query=payload.query,
            filters=normalize_filters(payload.filters),
            tenant_id=tenant_id,
        )

    async def delete_saved(self, user_id: UUID, saved_id: UUID) -> None:
        await self._repository.delete_saved(user_id, saved_id)

    async def meta(self, user_id: UUID) -> SearchMeta:
        saved, history = await asyncio.gather(
            self._repository.list_saved(user_id, limit=META_SAVED_LIMIT),
            self._repository.list_history(user_id, limit=HISTORY_SCAN_LIMIT),
        )
        return SearchMeta(saved=saved, history=distinct_history(history, META_HISTORY_LIMIT))


def _now_ms() -> int:
    return int(datetime.now(timezone.utc).timestamp() * 1000)
