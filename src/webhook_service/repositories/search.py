"""Tenant-scoped ILIKE search over deals, contacts and proposals."""
from __future__ import annotations

import asyncio
import json
from datetime import datetime
from typing import Any, List
from uuid import UUID

from asyncpg import Pool, Record  # type: ignore[import-untyped]

from webhook_service.core.exceptions import NotFoundError
from webhook_service.domain.search import (
    ContactResult,
    DealResult,
    NormalizedSearchFilters,
    ProposalResult,
    SavedSearch,
    SearchHistoryEntry,
    SearchResults,
)
from webhook_service.repositories.base import BaseRepository, escape_like


class SearchRepository(BaseRepository):
    def __init__(self, pool: Pool):
        super().__init__(pool)

    async def search(
        self,
        tenant_id: UUID,
        query: str,
        filters: NormalizedSearchFilters,
        *,
        date_from: datetime | None = None,
        limit: int = 20,
    ) -> SearchResults:
        like = f"%{escape_like(query)}%"

        async def _nothing() -> List[Any]:
            return []

        deals, contacts, proposals = await asyncio.gather(
            self._deals(tenant_id, like, filters, date_from, limit) if "deals" in filters.types else _nothing(),
            self._contacts(tenant_id, like, date_from, limit) if "contacts" in filters.types else _nothing(),
            self._proposals(tenant_id, like, filters, date_from, limit)
            if "proposals" in filters.types
            else _nothing(),
        )
        return SearchResults(deals=deals, contacts=contacts, proposals=proposals)

    async def _deals(
        self,
        tenant_id: UUID,
        like: str,
        filters: NormalizedSearchFilters,
        date_from: datetime | None,
        limit: int,
    ) -> List[DealResult]:
        where = [
            "d.tenant_id = $1",
            "(d.title ILIKE $2 OR c.full_name ILIKE $2 OR c.company ILIKE $2)",
        ]
        values: list[Any] = [tenant_id, like]
        if filters.stages:
            values.append(list(filters.stages))
            where.append(f"d.stage = ANY(${len(values)}::text[])")
        if date_from is not None:
            values.append(date_from)
            where.append(f"d.updated_at >= ${len(values)}")
        values.append(limit)
        records = await self._fetch(
            f"""
            SELECT d.id::text AS id, d.title, d.value, d.currency, d.stage, d.updated_at,
                   c.full_name AS contact_full_name, c.company AS contact_company,
                   c.id IS NOT NULL AS has_contact
            FROM deals d
            LEFT JOIN contacts c ON c.id = d.contact_id
            WHERE {" AND ".join(where)}
            ORDER BY d.updated_at DESC
            LIMIT ${len(values)}
            """,
            *values,
        )
        return [self._deal(r) for r in records]

    async def _contacts(
        self, tenant_id: UUID, like: str, date_from: datetime | None, limit: int
    ) -> List[ContactResult]:
        where = [
            "tenant_id = $1",
            "(full_name ILIKE $2 OR email ILIKE $2 OR company ILIKE $2)",
        ]
        values: list[Any] = [tenant_id, like]
        if date_from is not None:
            values.append(date_from)
            where.append(f"updated_at >= ${len(values)}")
        values.append(limit)
        records = await self._fetch(
            f"""
            SELECT id::text AS id, full_name, email, company, updated_at
            FROM contacts
            WHERE {" AND ".join(where)}
            ORDER BY updated_at DESC
            LIMIT ${len(values)}
            """,
            *values,
        )
        return [ContactResult.model_validate(dict(r)) for r in records]

    async def _proposals(
        self,
        tenant_id: UUID,
        like: str,
        filters: NormalizedSearchFilters,
        date_from: datetime | None,
        limit: int,
    ) -> List[ProposalResult]:
        where = ["p.tenant_id = $1", "(p.title ILIKE $2 OR c.full_name ILIKE $2)"]
        values: list[Any] = [tenant_id, like]
        if filters.statuses:
            values.append(list(filters.statuses))
            where.append(f"p.status = ANY(${len(values)}::text[])")
        if date_from is not None:
            values.append(date_from)
            where.append(f"p.updated_at >= ${len(values)}")
        values.append(limit)
        records = await self._fetch(
            f"""
            SELECT p.id::text AS id, p.title, p.status, p.updated_at,
                   c.full_name AS contact_full_name,
                   c.id IS NOT NULL AS has_contact
            FROM proposals p
            LEFT JOIN contacts c ON c.id = p.contact_id
            WHERE {" AND ".join(where)}
            ORDER BY p.updated_at DESC
            LIMIT ${len(values)}
            """,
            *values,
        )
        return [self._proposal(r) for r in records]

    async def record_history(
        self,
        user_id: UUID,
        query: str,
        filters: NormalizedSearchFilters,
        *,
        tenant_id: UUID | None = None,
    ) -> None:
        await self._execute(
            """
            INSERT INTO search_history (user_id, tenant_id, query, filters)
            VALUES ($1, $2, $3, $4::jsonb)
            """,
            user_id,
            tenant_id,
            query,
            json.dumps(filters.model_dump(mode="json", by_alias=True)),
        )

    async def list_history(self, user_id: UUID, *, limit: int = 20) -> List[SearchHistoryEntry]:
        records = await self._fetch(
            """
            SELECT id, query, filters, created_at
            FROM search_history
            WHERE user_id = $1
            ORDER BY created_at DESC
            LIMIT $2
            """,
            user_id,
            limit,
        )
        return [SearchHistoryEntry.model_validate(_with_filters(r)) for r in records]

    async def list_saved(self, user_id: UUID, *, limit: int | None = None) -> List[SavedSearch]:
        records = await self._fetch(
            """
            SELECT id, name, query, filters, updated_at
            FROM saved_searches
            WHERE user_id = $1
            ORDER BY updated_at DESC
            LIMIT $2
            """,
            user_id,
            limit,
        )
        return [SavedSearch.model_validate(_with_filters(r)) for r in records]

    async def create_saved(
        self,
        user_id: UUID,
        *,
        name: str,
        query: str,
        filters: NormalizedSearchFilters,
        tenant_id: UUID | None = None,
    ) -> SavedSearch:
        record = await self._fetchrow(
            """
            INSERT INTO saved_searches (user_id, tenant_id, name, query, filters)
            VALUES ($1, $2, $3, $4, $5::jsonb)
            RETURNING id, name, query, filters, updated_at
            """,
            user_id,
            tenant_id,
            name,
            query,
            json.dumps(filters.model_dump(mode="json", by_alias=True)),
        )
        assert record is not None
        return SavedSearch.model_validate(_with_filters(record))

    async def delete_saved(self, user_id: UUID, saved_id: UUID) -> None:
        record = await self._fetchrow(
            "DELETE FROM saved_searches WHERE id = $1 AND user_id = $2 RETURNING id",
            saved_id,
            user_id,
        )
        if record is None:
            raise NotFoundError("Saved search not found")

    @staticmethod
    def _deal(record: Record) -> DealResult:
        data = dict(record)
        has_contact = data.pop("has_contact")
        contact = {
            "full_name": data.pop("contact_full_name"),
            "company": data.pop("contact_company"),
        }
        return DealResult.model_validate({**data, "contact": contact if has_contact else None})

    @staticmethod
    def _proposal(record: Record) -> ProposalResult:
        data = dict(record)
        has_contact = data.pop("has_contact")
        contact = {"full_name": data.pop("contact_full_name")}
        return ProposalResult.model_validate({**data, "contact": contact if has_contact else None})


def _with_filters(record: Record) -> dict[str, Any]:
    # jsonb arrives as text without a registered codec
    data = dict(record)
    if isinstance(data.get("filters"), str):
        data["filters"] = json.loads(data["filters"])
    return data
