"""Webhook repositories (subscriptions + append-only delivery log)."""
from __future__ import annotations

from datetime import datetime
from typing import List, Tuple
from uuid import UUID

from asyncpg import Pool, Record  # type: ignore[import-untyped]

from webhook_service.core.exceptions import NotFoundError
from webhook_service.domain.webhooks import DeliveryResult, WebhookLogEntry, WebhookSubscription
from webhook_service.repositories.base import BaseRepository


class WebhookSubscriptionRepository(BaseRepository):
    def __init__(self, pool: Pool):
        super().__init__(pool)

    @staticmethod
    def _to_model(record: Record) -> WebhookSubscription:
        return WebhookSubscription.model_validate(dict(record))

    async def create(
        self,
        *,
        tenant_id: UUID,
        url: str,
        events: list[str],
        secret_key: str,
        active: bool = True,
    ) -> WebhookSubscription:
        record = await self._fetchrow(
            """
            INSERT INTO webhooks (tenant_id, url, events, secret_key, active)
            VALUES ($1, $2, $3::text[], $4, $5)
            RETURNING *
            """,
            tenant_id,
            url,
            events,
            secret_key,
            active,
        )
        assert record is not None
        return self._to_model(record)

    async def update(
        self,
        tenant_id: UUID,
        subscription_id: UUID,
        *,
        url: str,
        events: list[str],
        active: bool,
    ) -> WebhookSubscription:
        record = await self._fetchrow(
            """
            UPDATE webhooks
            SET url = $3,
                events = $4::text[],
                active = $5,
                updated_at = now()
            WHERE tenant_id = $1 AND id = $2
            RETURNING *
            """,
            tenant_id,
            subscription_id,
            url,
            events,
            active,
        )
        if record is None:
            raise NotFoundError("Webhook subscription not found")
        return self._to_model(record)

    async def delete(self, tenant_id: UUID, subscription_id: UUID) -> None:
        record = await self._fetchrow(
            "DELETE FROM webhooks WHERE tenant_id = $1 AND id = $2 RETURNING id",
            tenant_id,
            subscription_id,
        )
        if record is None:
            raise NotFoundError("Webhook subscription not found")

    async def get(self, subscription_id: UUID, *, tenant_id: UUID | None = None) -> WebhookSubscription:
        if tenant_id is None:
            record = await self._fetchrow("SELECT * FROM webhooks WHERE id = $1", subscription_id)
        else:
            record = await self._fetchrow(
                "SELECT * FROM webhooks WHERE id = $1 AND tenant_id = $2",
                subscription_id,
                tenant_id,
            )
        if record is None:
            raise NotFoundError("Webhook subscription not found")
        return self._to_model(record)

    async def list_by_tenant(
        self, tenant_id: UUID, *, limit: int = 50, offset: int = 0
    ) -> Tuple[List[WebhookSubscription], int]:
        records = await self._fetch(
            """
            SELECT *,
                   COUNT(*) OVER() AS total_count
            FROM webhooks
            WHERE tenant_id = $1
            ORDER BY created_at DESC
            LIMIT $2 OFFSET $3
            """,
            tenant_id,
            limit,
            offset,
        )
        items: List[WebhookSubscription] = []
        total = 0
        for rec in records:
            rec_dict = dict(rec)
            total = int(rec_dict.pop("total_count"))
            items.append(WebhookSubscription.model_validate(rec_dict))
        if not items and offset:
            total = int(
                await self._fetchval("SELECT COUNT(*) FROM webhooks WHERE tenant_id = $1", tenant_id)
            )
        return items, total

    async def list_active_matching(self, tenant_id: UUID, event: str) -> List[WebhookSubscription]:
        records = await self._fetch(
            """
            SELECT *
            FROM webhooks
            WHERE tenant_id = $1
              AND active = true
              AND events @> ARRAY[$2::text]
            ORDER BY created_at ASC
            """,
            tenant_id,
            event,
        )
        return [self._to_model(r) for r in records]

    async def record_attempt(
        self, subscription_id: UUID, *, success: bool, triggered_at: datetime
    ) -> WebhookSubscription | None:
        """Count one attempt atomically and move ``last_triggered_at`` forward.

        The increment happens in SQL so overlapping attempts against the same
        subscription never lose an update. ``last_triggered_at`` only moves to
        a later timestamp, so a slow attempt finishing last cannot rewind it.
        Returns ``None`` when the subscription was deleted meanwhile.
        """
        record = await self._fetchrow(
            """
            UPDATE webhooks
            SET success_count = success_count + $2,
                failure_count = failure_count + $3,
                last_triggered_at = GREATEST(COALESCE(last_triggered_at, $4), $4),
                updated_at = now()
            WHERE id = $1
            RETURNING *
            """,
            subscription_id,
            1 if success else 0,
            0 if success else 1,
            triggered_at,
        )
        return self._to_model(record) if record is not None else None


class WebhookLogRepository(BaseRepository):
    """Insert-only access to ``webhook_logs``; nothing here updates or deletes rows."""

    def __init__(self, pool: Pool):
        super().__init__(pool)

    @staticmethod
    def _to_model(record: Record) -> WebhookLogEntry:
        return WebhookLogEntry.model_validate(dict(record))

    async def insert(
        self,
        *,
        webhook_id: UUID,
        event_type: str,
        payload: str,
        result: DeliveryResult,
        error_message: str | None,
    ) -> WebhookLogEntry:
        record = await self._fetchrow(
            """
            INSERT INTO webhook_logs (
                webhook_id,
                event_type,
                payload,
                response_status,
                response_body,
                success,
                duration_ms,
                error_message
            )
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
            RETURNING *
            """,
            webhook_id,
            event_type,
            payload,
            result.status,
            result.status_text,
            result.ok,
            result.duration_ms,
            error_message,
        )
        assert record is not None
        return self._to_model(record)

    async def get(self, log_id: UUID) -> WebhookLogEntry:
        record = await self._fetchrow("SELECT * FROM webhook_logs WHERE id = $1", log_id)
        if record is None:
            raise NotFoundError("Webhook log entry not found")
        return self._to_model(record)

    async def list_by_tenant(
        self,
        tenant_id: UUID,
        *,
        success: bool | None = None,
        limit: int = 200,
    ) -> List[WebhookLogEntry]:
        where = ["w.tenant_id = $1"]
        values: list[object] = [tenant_id]
        if success is not None:
            values.append(success)
            where.append(f"l.success = ${len(values)}")
        values.append(limit)
        query = f"""
            SELECT l.*, w.url AS webhook_url
            FROM webhook_logs l
            JOIN webhooks w ON w.id = l.webhook_id
            WHERE {" AND ".join(where)}
            ORDER BY l.created_at DESC
            LIMIT ${len(values)}
        """
        records = await self._fetch(query, *values)
        return [self._to_model(r) for r in records]
