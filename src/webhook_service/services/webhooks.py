"""Webhook domain service: subscriptions, fan-out dispatch, test-send and retry."""
from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Any, List, Mapping, Sequence
from uuid import UUID, uuid4

import structlog

from webhook_service.core.exceptions import (
    AlreadyDeliveredError,
    InactiveSubscriptionError,
    UnknownEventError,
)
from webhook_service.domain.webhooks import (
    TEST_EVENT,
    WEBHOOK_EVENTS,
    DeliveryAttempt,
    DeliveryResult,
    DispatchOutcome,
    RetryOutcome,
    WebhookLogEntry,
    WebhookSubscription,
    WebhookTestOutcome,
)
from webhook_service.otel import get_meter
from webhook_service.repositories.webhooks import WebhookLogRepository, WebhookSubscriptionRepository
from webhook_service.services.delivery import FALLBACK_ERROR, DeliveryExecutor
from webhook_service.services.signing import build_test_data, utc_timestamp

logger = structlog.get_logger(__name__)
_log_write_failures = get_meter(__name__).create_counter(
    "webhook.log_write_failures", description="Delivery log rows that could not be persisted"
)


def error_message_for(result: DeliveryResult) -> str | None:
    if result.ok:
        return None
    return result.error or FALLBACK_ERROR


def normalize_events(events: Sequence[str]) -> list[str]:
    """Trim and deduplicate; reject an empty list or anything outside :data:`WEBHOOK_EVENTS`."""
    cleaned = list(dict.fromkeys(e.strip() for e in events if isinstance(e, str) and e.strip()))
    unknown = [e for e in cleaned if e not in WEBHOOK_EVENTS]
    if unknown:
        raise UnknownEventError(f"Unknown webhook events: {', '.join(unknown)}")
    if not cleaned:
        raise UnknownEventError("events must be a non-empty list")
    return cleaned


class WebhookService:
    def __init__(
        self,
        subscription_repository: WebhookSubscriptionRepository,
        log_repository: WebhookLogRepository,
        executor: DeliveryExecutor,
    ):
        self._subscriptions = subscription_repository
        self._logs = log_repository
        self._executor = executor

    # -- subscriptions -----------------------------------------------------

    async def create_subscription(
        self,
        *,
        tenant_id: UUID,
        url: str,
        events: Sequence[str],
        active: bool = True,
    ) -> WebhookSubscription:
        return await self._subscriptions.create(
            tenant_id=tenant_id,
            url=url,
            events=normalize_events(events),
            secret_key=uuid4().hex,
            active=active,
        )

    async def update_subscription(
        self,
        tenant_id: UUID,
        subscription_id: UUID,
        *,
        url: str,
        events: Sequence[str],
        active: bool,
    ) -> WebhookSubscription:
        return await self._subscriptions.update(
            tenant_id,
            subscription_id,
            url=url,
            events=normalize_events(events),
            active=active,
        )

    async def get_subscription(
        self, subscription_id: UUID, *, tenant_id: UUID | None = None
    ) -> WebhookSubscription:
        return await self._subscriptions.get(subscription_id, tenant_id=tenant_id)

    async def list_subscriptions(
        self, tenant_id: UUID, *, limit: int = 50, offset: int = 0
    ) -> tuple[List[WebhookSubscription], int]:
        return await self._subscriptions.list_by_tenant(tenant_id, limit=limit, offset=offset)

    async def delete_subscription(self, tenant_id: UUID, subscription_id: UUID) -> None:
        await self._subscriptions.delete(tenant_id, subscription_id)

    async def list_logs(
        self, tenant_id: UUID, *, success: bool | None = None, limit: int = 200
    ) -> List[WebhookLogEntry]:
        return await self._logs.list_by_tenant(tenant_id, success=success, limit=limit)

    # -- delivery ----------------------------------------------------------

    async def dispatch(self, tenant_id: UUID, event: str, data: Mapping[str, Any]) -> DispatchOutcome:
        """Deliver ``event`` to every active subscription of the tenant listening for it.

        Subscriptions are attempted concurrently and independently; the call
        returns once every attempt has been delivered, logged and counted.
        Individual failures are visible only in the log store.
        """
        try:
            subscriptions = await self._subscriptions.list_active_matching(tenant_id, event)
        except Exception:
            logger.warning(
                "webhook subscriptions lookup failed",
                tenant_id=str(tenant_id),
                event_type=event,
                exc_info=True,
            )
            return DispatchOutcome(dispatched=0)
        if not subscriptions:
            return DispatchOutcome(dispatched=0)

        outcomes = await asyncio.gather(
            *(self._attempt(sub, event, data) for sub in subscriptions),
            return_exceptions=True,
        )
        for sub, outcome in zip(subscriptions, outcomes):
            if isinstance(outcome, BaseException):
                logger.error(
                    "webhook attempt pipeline crashed",
                    webhook_id=str(sub.id),
                    event_type=event,
                    exc_info=outcome,
                )
        return DispatchOutcome(dispatched=len(subscriptions))

    async def test(self, subscription_id: UUID, *, tenant_id: UUID | None = None) -> WebhookTestOutcome:
        """Send a synthetic ``webhook.test`` event to one subscription."""
        subscription = await self._subscriptions.get(subscription_id, tenant_id=tenant_id)
        attempt, _, updated = await self._attempt(
            subscription, TEST_EVENT, build_test_data(subscription.id)
        )
        return WebhookTestOutcome(result=attempt.result, subscription=updated)

    async def retry(self, subscription_id: UUID, event: str, data: Mapping[str, Any]) -> RetryOutcome:
        """Re-send one event payload to one subscription as a brand-new attempt."""
        subscription = await self._subscriptions.get(subscription_id)
        attempt, log_entry, updated = await self._attempt(subscription, event, data)
        return RetryOutcome(attempt=attempt, log_entry=log_entry, subscription=updated)

    async def retry_log(self, tenant_id: UUID, log_id: UUID) -> RetryOutcome:
        """Retry the delivery recorded in a failed log row of this tenant."""
        log_entry = await self._logs.get(log_id)
        # Scoping through the subscription keeps other tenants' logs invisible.
        subscription = await self._subscriptions.get(log_entry.webhook_id, tenant_id=tenant_id)
        if log_entry.success:
            raise AlreadyDeliveredError("Webhook delivery already succeeded")
        if not subscription.active:
            raise InactiveSubscriptionError("Webhook subscription is inactive")
        return await self.retry(subscription.id, log_entry.event_type, log_entry.data)

    async def record(
        self,
        subscription_id: UUID,
        event: str,
        payload: str,
        result: DeliveryResult,
    ) -> WebhookLogEntry | None:
        """Append one delivery log row; failures are reported, never raised."""
        try:
            return await self._logs.insert(
                webhook_id=subscription_id,
                event_type=event,
                payload=payload,
                result=result,
                error_message=error_message_for(result),
            )
        except Exception:
            _log_write_failures.add(1, {"event": event})
            logger.exception("webhook log write failed", webhook_id=str(subscription_id), event_type=event)
            return None

    async def _attempt(
        self,
        subscription: WebhookSubscription,
        event: str,
        data: Mapping[str, Any],
    ) -> tuple[DeliveryAttempt, WebhookLogEntry | None, WebhookSubscription | None]:
        sent_at = utc_timestamp()
        attempt = await self._executor.deliver(
            subscription.url, subscription.secret_key, event, data, sent_at
        )
        result = attempt.result
        log = logger.info if result.ok else logger.warning
        log(
            "webhook delivered" if result.ok else "webhook delivery failed",
            webhook_id=str(subscription.id),
            event_type=event,
            status=result.status,
            duration_ms=result.duration_ms,
            error=result.error,
        )

        log_entry = await self.record(subscription.id, event, attempt.payload, result)

        updated: WebhookSubscription | None = None
        try:
            updated = await self._subscriptions.record_attempt(
                subscription.id,
                success=result.ok,
                triggered_at=datetime.fromisoformat(sent_at.replace("Z", "+00:00")),
            )
        except Exception:
            logger.exception("webhook counters update failed", webhook_id=str(subscription.id))
        return attempt, log_entry, updated
