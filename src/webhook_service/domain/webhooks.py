"""Webhook domain primitives."""
from __future__ import annotations

import json
from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

TEST_EVENT = "webhook.test"

# Events tenants can subscribe to. TEST_EVENT is deliberately absent.
WEBHOOK_EVENTS: tuple[str, ...] = (
    "proposal.viewed",
    "proposal.signed",
    "proposal.expired",
    "proposal.sent",
    "deal.created",
    "deal.won",
    "deal.lost",
)


class WebhookSubscription(BaseModel):
    id: UUID
    tenant_id: UUID
    url: str
    secret_key: str = Field(repr=False)
    events: list[str] = Field(default_factory=list)
    active: bool = True
    success_count: int = 0
    failure_count: int = 0
    last_triggered_at: datetime | None = None
    created_at: datetime
    updated_at: datetime

    def public_dict(self) -> dict[str, Any]:
        """JSON-ready representation for API responses."""
        return self.model_dump(mode="json")


class DeliveryResult(BaseModel):
    """Outcome of one HTTP attempt.

    ``status``/``status_text`` are set only when a response arrived;
    ``error`` only when the attempt failed.
    """

    model_config = ConfigDict(frozen=True)

    ok: bool
    status: int | None = None
    status_text: str | None = None
    duration_ms: int
    error: str | None = None


class DeliveryAttempt(BaseModel):
    """A delivery result together with the exact body and timestamp that were sent."""

    model_config = ConfigDict(frozen=True)

    sent_at: str
    payload: str
    result: DeliveryResult


class WebhookLogEntry(BaseModel):
    id: UUID
    webhook_id: UUID
    event_type: str
    payload: str
    response_status: int | None = None
    response_body: str | None = None
    success: bool
    duration_ms: int | None = None
    error_message: str | None = None
    created_at: datetime
    webhook_url: str | None = None

    @property
    def data(self) -> dict[str, Any]:
        """The ``data`` object of the logged body ({} when it is not an object)."""
        try:
            body = json.loads(self.payload)
        except ValueError:
            return {}
        data = body.get("data") if isinstance(body, dict) else None
        return data if isinstance(data, dict) else {}


class DispatchOutcome(BaseModel):
    dispatched: int


class WebhookTestOutcome(BaseModel):
    result: DeliveryResult
    subscription: WebhookSubscription | None = None


class RetryOutcome(BaseModel):
    attempt: DeliveryAttempt
    log_entry: WebhookLogEntry | None = None
    subscription: WebhookSubscription | None = None
