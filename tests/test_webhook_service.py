from __future__ import annotations

import asyncio
import json
import uuid
from datetime import datetime
from unittest.mock import patch

import pytest

from webhook_service.core.exceptions import (
    AlreadyDeliveredError,
    InactiveSubscriptionError,
    NotFoundError,
    UnknownEventError,
)
from webhook_service.domain.webhooks import TEST_EVENT
from webhook_service.services import webhooks as webhooks_module


@pytest.mark.asyncio
async def test_dispatch_with_no_subscriptions(webhook_service, logs):
    outcome = await webhook_service.dispatch(uuid.uuid4(), "proposal.sent", {"id": "p-1"})

    assert outcome.dispatched == 0
    assert logs.entries == []


@pytest.mark.asyncio
async def test_dispatch_to_failing_endpoint_counts_one_failure(webhook_service, subscriptions, logs, receiver):
    tenant_id = uuid.uuid4()
    sub = subscriptions.add(tenant_id, receiver.url("/fail"), events=["proposal.sent"])

    outcome = await webhook_service.dispatch(tenant_id, "proposal.sent", {"proposal_id": "p-1"})

    assert outcome.dispatched == 1
    entries = logs.for_webhook(sub.id)
    assert len(entries) == 1
    assert entries[0].success is False
    assert entries[0].response_status == 500
    assert entries[0].error_message == "HTTP 500 Internal Server Error"
    updated = subscriptions.items[sub.id]
    assert updated.failure_count == 1
    assert updated.success_count == 0
    sent_at = json.loads(entries[0].payload)["sentAt"]
    assert updated.last_triggered_at == datetime.fromisoformat(sent_at.replace("Z", "+00:00"))


@pytest.mark.asyncio
async def test_dispatch_isolates_subscribers(webhook_service, subscriptions, logs, receiver):
    tenant_id = uuid.uuid4()
    good = subscriptions.add(tenant_id, receiver.url("/ok"), events=["deal.won"])
    bad = subscriptions.add(tenant_id, receiver.url("/fail"), events=["deal.won"])
    unreachable = subscriptions.add(tenant_id, "http://127.0.0.1:1/hook", events=["deal.won"])

    outcome = await webhook_service.dispatch(tenant_id, "deal.won", {"deal_id": "d-1"})

    assert outcome.dispatched == 3
    assert [e.success for e in logs.for_webhook(good.id)] == [True]
    assert [e.success for e in logs.for_webhook(bad.id)] == [False]
    assert [e.success for e in logs.for_webhook(unreachable.id)] == [False]
    assert logs.for_webhook(unreachable.id)[0].response_status is None
    assert subscriptions.items[good.id].success_count == 1


@pytest.mark.asyncio
async def test_dispatch_skips_inactive_and_unsubscribed(webhook_service, subscriptions, logs, receiver):
    tenant_id = uuid.uuid4()
    subscriptions.add(tenant_id, receiver.url("/ok"), events=["deal.won"], active=False)
    subscriptions.add(tenant_id, receiver.url("/ok"), events=["deal.lost"])
    subscriptions.add(uuid.uuid4(), receiver.url("/ok"), events=["deal.won"])

    outcome = await webhook_service.dispatch(tenant_id, "deal.won", {})

    assert outcome.dispatched == 0
    assert receiver.requests == []
    assert logs.entries == []


@pytest.mark.asyncio
async def test_dispatch_lookup_failure_dispatches_nothing(webhook_service, subscriptions, receiver):
    tenant_id = uuid.uuid4()
    subscriptions.add(tenant_id, receiver.url("/ok"), events=["deal.won"])
    subscriptions.fail_lookup = True

    outcome = await webhook_service.dispatch(tenant_id, "deal.won", {})

    assert outcome.dispatched == 0
    assert receiver.requests == []


@pytest.mark.asyncio
async def test_log_write_failure_does_not_stop_counters(webhook_service, subscriptions, logs, receiver):
    tenant_id = uuid.uuid4()
    sub = subscriptions.add(tenant_id, receiver.url("/ok"), events=["deal.won"])
    logs.fail_insert = True

    outcome = await webhook_service.dispatch(tenant_id, "deal.won", {})

    assert outcome.dispatched == 1
    assert logs.entries == []
    assert subscriptions.items[sub.id].success_count == 1


@pytest.mark.asyncio
async def test_counter_update_failure_is_swallowed(webhook_service, subscriptions, logs, receiver):
    tenant_id = uuid.uuid4()
    sub = subscriptions.add(tenant_id, receiver.url("/ok"), events=["deal.won"])
    subscriptions.fail_record_attempt = True

    outcome = await webhook_service.dispatch(tenant_id, "deal.won", {})

    assert outcome.dispatched == 1
    assert len(logs.for_webhook(sub.id)) == 1


@pytest.mark.asyncio
async def test_counters_equal_attempts_under_concurrency(webhook_service, subscriptions, logs, receiver):
    tenant_id = uuid.uuid4()
    sub = subscriptions.add(tenant_id, receiver.url("/ok"), events=["deal.won", "deal.lost"])
    fail_sub = subscriptions.add(tenant_id, receiver.url("/fail"), events=["deal.won"])

    await asyncio.gather(
        *(webhook_service.dispatch(tenant_id, "deal.won", {"n": n}) for n in range(5)),
        webhook_service.dispatch(tenant_id, "deal.lost", {}),
        webhook_service.test(sub.id),
    )

    updated = subscriptions.items[sub.id]
    assert updated.success_count + updated.failure_count == len(logs.for_webhook(sub.id)) == 7
    failing = subscriptions.items[fail_sub.id]
    assert failing.failure_count == len(logs.for_webhook(fail_sub.id)) == 5
    assert failing.success_count == 0


@pytest.mark.asyncio
async def test_each_attempt_writes_exactly_one_log(webhook_service, subscriptions, logs, receiver):
    tenant_id = uuid.uuid4()
    sub = subscriptions.add(tenant_id, receiver.url("/ok"), events=["deal.won"])

    with patch.object(logs, "insert", wraps=logs.insert) as insert:
        await webhook_service.dispatch(tenant_id, "deal.won", {})

    insert.assert_awaited_once()
    assert insert.await_args.kwargs["webhook_id"] == sub.id
    assert insert.await_args.kwargs["error_message"] is None


@pytest.mark.asyncio
async def test_test_send_uses_test_event(webhook_service, subscriptions, logs, receiver):
    tenant_id = uuid.uuid4()
    sub = subscriptions.add(tenant_id, receiver.url("/ok"), events=["deal.won"])

    outcome = await webhook_service.test(sub.id, tenant_id=tenant_id)

    assert outcome.result.ok is True
    assert outcome.subscription is not None
    assert outcome.subscription.success_count == 1
    body = json.loads(receiver.requests[0].body)
    assert body["event"] == TEST_EVENT
    assert body["data"]["webhookId"] == str(sub.id)
    assert receiver.requests[0].headers["X-Aero-Event"] == TEST_EVENT
    assert logs.for_webhook(sub.id)[0].event_type == TEST_EVENT


@pytest.mark.asyncio
async def test_test_send_reports_failure(webhook_service, subscriptions, receiver):
    tenant_id = uuid.uuid4()
    sub = subscriptions.add(tenant_id, receiver.url("/fail"))

    outcome = await webhook_service.test(sub.id)

    assert outcome.result.ok is False
    assert outcome.subscription.failure_count == 1


@pytest.mark.asyncio
async def test_test_send_respects_tenant(webhook_service, subscriptions, receiver):
    sub = subscriptions.add(uuid.uuid4(), receiver.url("/ok"))

    with pytest.raises(NotFoundError):
        await webhook_service.test(sub.id, tenant_id=uuid.uuid4())
    assert receiver.requests == []


@pytest.mark.asyncio
async def test_retry_appends_new_log(webhook_service, subscriptions, logs, receiver):
    tenant_id = uuid.uuid4()
    sub = subscriptions.add(tenant_id, receiver.url("/ok"), events=["deal.won"])
    other = subscriptions.add(tenant_id, receiver.url("/ok"), events=["deal.won"])

    first = await webhook_service.retry(sub.id, "deal.won", {"deal_id": "d-9"})
    second = await webhook_service.retry(sub.id, "deal.won", {"deal_id": "d-9"})

    assert first.log_entry.id != second.log_entry.id
    assert len(logs.for_webhook(sub.id)) == 2
    assert logs.for_webhook(other.id) == []
    assert json.loads(second.attempt.payload)["data"] == {"deal_id": "d-9"}
    assert subscriptions.items[sub.id].success_count == 2


@pytest.mark.asyncio
async def test_retry_log_resends_failed_delivery(webhook_service, subscriptions, logs, receiver):
    tenant_id = uuid.uuid4()
    sub = subscriptions.add(tenant_id, receiver.url("/fail"), events=["deal.won"])
    await webhook_service.dispatch(tenant_id, "deal.won", {"deal_id": "d-1"})
    failed = logs.for_webhook(sub.id)[0]
    await subscriptions.update(tenant_id, sub.id, url=receiver.url("/ok"), events=sub.events, active=True)

    outcome = await webhook_service.retry_log(tenant_id, failed.id)

    assert outcome.attempt.result.ok is True
    assert [e.success for e in logs.for_webhook(sub.id)] == [False, True]
    assert failed.success is False
    assert json.loads(receiver.requests[-1].body)["data"] == {"deal_id": "d-1"}


@pytest.mark.asyncio
async def test_retry_log_rejects_succeeded_delivery(webhook_service, subscriptions, logs, receiver):
    tenant_id = uuid.uuid4()
    sub = subscriptions.add(tenant_id, receiver.url("/ok"), events=["deal.won"])
    await webhook_service.dispatch(tenant_id, "deal.won", {})

    with pytest.raises(AlreadyDeliveredError):
        await webhook_service.retry_log(tenant_id, logs.for_webhook(sub.id)[0].id)


@pytest.mark.asyncio
async def test_retry_log_rejects_inactive_subscription(webhook_service, subscriptions, logs, receiver):
    tenant_id = uuid.uuid4()
    sub = subscriptions.add(tenant_id, receiver.url("/fail"), events=["deal.won"])
    await webhook_service.dispatch(tenant_id, "deal.won", {})
    await subscriptions.update(tenant_id, sub.id, url=sub.url, events=sub.events, active=False)

    with pytest.raises(InactiveSubscriptionError):
        await webhook_service.retry_log(tenant_id, logs.for_webhook(sub.id)[0].id)


@pytest.mark.asyncio
async def test_retry_log_hides_other_tenants(webhook_service, subscriptions, logs, receiver):
    tenant_id = uuid.uuid4()
    sub = subscriptions.add(tenant_id, receiver.url("/fail"), events=["deal.won"])
    await webhook_service.dispatch(tenant_id, "deal.won", {})

    with pytest.raises(NotFoundError):
        await webhook_service.retry_log(uuid.uuid4(), logs.for_webhook(sub.id)[0].id)


@pytest.mark.asyncio
async def test_create_subscription_generates_secret(webhook_service):
    tenant_id = uuid.uuid4()
    sub = await webhook_service.create_subscription(
        tenant_id=tenant_id, url="https://example.com/hook", events=[" deal.won ", "deal.won", "deal.lost"]
    )

    assert sub.events == ["deal.won", "deal.lost"]
    assert len(sub.secret_key) == 32
    other = await webhook_service.create_subscription(
        tenant_id=tenant_id, url="https://example.com/hook", events=["deal.won"]
    )
    assert other.secret_key != sub.secret_key


@pytest.mark.asyncio
async def test_create_subscription_rejects_unknown_event(webhook_service):
    with pytest.raises(UnknownEventError):
        await webhook_service.create_subscription(
            tenant_id=uuid.uuid4(), url="https://example.com/hook", events=["invoice.paid"]
        )

    with pytest.raises(UnknownEventError):
        await webhook_service.create_subscription(
            tenant_id=uuid.uuid4(), url="https://example.com/hook", events=[TEST_EVENT]
        )


@pytest.mark.asyncio
async def test_dispatch_counts_failed_log_writes(webhook_service, subscriptions, logs, receiver, monkeypatch):
    class RecordingCounter:
        def __init__(self) -> None:
            self.calls: list[tuple[int, dict]] = []

        def add(self, amount, attributes=None):
            self.calls.append((amount, attributes))

    counter = RecordingCounter()
    monkeypatch.setattr(webhooks_module, "_log_write_failures", counter)
    tenant_id = uuid.uuid4()
    subscriptions.add(tenant_id, receiver.url("/ok"), events=["deal.won"])
    logs.fail_insert = True

    await webhook_service.dispatch(tenant_id, "deal.won", {})

    assert counter.calls == [(1, {"event": "deal.won"})]


@pytest.mark.asyncio
async def test_dispatch_with_unpaired_surrogate_still_logs(webhook_service, subscriptions, logs, receiver):
    tenant_id = uuid.uuid4()
    sub = subscriptions.add(tenant_id, receiver.url("/ok"), events=["deal.won"])
    data = json.loads('{"note": "\\ud83d"}')

    outcome = await webhook_service.dispatch(tenant_id, "deal.won", data)

    assert outcome.dispatched == 1
    assert len(receiver.requests) == 1
    assert json.loads(receiver.requests[0].body)["data"] == data
    assert [e.success for e in logs.for_webhook(sub.id)] == [True]
    assert subscriptions.items[sub.id].success_count == 1


@pytest.mark.asyncio
async def test_last_triggered_at_tracks_latest_attempt(webhook_service, subscriptions, receiver):
    tenant_id = uuid.uuid4()
    sub = subscriptions.add(tenant_id, receiver.url("/ok"), events=["deal.won"])

    first = await webhook_service.retry(sub.id, "deal.won", {})
    second = await webhook_service.retry(sub.id, "deal.won", {})

    latest = datetime.fromisoformat(second.attempt.sent_at.replace("Z", "+00:00"))
    assert latest >= datetime.fromisoformat(first.attempt.sent_at.replace("Z", "+00:00"))
    assert subscriptions.items[sub.id].last_triggered_at == latest
