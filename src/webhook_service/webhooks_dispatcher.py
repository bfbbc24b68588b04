"""Fire-and-forget handoff of CRM events to the webhook dispatcher.

Business code calls :meth:`WebhookEventEmitter.emit` and moves on; delivery
runs as a background task whose outcome never reaches the caller. Pending
tasks are drained for a bounded time when the application shuts down.
"""
from __future__ import annotations

import asyncio
from typing import Any, Mapping
from uuid import UUID

import structlog
from aiohttp import ClientSession, web

from webhook_service.services.dependencies import (
    EVENT_EMITTER_KEY,
    HTTP_SESSION_KEY,
    WEBHOOK_SERVICE_KEY,
    build_webhook_service,
)
from webhook_service.services.webhooks import WebhookService
from webhook_service.settings import settings

logger = structlog.get_logger(__name__)


class WebhookEventEmitter:
    def __init__(self, service: WebhookService):
        self._service = service
        self._tasks: set[asyncio.Task[Any]] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def emit(self, tenant_id: UUID, event: str, data: Mapping[str, Any]) -> asyncio.Task[Any]:
        """Schedule dispatch of ``event`` and return immediately."""
        task = asyncio.create_task(self._service.dispatch(tenant_id, event, dict(data)))
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("webhook dispatch task failed", exc_info=exc)
            return
        logger.debug("webhook dispatch task finished", dispatched=task.result().dispatched)

    async def drain(self, timeout: float) -> int:
        """Wait up to ``timeout`` seconds for pending dispatches; cancel the rest.

        Returns the number of tasks that had to be cancelled.
        """
        if not self._tasks:
            return 0
        _, still_pending = await asyncio.wait(set(self._tasks), timeout=timeout)
        for task in still_pending:
            task.cancel()
        if still_pending:
            await asyncio.gather(*still_pending, return_exceptions=True)
            logger.warning("webhook dispatch tasks cancelled on shutdown", count=len(still_pending))
        return len(still_pending)


async def start_webhook_runtime(app: web.Application) -> None:
    """Open the shared outbound HTTP session and wire the emitter.

    Must run after the database pool is initialized.
    """
    app[HTTP_SESSION_KEY] = ClientSession()
    service = app.get(WEBHOOK_SERVICE_KEY)
    if service is None:
        service = await build_webhook_service(app)
        app[WEBHOOK_SERVICE_KEY] = service
    app[EVENT_EMITTER_KEY] = WebhookEventEmitter(service)


async def stop_webhook_runtime(app: web.Application) -> None:
    emitter: WebhookEventEmitter | None = app.get(EVENT_EMITTER_KEY)
    if emitter is not None and emitter.pending:
        logger.info("draining webhook dispatch tasks", pending=emitter.pending)
        await emitter.drain(settings.webhook_shutdown_grace_seconds)
    session: ClientSession | None = app.get(HTTP_SESSION_KEY)
    if session is not None:
        await session.close()
