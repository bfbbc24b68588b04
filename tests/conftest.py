from __future__ import annotations

import asyncio
from dataclasses import dataclass, field

import pytest
from aiohttp import ClientSession, web

from backend_common.aiohttp_app import add_cors_to_routes, add_healthcheck, create_base_app
from webhook_service.api.router import setup_routes
from webhook_service.services.delivery import DeliveryExecutor
from webhook_service.services.dependencies import (
    EVENT_EMITTER_KEY,
    EVENT_RATE_LIMITER_KEY,
    SEARCH_SERVICE_KEY,
    TEST_RATE_LIMITER_KEY,
    WEBHOOK_SERVICE_KEY,
)
from webhook_service.services.rate_limit import InMemoryRateLimitStore, RateLimiter
from webhook_service.services.search import SearchService
from webhook_service.services.webhooks import WebhookService
from webhook_service.settings import settings
from webhook_service.webhooks_dispatcher import WebhookEventEmitter

from tests.fakes import FakeLogRepository, FakeSearchRepository, FakeSubscriptionRepository

RECEIVER_TIMEOUT_SECONDS = 0.3


@dataclass
class ReceivedRequest:
    path: str
    headers: dict[str, str]
    body: bytes


@dataclass
class Receiver:
    base_url: str
    requests: list[ReceivedRequest] = field(default_factory=list)

    def url(self, path: str) -> str:
        return f"{self.base_url}{path}"


@pytest.fixture
async def receiver():
    """Local HTTP endpoint standing in for a tenant's webhook consumer.

    ``/ok`` answers 200, ``/created`` 201, ``/fail`` 500, ``/moved`` 302 and
    ``/slow`` outlives the delivery timeout used by the ``executor`` fixture.
    """
    received: list[ReceivedRequest] = []

    def responder(status: int, delay: float = 0.0):
        async def handler(request: web.Request) -> web.Response:
            body = await request.read()
            received.append(ReceivedRequest(request.path, dict(request.headers), body))
            if delay:
                await asyncio.sleep(delay)
            if status == 302:
                raise web.HTTPFound("/ok")
            return web.Response(status=status)

        return handler

    app = web.Application()
    app.router.add_post("/ok", responder(200))
    app.router.add_post("/created", responder(201))
    app.router.add_post("/fail", responder(500))
    app.router.add_post("/moved", responder(302))
    app.router.add_post("/slow", responder(200, delay=RECEIVER_TIMEOUT_SECONDS * 5))
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, "127.0.0.1", 0)
    await site.start()
    port = site._server.sockets[0].getsockname()[1]  # type: ignore[union-attr]
    try:
        yield Receiver(base_url=f"http://127.0.0.1:{port}", requests=received)
    finally:
        await runner.cleanup()


@pytest.fixture
async def http_session():
    session = ClientSession()
    try:
        yield session
    finally:
        await session.close()


@pytest.fixture
def executor(http_session):
    return DeliveryExecutor(
        http_session,
        timeout_seconds=RECEIVER_TIMEOUT_SECONDS,
        signature_header=settings.webhook_signature_header,
        event_header=settings.webhook_event_header,
    )


@pytest.fixture
def subscriptions():
    return FakeSubscriptionRepository()


@pytest.fixture
def logs(subscriptions):
    return FakeLogRepository(subscriptions)


@pytest.fixture
def webhook_service(subscriptions, logs, executor):
    return WebhookService(subscriptions, logs, executor)


@pytest.fixture
def search_repository():
    return FakeSearchRepository()


@pytest.fixture
async def service_client(aiohttp_client, webhook_service, search_repository):
    """API client over the real routes, backed by in-memory repositories."""
    app, cors = create_base_app(settings)
    add_healthcheck(app, settings)
    setup_routes(app)
    add_cors_to_routes(app, cors)

    store = InMemoryRateLimitStore()
    app[WEBHOOK_SERVICE_KEY] = webhook_service
    app[SEARCH_SERVICE_KEY] = SearchService(search_repository, result_limit=settings.search_result_limit)
    app[EVENT_EMITTER_KEY] = WebhookEventEmitter(webhook_service)
    app[TEST_RATE_LIMITER_KEY] = RateLimiter(store, limit=3, window_seconds=60)
    app[EVENT_RATE_LIMITER_KEY] = RateLimiter(store, limit=5, window_seconds=60)
    return await aiohttp_client(app)
