"""Shared dependency providers for aiohttp handlers."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar
from uuid import UUID

from aiohttp import ClientSession, web

from backend_common.db.pool import get_pool
from webhook_service.repositories.search import SearchRepository
from webhook_service.repositories.webhooks import WebhookLogRepository, WebhookSubscriptionRepository
from webhook_service.services.delivery import DeliveryExecutor
from webhook_service.services.rate_limit import RateLimiter
from webhook_service.services.search import SearchService
from webhook_service.services.webhooks import WebhookService
from webhook_service.settings import settings

TService = TypeVar("TService")

WEBHOOK_SERVICE_KEY = "webhook_service"
SEARCH_SERVICE_KEY = "search_service"
HTTP_SESSION_KEY = "webhook_http_session"
EVENT_EMITTER_KEY = "webhook_event_emitter"
TEST_RATE_LIMITER_KEY = "webhook_test_rate_limiter"
EVENT_RATE_LIMITER_KEY = "event_emit_rate_limiter"

USER_ID_HEADER = "X-User-Id"
TENANT_ID_HEADER = "X-Tenant-Id"
TENANT_ROLE_HEADER = "X-Tenant-Role"

ADMIN_ROLES = ("owner", "admin")


@dataclass
class UserContext:
    user_id: UUID
    tenant_id: UUID | None
    role: str | None


def _header_uuid(request: web.Request, header: str) -> UUID | None:
    raw = request.headers.get(header)
    if not raw:
        return None
    try:
        return UUID(raw)
    except ValueError as exc:
        raise web.HTTPBadRequest(text=f"Invalid {header}") from exc


async def require_current_user(request: web.Request) -> UserContext:
    """Identity comes from headers set by the API gateway after authentication."""
    user_id = _header_uuid(request, USER_ID_HEADER)
    if user_id is None:
        raise web.HTTPUnauthorized(reason=f"Header {USER_ID_HEADER} is required")
    return UserContext(
        user_id=user_id,
        tenant_id=_header_uuid(request, TENANT_ID_HEADER),
        role=request.headers.get(TENANT_ROLE_HEADER) or None,
    )


async def optional_current_user(request: web.Request) -> UserContext | None:
    if not request.headers.get(USER_ID_HEADER):
        return None
    return await require_current_user(request)


def require_tenant(user: UserContext, *, require_role: tuple[str, ...] | None = None) -> UUID:
    if user.tenant_id is None:
        raise web.HTTPForbidden(reason="User does not belong to a tenant")
    if require_role and user.role not in require_role:
        raise web.HTTPForbidden(reason="Insufficient tenant role")
    return user.tenant_id


async def _get_or_create_service(
    request: web.Request,
    cache_key: str,
    builder: Callable[[web.Request], Awaitable[TService]],
) -> TService:
    # An app-level instance wins; otherwise build one per request from the pool.
    service = request.config_dict.get(cache_key) or request.get(cache_key)
    if service is None:
        service = await builder(request)
        request[cache_key] = service
    return service


def build_executor(session: ClientSession) -> DeliveryExecutor:
    return DeliveryExecutor(
        session,
        timeout_seconds=settings.webhook_request_timeout_seconds,
        signature_header=settings.webhook_signature_header,
        event_header=settings.webhook_event_header,
    )


async def build_webhook_service(app: web.Application) -> WebhookService:
    pool = await get_pool()
    return WebhookService(
        WebhookSubscriptionRepository(pool),
        WebhookLogRepository(pool),
        build_executor(app[HTTP_SESSION_KEY]),
    )


async def get_webhook_service(request: web.Request) -> WebhookService:
    async def builder(req: web.Request) -> WebhookService:
        return await build_webhook_service(req.app)

    return await _get_or_create_service(request, WEBHOOK_SERVICE_KEY, builder)


async def get_search_service(request: web.Request) -> SearchService:
    async def builder(_: web.Request) -> SearchService:
        pool = await get_pool()
        return SearchService(SearchRepository(pool), result_limit=settings.search_result_limit)

    return await _get_or_create_service(request, SEARCH_SERVICE_KEY, builder)


async def enforce_rate_limit(request: web.Request, limiter_key: str, key: str) -> None:
    limiter: RateLimiter | None = request.config_dict.get(limiter_key)
    if limiter is None:
        return
    if not await limiter.allow(key):
        raise web.HTTPTooManyRequests(
            text="Rate limit exceeded",
            headers={"Retry-After": str(int(limiter.window_seconds))},
        )
