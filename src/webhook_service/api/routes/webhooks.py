"""Webhook subscription, delivery log, test-send and retry endpoints."""
from __future__ import annotations

from aiohttp import web
from pydantic import BaseModel, Field, ValidationError

from webhook_service.api.utils import paginated_response, pagination_params, parse_uuid, read_json
from webhook_service.core.exceptions import (
    AlreadyDeliveredError,
    InactiveSubscriptionError,
    NotFoundError,
    UnknownEventError,
)
from webhook_service.services.dependencies import (
    ADMIN_ROLES,
    TEST_RATE_LIMITER_KEY,
    enforce_rate_limit,
    get_webhook_service,
    require_current_user,
    require_tenant,
)
from webhook_service.settings import settings

routes = web.RouteTableDef()

_LOG_STATUS_FILTERS = {"success": True, "error": False}


class WebhookCreateDTO(BaseModel):
    url: str = Field(min_length=1)
    events: list[str] = Field(min_length=1)
    active: bool = True


class WebhookUpdateDTO(BaseModel):
    url: str | None = Field(default=None, min_length=1)
    events: list[str] | None = None
    active: bool | None = None


def _validate_url(url: str) -> str:
    url = url.strip()
    if not url.startswith(("http://", "https://")):
        raise web.HTTPBadRequest(text="url must be an http(s) URL")
    return url


@routes.get("/api/v1/webhooks")
async def list_webhooks(request: web.Request):
    user = await require_current_user(request)
    tenant_id = require_tenant(user)
    service = await get_webhook_service(request)
    limit, offset = pagination_params(request)
    items, total = await service.list_subscriptions(tenant_id, limit=limit, offset=offset)
    payload = paginated_response(
        [item.public_dict() for item in items],
        limit=limit,
        offset=offset,
        key="webhooks",
        total=total,
    )
    return web.json_response(payload)


@routes.post("/api/v1/webhooks")
async def create_webhook(request: web.Request):
    user = await require_current_user(request)
    tenant_id = require_tenant(user, require_role=ADMIN_ROLES)
    body = await read_json(request)
    try:
        dto = WebhookCreateDTO.model_validate(body)
    except ValidationError as exc:
        raise web.HTTPBadRequest(text=exc.json()) from exc

    service = await get_webhook_service(request)
    try:
        sub = await service.create_subscription(
            tenant_id=tenant_id,
            url=_validate_url(dto.url),
            events=dto.events,
            active=dto.active,
        )
    except UnknownEventError as exc:
        raise web.HTTPBadRequest(text=str(exc)) from exc
    return web.json_response(sub.public_dict(), status=201)


@routes.get("/api/v1/webhooks/logs")
async def list_webhook_logs(request: web.Request):
    user = await require_current_user(request)
    tenant_id = require_tenant(user)
    status = request.rel_url.query.get("status")
    if status is not None and status not in _LOG_STATUS_FILTERS:
        raise web.HTTPBadRequest(text="status must be 'success' or 'error'")
    service = await get_webhook_service(request)
    logs = await service.list_logs(
        tenant_id,
        success=_LOG_STATUS_FILTERS.get(status) if status else None,
        limit=settings.webhook_logs_page_size,
    )
    return web.json_response({"logs": [entry.model_dump(mode="json") for entry in logs]})


@routes.post("/api/v1/webhooks/logs/{log_id}/retry")
async def retry_webhook_log(request: web.Request):
    user = await require_current_user(request)
    tenant_id = require_tenant(user, require_role=ADMIN_ROLES)
    log_id = parse_uuid(request.match_info["log_id"], "log_id")
    await enforce_rate_limit(request, TEST_RATE_LIMITER_KEY, f"webhook-test:{tenant_id}")
    service = await get_webhook_service(request)
    try:
        outcome = await service.retry_log(tenant_id, log_id)
    except NotFoundError as exc:
        raise web.HTTPNotFound(text=str(exc)) from exc
    except (AlreadyDeliveredError, InactiveSubscriptionError) as exc:
        raise web.HTTPBadRequest(text=str(exc)) from exc
    return web.json_response(
        {
            "success": outcome.attempt.result.ok,
            "result": outcome.attempt.result.model_dump(mode="json"),
            "log": outcome.log_entry.model_dump(mode="json") if outcome.log_entry else None,
        }
    )


@routes.patch("/api/v1/webhooks/{webhook_id}")
async def update_webhook(request: web.Request):
    user = await require_current_user(request)
    tenant_id = require_tenant(user, require_role=ADMIN_ROLES)
    webhook_id = parse_uuid(request.match_info["webhook_id"], "webhook_id")
    body = await read_json(request)
    try:
        dto = WebhookUpdateDTO.model_validate(body)
    except ValidationError as exc:
        raise web.HTTPBadRequest(text=exc.json()) from exc

    service = await get_webhook_service(request)
    try:
        current = await service.get_subscription(webhook_id, tenant_id=tenant_id)
        sub = await service.update_subscription(
            tenant_id,
            webhook_id,
            url=_validate_url(dto.url) if dto.url is not None else current.url,
            events=dto.events if dto.events is not None else current.events,
            active=dto.active if dto.active is not None else current.active,
        )
    except NotFoundError as exc:
        raise web.HTTPNotFound(text=str(exc)) from exc
    except UnknownEventError as exc:
        raise web.HTTPBadRequest(text=str(exc)) from exc
    return web.json_response(sub.public_dict())


@routes.delete("/api/v1/webhooks/{webhook_id}")
async def delete_webhook(request: web.Request):
    user = await require_current_user(request)
    tenant_id = require_tenant(user, require_role=ADMIN_ROLES)
    webhook_id = parse_uuid(request.match_info["webhook_id"], "webhook_id")
    service = await get_webhook_service(request)
    try:
        await service.delete_subscription(tenant_id, webhook_id)
    except NotFoundError as exc:
        raise web.HTTPNotFound(text=str(exc)) from exc
    return web.Response(status=204)


@routes.post("/api/v1/webhooks/{webhook_id}/test")
async def test_webhook(request: web.Request):
    user = await require_current_user(request)
    tenant_id = require_tenant(user, require_role=ADMIN_ROLES)
    webhook_id = parse_uuid(request.match_info["webhook_id"], "webhook_id")
    await enforce_rate_limit(request, TEST_RATE_LIMITER_KEY, f"webhook-test:{tenant_id}")
    service = await get_webhook_service(request)
    try:
        outcome = await service.test(webhook_id, tenant_id=tenant_id)
    except NotFoundError as exc:
        raise web.HTTPNotFound(text=str(exc)) from exc
    return web.json_response(
        {
            "success": outcome.result.ok,
            "result": outcome.result.model_dump(mode="json"),
            "webhook": outcome.subscription.public_dict() if outcome.subscription else None,
        }
    )
