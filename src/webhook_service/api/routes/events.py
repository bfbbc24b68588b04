"""CRM event intake: hands events to the webhook dispatcher without waiting."""
from __future__ import annotations

from typing import Any

from aiohttp import web
from pydantic import BaseModel, Field, ValidationError

from webhook_service.api.utils import read_json
from webhook_service.domain.webhooks import WEBHOOK_EVENTS
from webhook_service.services.dependencies import (
    EVENT_EMITTER_KEY,
    EVENT_RATE_LIMITER_KEY,
    enforce_rate_limit,
    require_current_user,
    require_tenant,
)

routes = web.RouteTableDef()


class EventEmitDTO(BaseModel):
    event: str = Field(min_length=1)
    data: dict[str, Any] = Field(default_factory=dict)


@routes.post("/api/v1/events")
async def emit_event(request: web.Request):
    user = await require_current_user(request)
    tenant_id = require_tenant(user)
    body = await read_json(request)
    try:
        dto = EventEmitDTO.model_validate(body)
    except ValidationError as exc:
        raise web.HTTPBadRequest(text=exc.json()) from exc
    if dto.event not in WEBHOOK_EVENTS:
        raise web.HTTPBadRequest(text=f"Unknown event: {dto.event}")

    await enforce_rate_limit(request, EVENT_RATE_LIMITER_KEY, f"events:{tenant_id}")
    emitter = request.config_dict.get(EVENT_EMITTER_KEY)
    if emitter is None:
        raise web.HTTPServiceUnavailable(text="Webhook dispatcher is not running")
    emitter.emit(tenant_id, dto.event, dto.data)
    return web.json_response({"accepted": True, "event": dto.event}, status=202)
