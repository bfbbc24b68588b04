"""Global CRM search, saved searches and search shortcuts."""
from __future__ import annotations

from aiohttp import web
from pydantic import ValidationError

from webhook_service.api.utils import parse_uuid, read_json
from webhook_service.core.exceptions import NotFoundError
from webhook_service.domain.search import SavedSearchCreate, SearchRequest, SearchResponse
from webhook_service.services.dependencies import (
    get_search_service,
    optional_current_user,
    require_current_user,
)
from webhook_service.services.search import sanitize_query

routes = web.RouteTableDef()


@routes.post("/api/v1/search")
async def search(request: web.Request):
    body = await read_json(request, allow_empty=True)
    try:
        dto = SearchRequest.model_validate(body)
    except ValidationError as exc:
        raise web.HTTPBadRequest(text=exc.json()) from exc

    user = await optional_current_user(request)
    if user is None or user.tenant_id is None:
        # Anonymous callers get the empty shape without touching the database.
        empty = SearchResponse(query=sanitize_query(dto.query))
        return web.json_response(empty.model_dump(mode="json"))

    service = await get_search_service(request)
    response = await service.search(user.tenant_id, user.user_id, dto)
    return web.json_response(response.model_dump(mode="json"))


@routes.get("/api/v1/search/meta")
async def search_meta(request: web.Request):
    user = await require_current_user(request)
    service = await get_search_service(request)
    meta = await service.meta(user.user_id)
    return web.json_response(meta.model_dump(mode="json"))


@routes.get("/api/v1/search/saved")
async def list_saved_searches(request: web.Request):
    user = await require_current_user(request)
    service = await get_search_service(request)
    saved = await service.list_saved(user.user_id)
    return web.json_response({"saved": [item.model_dump(mode="json") for item in saved]})


@routes.post("/api/v1/search/saved")
async def create_saved_search(request: web.Request):
    user = await require_current_user(request)
    body = await read_json(request)
    try:
        dto = SavedSearchCreate.model_validate(body)
    except ValidationError as exc:
        raise web.HTTPBadRequest(text=exc.json()) from exc
    service = await get_search_service(request)
    saved = await service.save(user.user_id, dto, tenant_id=user.tenant_id)
    return web.json_response({"saved": saved.model_dump(mode="json")}, status=201)


@routes.delete("/api/v1/search/saved/{saved_id}")
async def delete_saved_search(request: web.Request):
    user = await require_current_user(request)
    saved_id = parse_uuid(request.match_info["saved_id"], "saved search id")
    service = await get_search_service(request)
    try:
        await service.delete_saved(user.user_id, saved_id)
    except NotFoundError as exc:
        raise web.HTTPNotFound(text=str(exc)) from exc
    return web.Response(status=204)
