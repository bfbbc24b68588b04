"""aiohttp app scaffolding shared by the services: tracing, CORS, health, JSON bodies."""
from __future__ import annotations

from typing import Any, Iterable, Literal, Protocol

from aiohttp import web
from aiohttp_cors import CorsConfig, ResourceOptions, setup as cors_setup

from backend_common.middleware.trace import REQUEST_ID_HEADER, TRACE_ID_HEADER, create_trace_middleware

# Gateway identity headers must be allowed explicitly for browser callers.
IDENTITY_HEADERS = ("X-User-Id", "X-Tenant-Id", "X-Tenant-Role")

_CORS_REQUEST_HEADERS = (
    "Accept",
    "Accept-Language",
    "Authorization",
    "Content-Type",
    TRACE_ID_HEADER,
    REQUEST_ID_HEADER,
    *IDENTITY_HEADERS,
)
_CORS_METHODS = ("GET", "HEAD", "POST", "PATCH", "DELETE", "OPTIONS")


class SettingsProtocol(Protocol):
    app_name: str
    env: Literal["development", "staging", "production"]
    cors_allowed_origins: list[str]


def _cors_defaults(origins: Iterable[str]) -> dict[str, ResourceOptions]:
    options = ResourceOptions(
        allow_credentials=True,
        expose_headers=(TRACE_ID_HEADER, REQUEST_ID_HEADER),
        allow_headers=_CORS_REQUEST_HEADERS,
        allow_methods=_CORS_METHODS,
    )
    return {origin: options for origin in origins}


def create_base_app(settings: SettingsProtocol) -> tuple[web.Application, CorsConfig]:
    """Application with the trace middleware and a CORS config ready to use.

    Call :func:`add_cors_to_routes` once every route is registered.
    """
    app = web.Application(middlewares=[create_trace_middleware(settings.app_name)])
    return app, cors_setup(app, defaults=_cors_defaults(settings.cors_allowed_origins))


def add_healthcheck(app: web.Application, settings: SettingsProtocol) -> None:
    payload = {"status": "ok", "service": settings.app_name, "env": settings.env}

    async def health(_request: web.Request) -> web.Response:
        return web.json_response(payload)

    app.router.add_get("/health", health)


def add_cors_to_routes(app: web.Application, cors: CorsConfig) -> None:
    for route in list(app.router.routes()):
        cors.add(route)


async def read_json(request: web.Request, *, allow_empty: bool = False) -> dict[str, Any]:
    """Decode a JSON object body or answer 400.

    With ``allow_empty`` a missing body (or a literal ``null``) reads as ``{}``.
    """
    if allow_empty and not request.can_read_body:
        return {}
    try:
        body = await request.json()
    except ValueError as exc:
        raise web.HTTPBadRequest(text="Invalid JSON payload") from exc
    if body is None and allow_empty:
        return {}
    if not isinstance(body, dict):
        raise web.HTTPBadRequest(text="JSON body must be an object")
    return body
