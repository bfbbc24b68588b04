"""aiohttp application entrypoint."""
from __future__ import annotations

from pathlib import Path

from aiohttp import web

from backend_common.aiohttp_app import add_cors_to_routes, add_healthcheck, create_base_app
from backend_common.db.migrations import create_migration_runner
from backend_common.db.pool import create_pool_hooks
from backend_common.logging_config import configure_logging

from webhook_service.api.router import setup_routes
from webhook_service.otel import setup_otel, shutdown_otel
from webhook_service.services.dependencies import EVENT_RATE_LIMITER_KEY, TEST_RATE_LIMITER_KEY
from webhook_service.services.rate_limit import InMemoryRateLimitStore, RateLimiter
from webhook_service.settings import settings
from webhook_service.webhooks_dispatcher import start_webhook_runtime, stop_webhook_runtime
from webhook_service.workers import create_worker

configure_logging(settings.log_level)

PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent

_MIGRATION_PATHS = [
    PROJECT_ROOT / "migrations",
    Path("/app/migrations"),
]


def create_app() -> web.Application:
    app, cors = create_base_app(settings)
    setup_otel(app)

    store = InMemoryRateLimitStore()
    test_limiter = RateLimiter(
        store,
        limit=settings.webhook_test_rate_limit,
        window_seconds=settings.rate_limit_window_seconds,
    )
    event_limiter = RateLimiter(
        store,
        limit=settings.event_emit_rate_limit,
        window_seconds=settings.rate_limit_window_seconds,
    )
    app[TEST_RATE_LIMITER_KEY] = test_limiter
    app[EVENT_RATE_LIMITER_KEY] = event_limiter
    worker = create_worker([test_limiter, event_limiter])

    add_healthcheck(app, settings)
    setup_routes(app)

    init_pool, close_pool = create_pool_hooks(settings)
    app.on_startup.append(init_pool)
    app.on_startup.append(create_migration_runner(settings, _MIGRATION_PATHS))
    app.on_startup.append(start_webhook_runtime)
    app.on_startup.append(worker.start)

    app.on_cleanup.append(worker.stop)
    app.on_cleanup.append(stop_webhook_runtime)
    app.on_cleanup.append(close_pool)
    app.on_cleanup.append(shutdown_otel)

    add_cors_to_routes(app, cors)
    return app


def main() -> None:
    web.run_app(create_app(), host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
