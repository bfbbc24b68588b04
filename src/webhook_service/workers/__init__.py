"""Background workers for webhook-service.

Each worker module exports a factory for an async task function compatible
with :class:`backend_common.worker.WorkerTask`.
"""
from __future__ import annotations

from typing import Sequence

from backend_common.worker import BackgroundWorker, WorkerTask

from webhook_service.services.rate_limit import RateLimiter
from webhook_service.settings import settings
from webhook_service.workers.rate_limit_prune import make_rate_limit_prune


def create_worker(limiters: Sequence[RateLimiter]) -> BackgroundWorker:
    return BackgroundWorker(
        interval_seconds=settings.worker_interval_seconds,
        tasks=[WorkerTask(name="rate_limit_prune", fn=make_rate_limit_prune(limiters))],
    )


__all__ = ["create_worker"]
