"""Periodic in-process background worker for aiohttp services.

A worker owns a list of named tasks. Every ``interval_seconds`` each task is
awaited with the current UTC time and may return a short summary string which
is logged when non-empty::

    worker = BackgroundWorker(
        interval_seconds=60.0,
        tasks=[WorkerTask(name="rate_limit_prune", fn=prune_rate_limits)],
    )
    app.on_startup.append(worker.start)
    app.on_cleanup.append(worker.stop)
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Awaitable, Callable, Sequence

import structlog
from aiohttp import web

logger = structlog.get_logger(__name__)

TaskFn = Callable[[datetime], Awaitable[str | None]]

_WORKER_TASK_KEY = "background_worker_task"


@dataclass
class WorkerTask:
    name: str
    fn: TaskFn


@dataclass
class BackgroundWorker:
    """Runs its tasks sequentially on a fixed interval.

    A failing task is logged and skipped; the remaining tasks of the sweep
    still run and the loop keeps going.
    """

    interval_seconds: float = 60.0
    tasks: Sequence[WorkerTask] = field(default_factory=list)

    async def run_once(self, now: datetime | None = None) -> dict[str, str | None]:
        """Execute one sweep and return ``{task_name: summary}``.

        Failed tasks map to ``None`` like tasks that had nothing to report.
        """
        now = now or datetime.now(timezone.utc)
        summaries: dict[str, str | None] = {}
        for task in self.tasks:
            try:
                summary = await task.fn(now)
            except Exception:
                logger.exception("background_task failed", task=task.name)
                summary = None
            else:
                if summary:
                    logger.info("background_task completed", task=task.name, summary=summary)
            summaries[task.name] = summary
        return summaries

    async def start(self, app: web.Application) -> None:
        """``app.on_startup`` hook."""
        app[_WORKER_TASK_KEY] = asyncio.create_task(self._loop())

    async def stop(self, app: web.Application) -> None:
        """``app.on_cleanup`` hook."""
        task = app.get(_WORKER_TASK_KEY)
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _loop(self) -> None:
        logger.info(
            "background_worker started",
            interval_seconds=self.interval_seconds,
            tasks=[t.name for t in self.tasks],
        )
        try:
            while True:
                await asyncio.sleep(self.interval_seconds)
                await self.run_once()
        except asyncio.CancelledError:
            logger.info("background_worker stopped")
            raise
