"""Worker: drop expired rate-limit windows."""
from __future__ import annotations

from datetime import datetime
from typing import Sequence

from backend_common.worker import TaskFn
from webhook_service.services.rate_limit import RateLimiter


def make_rate_limit_prune(limiters: Sequence[RateLimiter]) -> TaskFn:
    async def rate_limit_prune(now: datetime) -> str | None:
        """Forget every window that closed before the current one."""
        pruned = 0
        for limiter in limiters:
            pruned += await limiter.prune(now.timestamp())
        return f"pruned={pruned}" if pruned else None

    return rate_limit_prune
