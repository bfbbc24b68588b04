"""Fixed-window rate limiting keyed by an arbitrary string (usually tenant + action)."""
from __future__ import annotations

import asyncio
import time
from typing import Dict, Protocol, Tuple

WindowState = Tuple[float, int]  # (window_start, count)


class RateLimitStore(Protocol):
    async def hit(self, key: str, window_start: float) -> int:
        """Count one hit in the window starting at ``window_start``; return the window total."""

    async def prune(self, older_than: float) -> int:
        """Drop windows that started before ``older_than``; return how many were dropped."""


class InMemoryRateLimitStore:
    """Per-process store. Each worker process counts on its own."""

    def __init__(self) -> None:
        self._windows: Dict[str, WindowState] = {}
        self._lock = asyncio.Lock()

    async def hit(self, key: str, window_start: float) -> int:
        async with self._lock:
            start, count = self._windows.get(key, (window_start, 0))
            if start != window_start:
                start, count = window_start, 0
            count += 1
            self._windows[key] = (start, count)
            return count

    async def prune(self, older_than: float) -> int:
        async with self._lock:
            stale = [k for k, (start, _) in self._windows.items() if start < older_than]
            for key in stale:
                del self._windows[key]
            return len(stale)

    def __len__(self) -> int:
        return len(self._windows)


class RateLimiter:
    def __init__(self, store: RateLimitStore, *, limit: int, window_seconds: float):
        if limit < 1:
            raise ValueError("limit must be positive")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        self._store = store
        self.limit = limit
        self.window_seconds = window_seconds

    def window_start(self, now: float) -> float:
        return now - (now % self.window_seconds)

    async def allow(self, key: str, now: float | None = None) -> bool:
        now = time.time() if now is None else now
        count = await self._store.hit(key, self.window_start(now))
        return count <= self.limit

    async def prune(self, now: float | None = None) -> int:
        now = time.time() if now is None else now
        return await self._store.prune(self.window_start(now))
