"""Per-tick de-duplication of upstream market fetches."""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Iterable

from models.market import FocusArea, MarketSnapshot

FetchMarkets = Callable[[list[FocusArea], int], Awaitable[list[MarketSnapshot]]]


def market_cache_key(focus_areas: Iterable[FocusArea], limit: int) -> str:
    areas = sorted({str(getattr(a, "value", a)) for a in focus_areas})
    return f"{','.join(areas)}|{int(limit)}"


class MarketFetchCache:
    """One upstream call per (focus areas, limit) key for the life of a tick.

    The first caller for a key starts the fetch as a task; later callers await
    the same task, including its exception. Build a fresh instance per tick.
    """

    def __init__(self, fetch: FetchMarkets):
        self._fetch = fetch
        self._tasks: dict[str, asyncio.Task] = {}

    @property
    def fetch_count(self) -> int:
        return len(self._tasks)

    async def get(self, focus_areas: Iterable[FocusArea], limit: int) -> list[MarketSnapshot]:
        areas = sorted(set(focus_areas), key=lambda a: str(getattr(a, "value", a)))
        key = market_cache_key(areas, limit)
        task = self._tasks.get(key)
        if task is None:
            task = asyncio.ensure_future(self._fetch(list(areas), int(limit)))
            self._tasks[key] = task
        # shield: one waiter being cancelled must not cancel the shared fetch
        return await asyncio.shield(task)

    def close(self) -> None:
        """Cancel fetches nobody awaited and drop every entry."""
        for task in self._tasks.values():
            if not task.done():
                task.cancel()
            elif not task.cancelled():
                # mark the exception retrieved; waiters already received it
                task.exception()
        self._tasks.clear()
