"""Cancellable delayed tasks, at most one outstanding per key."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

log = logging.getLogger(__name__)

Job = Callable[[], Awaitable[Any]]


class PollScheduler:
    """One logical timer per key.

    ``schedule`` replaces whatever is outstanding for the key: a sleeping or
    waiting task is cancelled. A job that reschedules its own key from inside
    itself simply hands the key over to the new task.
    """

    def __init__(
        self,
        *,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        gauge: Any = None,
    ) -> None:
        self._sleep = sleep
        self._gauge = gauge
        self._tasks: dict[str, asyncio.Task[Any]] = {}
        self._closed = False

    def schedule(self, key: str, delay: float, job: Job) -> asyncio.Task[Any]:
        if self._closed:
            raise RuntimeError("scheduler is closed")
        old = self._tasks.get(key)
        if old is not None and old is not asyncio.current_task() and not old.done():
            old.cancel()
        task = asyncio.create_task(self._run(key, delay, job), name=f"poll:{key}")
        self._tasks[key] = task
        self._update_gauge()
        return task

    def cancel(self, key: str) -> bool:
        task = self._tasks.pop(key, None)
        self._update_gauge()
        if task is None or task.done():
            return False
        if task is not asyncio.current_task():
            task.cancel()
        return True

    def has(self, key: str) -> bool:
        task = self._tasks.get(key)
        return task is not None and not task.done()

    def pending(self) -> list[str]:
        return [k for k, t in self._tasks.items() if not t.done()]

    async def drain(self) -> None:
        """Wait until nothing is scheduled (jobs may keep rescheduling)."""
        while True:
            live = [t for t in self._tasks.values() if not t.done()]
            if not live:
                return
            await asyncio.gather(*live, return_exceptions=True)

    async def close(self) -> None:
        self._closed = True
        tasks = list(self._tasks.values())
        self._tasks.clear()
        for t in tasks:
            t.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._update_gauge()

    async def _run(self, key: str, delay: float, job: Job) -> None:
        try:
            if delay > 0:
                await self._sleep(delay)
            await job()
        except asyncio.CancelledError:
            log.debug("poll %s cancelled", key)
            raise
        except Exception:
            log.exception("scheduled job %s failed", key)
        finally:
            if self._tasks.get(key) is asyncio.current_task():
                del self._tasks[key]
                self._update_gauge()

    def _update_gauge(self) -> None:
        if self._gauge is not None:
            self._gauge.set(len(self._tasks))
