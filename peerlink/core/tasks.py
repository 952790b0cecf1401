"""Helpers for owning, watching and cancelling background asyncio tasks."""
from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Awaitable, Callable, Coroutine, Sequence

Logger = logging.Logger


def monitor_task(
    task: asyncio.Task,
    *,
    name: str,
    logger: Logger,
    on_error: Callable[[BaseException], None] | None = None,
) -> asyncio.Task:
    """Log (and optionally report) a task that ends with an exception."""

    def _callback(finished: asyncio.Task) -> None:
        with contextlib.suppress(asyncio.CancelledError):
            exc = finished.exception()
            if exc is None:
                return
            logger.error("Background task %s crashed: %s", name, exc, exc_info=exc)
            if on_error:
                on_error(exc)

    task.add_done_callback(_callback)
    return task


async def cancel_task(task: asyncio.Task | None) -> None:
    """Cancel ``task`` and wait for it, unless it is the task currently running."""
    if task is None or task.done() or task is asyncio.current_task():
        return
    task.cancel()
    await asyncio.gather(task, return_exceptions=True)


class LifecycleManager:
    """Start/stop bookkeeping for a service plus the loop tasks it owns."""

    def __init__(self, *, name: str, logger: Logger) -> None:
        self._name = name
        self._logger = logger
        self._started = False
        self._tasks: dict[str, asyncio.Task] = {}

    async def start(self, steps: Sequence[Callable[[], Awaitable[None]]] = ()) -> bool:
        """Run ``steps`` once; returns False when already started."""
        if self._started:
            return False
        self._started = True
        for step in steps:
            await step()
        return True

    async def stop(self, steps: Sequence[Callable[[], Awaitable[None]]] = ()) -> None:
        if not self._started:
            return
        self._started = False
        await self.cancel_tracked()
        results = await asyncio.gather(*(step() for step in steps), return_exceptions=True)
        for result in results:
            if isinstance(result, BaseException):
                self._logger.error("%s stop failed: %s", self._name, result, exc_info=result)

    def spawn(self, coro: Coroutine[None, None, None], *, name: str) -> asyncio.Task:
        """Create a task that lives until :meth:`stop`; a same-named task is replaced."""
        previous = self._tasks.pop(name, None)
        if previous is not None and not previous.done():
            previous.cancel()
        task = asyncio.create_task(coro, name=f"{self._name}:{name}")
        self._tasks[name] = monitor_task(task, name=name, logger=self._logger)
        return task

    async def cancel_tracked(self) -> None:
        tasks, self._tasks = list(self._tasks.values()), {}
        for task in tasks:
            await cancel_task(task)
