"""Owned timers and background tasks.

Every delayed callback and fire-and-forget coroutine the engine starts is
registered here, so closing the feed can cancel all of them at once. The
``sleep`` primitive is injectable, which lets tests drive delays with a
virtual clock instead of waiting in real time.
"""

import asyncio
import inspect
from collections.abc import Awaitable, Callable, Coroutine
from typing import Any

import structlog

logger = structlog.get_logger()

Sleep = Callable[[float], Awaitable[None]]


class TimerHandle:
    def __init__(self, task: asyncio.Task, name: str):
        self._task = task
        self.name = name

    def cancel(self) -> None:
        self._task.cancel()

    @property
    def cancelled(self) -> bool:
        return self._task.cancelled()

    @property
    def done(self) -> bool:
        return self._task.done()

    def __await__(self):
        return self._task.__await__()


class TimerRegistry:
    def __init__(self, sleep: Sleep | None = None):
        self._sleep = sleep or asyncio.sleep
        self._tasks: set[asyncio.Task] = set()
        self._closed = False

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def sleep(self, seconds: float) -> None:
        await self._sleep(seconds)

    def spawn(self, coro: Coroutine[Any, Any, Any], name: str = "task", log_errors: bool = True) -> TimerHandle:
        """Run ``coro`` as a tracked task.

        With ``log_errors=False`` the caller is expected to await the handle
        and deal with the exception itself.
        """
        if self._closed:
            coro.close()
            raise RuntimeError("timer registry is closed")
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._on_done if log_errors else self._tasks.discard)
        handle = TimerHandle(task, name)
        task.set_name(name)
        return handle

    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any, name: str = "timer") -> TimerHandle:
        async def _run():
            await self._sleep(delay)
            result = callback(*args)
            if inspect.isawaitable(result):
                await result

        return self.spawn(_run(), name=name)

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("background_task_failed", task=task.get_name(), error=repr(exc))

    def cancel_all(self) -> int:
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        return len(tasks)

    async def join(self) -> None:
        """Wait until every registered task, including ones spawned meanwhile, has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self) -> None:
        self._closed = True
        cancelled = self.cancel_all()
        await self.join()
        if cancelled:
            logger.info("timers_cancelled", count=cancelled)
