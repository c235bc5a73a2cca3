from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable, Coroutine
from typing import Any, TypeVar

T = TypeVar("T")

logger = logging.getLogger(__name__)


def _log_task_failure(task: asyncio.Task[Any]) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error("background task %s failed: %s", task.get_name(), exc, exc_info=exc)


def ensure_task(coro: Coroutine[Any, Any, T], *, name: str | None = None) -> asyncio.Task[T]:
    """
    Spawn a background task whose failure is logged instead of lost.
    """

    t: asyncio.Task[T] = asyncio.create_task(coro, name=name)
    t.add_done_callback(_log_task_failure)
    return t


async def cancel_suppress(task: asyncio.Task[Any] | None) -> None:
    if not task or task.done():
        return
    # Awaiting the current task from itself would deadlock.
    if task is asyncio.current_task():
        return
    task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await task


class Debouncer:
    """
    Trailing-edge debounce around an async action.

    `schedule()` marks the state dirty and (re)arms a single timer; any timer
    already pending is replaced, so a burst of calls inside the window runs
    the action once. `flush()` runs it immediately if dirty.
    """

    def __init__(self, action: Callable[[], Awaitable[None]], *, delay_s: float, name: str) -> None:
        self._action = action
        self._delay_s = delay_s
        self._name = name
        self._handle: asyncio.TimerHandle | None = None
        self._task: asyncio.Task[None] | None = None
        self.dirty = False

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def schedule(self) -> None:
        self.dirty = True
        if self._handle is not None:
            self._handle.cancel()
        loop = asyncio.get_running_loop()
        self._handle = loop.call_later(self._delay_s, self._fire)

    def _fire(self) -> None:
        self._handle = None
        self._task = ensure_task(self._run(), name=self._name)

    async def _run(self) -> None:
        if not self.dirty:
            return
        self.dirty = False
        await self._action()

    async def flush(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        if self._task is not None and not self._task.done():
            await self._task
        await self._run()
