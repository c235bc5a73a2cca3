from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any, Protocol

from pyaileys.util.events import AsyncEventEmitter as _BaseEmitter
from pyaileys.util.events import Listener

__all__ = ["AsyncEventEmitter", "EventBindings", "Listener", "SupportsListeners"]

logger = logging.getLogger(__name__)


def _guard(event: str, listener: Listener) -> Callable[..., Awaitable[None]]:
    async def guarded(*args: Any, **kwargs: Any) -> None:
        try:
            res = listener(*args, **kwargs)
            if asyncio.iscoroutine(res):
                await res
        except Exception:
            logger.exception("listener for %r failed", event)

    return guarded


class AsyncEventEmitter(_BaseEmitter):
    """
    pyaileys' emitter with failing listeners isolated.

    A listener that raises is logged and does not stop the remaining listeners
    or the emitter's caller. `off()` takes the listener as it was registered.
    """

    def __init__(self) -> None:
        super().__init__()
        # (event, listener as registered, wrapper passed to the base emitter)
        self._guarded: list[tuple[str, Listener, Listener]] = []

    def on(self, event: str, listener: Listener) -> None:
        guarded = _guard(event, listener)
        self._guarded.append((event, listener, guarded))
        super().on(event, guarded)

    def off(self, event: str, listener: Listener) -> None:
        for i, (ev, original, guarded) in enumerate(self._guarded):
            if ev == event and original == listener:
                del self._guarded[i]
                super().off(event, guarded)
                return

    def remove_all_listeners(self, event: str | None = None) -> None:
        super().remove_all_listeners(event)
        self._guarded = [g for g in self._guarded if event is not None and g[0] != event]

    def listener_count(self, event: str) -> int:
        return len(self._listeners.get(event, []))


class SupportsListeners(Protocol):
    def on(self, event: str, listener: Listener) -> None: ...

    def off(self, event: str, listener: Listener) -> None: ...


class EventBindings:
    """
    The set of handlers attached to one event source.

    Bound once when a session starts and released as a whole when it ends, so
    a reconnect never leaves a second copy of a handler subscribed.
    """

    def __init__(self) -> None:
        self._bound: list[tuple[SupportsListeners, str, Listener]] = []

    def __len__(self) -> int:
        return len(self._bound)

    def bind(self, source: SupportsListeners, handlers: dict[str, Listener]) -> None:
        for event, listener in handlers.items():
            source.on(event, listener)
            self._bound.append((source, event, listener))

    def release(self) -> None:
        bound, self._bound = self._bound, []
        for source, event, listener in bound:
            source.off(event, listener)
