"""Subscription registry used for every observer surface of the client."""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Callable
from typing import Any, Generic, TypeVar

T = TypeVar("T")

Handler = Callable[[T], Any]


class Subscription:
    """Handle returned by ``EventEmitter.subscribe``; ``dispose()`` unsubscribes."""

    def __init__(self, emitter: EventEmitter[Any], handler: Handler[Any]) -> None:
        self._emitter = emitter
        self._handler = handler
        self._disposed = False

    @property
    def disposed(self) -> bool:
        return self._disposed

    def dispose(self) -> None:
        """Remove the handler. Calling more than once is harmless."""
        if self._disposed:
            return
        self._disposed = True
        self._emitter._remove(self._handler)


class EventEmitter(Generic[T]):
    """Ordered list of handlers for a single event type.

    Handlers are called synchronously in subscription order. A handler that
    returns a coroutine is scheduled on the running loop (fire-and-forget,
    the task is retained until done). A failing handler is logged and does not
    prevent the remaining handlers from running.
    """

    def __init__(self, name: str = "event") -> None:
        self.name = name
        self._handlers: list[Handler[T]] = []
        # Retained background tasks to prevent premature GC.
        self._tasks: set[asyncio.Task[Any]] = set()

    def subscribe(self, handler: Handler[T]) -> Subscription:
        self._handlers.append(handler)
        return Subscription(self, handler)

    def _remove(self, handler: Handler[Any]) -> None:
        try:
            self._handlers.remove(handler)
        except ValueError:
            pass

    def emit(self, payload: T) -> None:
        for handler in list(self._handlers):
            try:
                result = handler(payload)
            except Exception as e:  # noqa: BLE001
                logging.warning(f"⚠️ {self.name} handler {handler!r} failed: {e}")
                continue
            if inspect.isawaitable(result):
                self._schedule(result)

    def _schedule(self, awaitable: Any) -> None:
        async def _runner() -> None:
            try:
                await awaitable
            except Exception as e:  # noqa: BLE001
                logging.warning(f"⚠️ {self.name} async handler failed: {e}")

        task = asyncio.get_running_loop().create_task(_runner())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def clear(self) -> None:
        self._handlers.clear()

    def __len__(self) -> int:
        return len(self._handlers)


__all__ = ["EventEmitter", "Subscription"]
