"""
Push-style event sources.

Components expose an ``EventSource`` per stream (decoded samples, status
changes, escalation transitions). Consumers subscribe and unsubscribe
explicitly, either with a callback or by iterating ``stream()``.
"""

import asyncio
from collections.abc import AsyncIterator, Callable
from typing import Generic, TypeVar

import structlog

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class Subscription:
    """Handle returned by ``EventSource.subscribe``. Unsubscribing twice is a no-op."""

    def __init__(self, source: "EventSource", callback: Callable) -> None:
        self._source = source
        self._callback = callback
        self.active = True

    def unsubscribe(self) -> None:
        if not self.active:
            return
        self.active = False
        self._source._remove(self._callback)

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.unsubscribe()


class EventSource(Generic[T]):
    """Synchronous fan-out of values to subscribers, in publish order."""

    def __init__(self, name: str) -> None:
        self.name = name
        self._subscribers: list[Callable[[T], None]] = []
        self._closed = False
        self.logger = logger.bind(event_source=name)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    @property
    def closed(self) -> bool:
        return self._closed

    def subscribe(self, callback: Callable[[T], None]) -> Subscription:
        if self._closed:
            raise RuntimeError(f"Event source {self.name} is closed")
        self._subscribers.append(callback)
        return Subscription(self, callback)

    def _remove(self, callback: Callable[[T], None]) -> None:
        try:
            self._subscribers.remove(callback)
        except ValueError:
            pass

    def publish(self, value: T) -> None:
        """Deliver ``value`` to every subscriber; a failing subscriber doesn't stop the others."""
        if self._closed:
            return
        for callback in list(self._subscribers):
            try:
                callback(value)
            except Exception as e:
                self.logger.exception("subscriber_failed", error=str(e))

    def close(self) -> None:
        self._closed = True
        self._subscribers.clear()

    async def stream(self, maxsize: int = 0) -> AsyncIterator[T]:
        """Iterate published values as a channel until the consumer stops."""
        queue: asyncio.Queue[T] = asyncio.Queue(maxsize=maxsize)

        def _enqueue(value: T) -> None:
            try:
                queue.put_nowait(value)
            except asyncio.QueueFull:
                self.logger.warning("stream_backpressure_drop", maxsize=maxsize)

        subscription = self.subscribe(_enqueue)
        try:
            while True:
                yield await queue.get()
        finally:
            subscription.unsubscribe()
