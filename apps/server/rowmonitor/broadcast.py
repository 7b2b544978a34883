"""Replay-latest multicast of published snapshots.

The publisher calls :meth:`SnapshotBroadcaster.publish` once per derived
snapshot; every subscriber receives that same object.  A subscriber that
joins late immediately holds the most recent snapshot.  Each subscription
buffers at most one unread item: a slow reader skips to the newest snapshot
instead of accumulating a backlog.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Generic, TypeVar

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


class BroadcastClosed(Exception):
    """Raised by :meth:`Subscription.get` once the stream has ended and drained."""


class Subscription(Generic[T]):
    def __init__(self, broadcaster: SnapshotBroadcaster[T]):
        self._broadcaster = broadcaster
        self._item: T | None = None
        self._has_item = False
        self._closed = False
        self._wakeup = asyncio.Event()
        self.dropped: int = 0

    # -- publisher side ----------------------------------------------------------

    def _offer(self, item: T) -> None:
        if self._has_item:
            self.dropped += 1
            LOGGER.debug("Subscriber fell behind; dropped one unread snapshot")
        self._item = item
        self._has_item = True
        self._wakeup.set()

    def _end(self) -> None:
        self._closed = True
        self._wakeup.set()

    # -- consumer side -----------------------------------------------------------

    @property
    def closed(self) -> bool:
        return self._closed and not self._has_item

    def get_nowait(self) -> T:
        """Return the buffered snapshot without waiting.

        Raises ``asyncio.QueueEmpty`` when nothing unread is buffered.
        """
        if not self._has_item:
            raise asyncio.QueueEmpty
        item = self._item
        self._item = None
        self._has_item = False
        return item  # type: ignore[return-value]

    async def get(self) -> T:
        while True:
            if self._has_item:
                return self.get_nowait()
            if self._closed:
                raise BroadcastClosed
            self._wakeup.clear()
            await self._wakeup.wait()

    def unsubscribe(self) -> None:
        self._broadcaster._discard(self)
        self._end()

    def __aiter__(self) -> Subscription[T]:
        return self

    async def __anext__(self) -> T:
        try:
            return await self.get()
        except BroadcastClosed:
            raise StopAsyncIteration from None

    def __enter__(self) -> Subscription[T]:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.unsubscribe()


class SnapshotBroadcaster(Generic[T]):
    def __init__(self) -> None:
        self._subscribers: list[Subscription[T]] = []
        self._latest: T | None = None
        self._published: int = 0
        self._closed = False

    @property
    def latest(self) -> T | None:
        return self._latest

    @property
    def published_count(self) -> int:
        return self._published

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    @property
    def closed(self) -> bool:
        return self._closed

    def subscribe(self) -> Subscription[T]:
        subscription = Subscription(self)
        if self._latest is not None:
            subscription._offer(self._latest)
        if self._closed:
            subscription._end()
        else:
            self._subscribers.append(subscription)
        return subscription

    def publish(self, item: T) -> None:
        if self._closed:
            raise RuntimeError("Cannot publish on a closed broadcaster")
        self._latest = item
        self._published += 1
        for subscription in tuple(self._subscribers):
            subscription._offer(item)

    def close(self) -> None:
        """End the stream; subscribers drain their buffered item, then stop."""
        if self._closed:
            return
        self._closed = True
        subscribers, self._subscribers = self._subscribers, []
        for subscription in subscribers:
            subscription._end()

    def _discard(self, subscription: Subscription[T]) -> None:
        try:
            self._subscribers.remove(subscription)
        except ValueError:
            pass
