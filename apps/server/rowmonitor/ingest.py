"""Push-to-pull adapters that feed the aggregation pipeline.

Transport handlers (websocket ingest endpoints, the simulator) push decoded
items with :meth:`QueueSource.offer`; the pipeline pulls them by iterating
the source asynchronously.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections.abc import Callable
from typing import Any, Generic, TypeVar

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

_QUEUE_DROP_LOG_INTERVAL_S: float = 10.0


class _Closed:
    __slots__ = ()


_CLOSED = _Closed()


class QueueSource(Generic[T]):
    def __init__(
        self,
        name: str,
        queue_maxsize: int = 1024,
        queue_drop_log_interval_s: float = _QUEUE_DROP_LOG_INTERVAL_S,
    ):
        self.name = name
        self._queue: asyncio.Queue[T | _Closed] = asyncio.Queue(maxsize=max(1, queue_maxsize))
        self._queue_drop_log_interval_s = max(0.0, float(queue_drop_log_interval_s))
        self._last_queue_drop_log_ts = 0.0
        self._suppressed_queue_drop_warnings = 0
        self._closed = False
        self.accepted: int = 0
        self.dropped: int = 0

    @property
    def closed(self) -> bool:
        return self._closed

    def offer(self, item: T) -> bool:
        """Queue *item* without waiting; returns ``False`` when it was dropped."""
        if self._closed:
            return False
        try:
            self._queue.put_nowait(item)
        except asyncio.QueueFull:
            self.dropped += 1
            now = time.monotonic()
            if (now - self._last_queue_drop_log_ts) >= self._queue_drop_log_interval_s:
                suppressed = self._suppressed_queue_drop_warnings
                self._suppressed_queue_drop_warnings = 0
                self._last_queue_drop_log_ts = now
                LOGGER.warning(
                    "%s ingest queue full; dropping item (suppressed %d additional drop warnings)",
                    self.name,
                    suppressed,
                )
            else:
                self._suppressed_queue_drop_warnings += 1
            return False
        self.accepted += 1
        return True

    def close(self) -> None:
        """End the stream once already-queued items have been consumed."""
        if self._closed:
            return
        self._closed = True
        while True:
            try:
                self._queue.put_nowait(_CLOSED)
                return
            except asyncio.QueueFull:
                # Make room for the end marker by discarding the oldest item.
                self._queue.get_nowait()
                self.dropped += 1

    def __aiter__(self) -> QueueSource[T]:
        return self

    async def __anext__(self) -> T:
        item = await self._queue.get()
        if isinstance(item, _Closed):
            raise StopAsyncIteration
        return item

    def stats(self) -> dict[str, Any]:
        return {
            "accepted": self.accepted,
            "dropped": self.dropped,
            "queued": self._queue.qsize(),
            "closed": self._closed,
        }


def decode_message(text: str, factory: Callable[[dict[str, Any]], T]) -> T | None:
    """Decode one JSON ingest message with *factory*; ``None`` when malformed."""
    try:
        payload = json.loads(text)
    except json.JSONDecodeError:
        LOGGER.debug("Ignoring ingest message that is not valid JSON")
        return None
    try:
        return factory(payload)
    except ValueError as exc:
        LOGGER.debug("Ignoring invalid ingest message: %s", exc)
        return None
