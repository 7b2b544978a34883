"""Merged-input orchestration around :class:`TelemetryAggregator`.

Telemetry frames and reset markers share one FIFO inbox drained by a single
consumer, so baseline updates interleave with frames in arrival order.  The
heart-rate source runs as an independent task that only refreshes a cache.
Each event is paired with the cached sample at the moment it enters the
inbox; nothing ever waits for a heart-rate reading.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterable
from typing import Any

from .aggregator import TelemetryAggregator
from .broadcast import SnapshotBroadcaster, Subscription
from .domain_models import DerivedSnapshot, HeartRateSample, InputEvent, RawFrame, ResetMarker
from .heart_rate import HeartRateMonitor

LOGGER = logging.getLogger(__name__)


class _EndOfStream:
    __slots__ = ()


_END_OF_STREAM = _EndOfStream()


class AggregationPipeline:
    def __init__(
        self,
        aggregator: TelemetryAggregator | None = None,
        heart_rate_monitor: HeartRateMonitor | None = None,
    ):
        self.aggregator = aggregator if aggregator is not None else TelemetryAggregator()
        self.heart_rate_monitor = (
            heart_rate_monitor if heart_rate_monitor is not None else HeartRateMonitor("off")
        )
        self._inbox: asyncio.Queue[tuple[InputEvent, HeartRateSample | None] | _EndOfStream] = (
            asyncio.Queue()
        )
        self.state: str = "idle"
        self.processing_failure_count: int = 0

    @property
    def broadcaster(self) -> SnapshotBroadcaster[DerivedSnapshot]:
        return self.aggregator.broadcaster

    def subscribe(self) -> Subscription[DerivedSnapshot]:
        """Subscribe to derived snapshots; the latest one is available immediately."""
        return self.broadcaster.subscribe()

    @property
    def latest(self) -> DerivedSnapshot | None:
        return self.broadcaster.latest

    def reset(self) -> None:
        """Start a new logical session at this point of the input sequence."""
        self._enqueue(ResetMarker())
        LOGGER.info("Session reset requested")

    def submit(self, frame: RawFrame) -> None:
        self._enqueue(frame)

    def _enqueue(self, event: InputEvent) -> None:
        self._inbox.put_nowait((event, self.heart_rate_monitor.cache.latest()))

    async def _pump_telemetry(self, telemetry: AsyncIterable[RawFrame]) -> None:
        try:
            async for frame in telemetry:
                self.submit(frame)
        except asyncio.CancelledError:
            raise
        except Exception:
            LOGGER.warning("Telemetry source failed; ending snapshot stream", exc_info=True)
        else:
            LOGGER.info("Telemetry source ended")
        finally:
            self._inbox.put_nowait(_END_OF_STREAM)

    def _handle(self, event: InputEvent, heart_rate: HeartRateSample | None) -> None:
        try:
            self.aggregator.process(event, heart_rate)
        except Exception:
            self.processing_failure_count += 1
            LOGGER.warning(
                "Failed to process %s; skipping it.",
                type(event).__name__,
                exc_info=True,
            )

    async def run(
        self,
        telemetry: AsyncIterable[RawFrame],
        heart_rate: AsyncIterable[HeartRateSample] | None = None,
    ) -> None:
        """Consume *telemetry* (and optionally *heart_rate*) until telemetry ends.

        Snapshot subscribers observe end-of-stream once this returns.
        """
        if self.state != "idle":
            raise RuntimeError(f"Pipeline cannot run from state {self.state!r}")
        self.state = "running"
        tasks = [asyncio.create_task(self._pump_telemetry(telemetry), name="telemetry-pump")]
        if heart_rate is not None:
            tasks.append(
                asyncio.create_task(self.heart_rate_monitor.run(heart_rate), name="heart-rate")
            )
        LOGGER.info("Aggregation pipeline started (heart rate: %s)", self.heart_rate_monitor.mode)
        try:
            while True:
                item = await self._inbox.get()
                if isinstance(item, _EndOfStream):
                    break
                self._handle(*item)
        finally:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            self.broadcaster.close()
            self.state = "stopped"
            LOGGER.info(
                "Aggregation pipeline stopped after %d frame(s), %d reset(s)",
                self.aggregator.frames_processed,
                self.aggregator.resets_processed,
            )

    def status_dict(self) -> dict[str, Any]:
        return {
            "state": self.state,
            "frames_processed": self.aggregator.frames_processed,
            "resets_processed": self.aggregator.resets_processed,
            "snapshots_published": self.broadcaster.published_count,
            "subscribers": self.broadcaster.subscriber_count,
            "pending_events": self._inbox.qsize(),
            "processing_failures": self.processing_failure_count,
            "recorder_failures": self.aggregator.recorder_failures,
        }
