from __future__ import annotations

import asyncio
import logging
import threading
import time
from collections.abc import AsyncIterable
from typing import Any

from .domain_models import HeartRateSample

LOGGER = logging.getLogger(__name__)

VALID_MONITOR_MODES: tuple[str, ...] = ("off", "ble", "ant")
DEFAULT_MONITOR_MODE: str = "off"


class HeartRateCache:
    """Single-slot, lock-protected holder of the latest heart-rate sample.

    Written by the heart-rate task, read by the aggregation consumer.  Reads
    never wait for a new sample; ``None`` means no sample has arrived yet.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._sample: HeartRateSample | None = None
        self._updated_mono_s: float | None = None

    def update(self, sample: HeartRateSample) -> None:
        with self._lock:
            self._sample = sample
            self._updated_mono_s = time.monotonic()

    def latest(self) -> HeartRateSample | None:
        with self._lock:
            return self._sample

    def age_s(self) -> float | None:
        with self._lock:
            if self._updated_mono_s is None:
                return None
            return time.monotonic() - self._updated_mono_s


class HeartRateMonitor:
    """Drains a heart-rate source into a :class:`HeartRateCache`."""

    def __init__(self, mode: str = DEFAULT_MONITOR_MODE, cache: HeartRateCache | None = None):
        if mode not in VALID_MONITOR_MODES:
            raise ValueError(f"heart-rate mode must be one of {VALID_MONITOR_MODES}, got {mode!r}")
        self.mode = mode
        self.cache = cache if cache is not None else HeartRateCache()
        self.connection_state: str = "disabled" if mode == "off" else "waiting"
        self.samples_received: int = 0
        self.last_error: str | None = None

    @property
    def enabled(self) -> bool:
        return self.mode != "off"

    def ingest(self, sample: HeartRateSample) -> None:
        self.cache.update(sample)
        self.samples_received += 1
        self.connection_state = "receiving"

    async def run(self, source: AsyncIterable[HeartRateSample]) -> None:
        """Consume *source* until it ends; failures leave the last sample in place."""
        if not self.enabled:
            LOGGER.info("Heart-rate monitor disabled; source will not be consumed")
            return
        try:
            async for sample in source:
                self.ingest(sample)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self.last_error = str(exc) or type(exc).__name__
            self.connection_state = "failed"
            LOGGER.warning("Heart-rate source failed; keeping last sample", exc_info=True)
            return
        self.connection_state = "ended"
        LOGGER.info("Heart-rate source ended after %d sample(s)", self.samples_received)

    def status_dict(self) -> dict[str, Any]:
        sample = self.cache.latest()
        age_s = self.cache.age_s()
        return {
            "mode": self.mode,
            "connection_state": self.connection_state,
            "samples_received": self.samples_received,
            "bpm": sample.bpm if sample is not None else None,
            "contact_detected": sample.contact_detected if sample is not None else None,
            "last_update_age_s": round(age_s, 2) if age_s is not None else None,
            "last_error": self.last_error,
        }
