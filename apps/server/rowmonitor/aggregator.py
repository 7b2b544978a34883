"""Single-writer aggregation state machine.

``TelemetryAggregator.process`` is the only code that mutates the session
baseline and the last-observed scratch state.  It must be driven from one
sequential consumer, in arrival order, with reset markers interleaved in the
same sequence as real frames.
"""

from __future__ import annotations

import logging
import time
from typing import Any

from .broadcast import SnapshotBroadcaster
from .domain_models import (
    AutoDragFactor,
    BleServiceFlag,
    DerivedSnapshot,
    HeartRateSample,
    InputEvent,
    LogLevel,
    RawFrame,
    ResetMarker,
)
from .processing import derive_snapshot
from .recorder import NullRecorder, Recorder
from .session_state import LastObserved, SessionBaseline

LOGGER = logging.getLogger(__name__)

_RECORDER_ERROR_LOG_INTERVAL_S: float = 10.0


class TelemetryAggregator:
    def __init__(
        self,
        recorder: Recorder | None = None,
        broadcaster: SnapshotBroadcaster[DerivedSnapshot] | None = None,
    ):
        self.recorder: Recorder = recorder if recorder is not None else NullRecorder()
        self.broadcaster: SnapshotBroadcaster[DerivedSnapshot] = (
            broadcaster if broadcaster is not None else SnapshotBroadcaster()
        )
        self.baseline = SessionBaseline()
        self.last = LastObserved()
        self.frames_processed: int = 0
        self.resets_processed: int = 0
        self.recorder_failures: int = 0
        self._last_recorder_error_log_ts = 0.0

    def process(
        self,
        event: InputEvent,
        heart_rate: HeartRateSample | None = None,
    ) -> DerivedSnapshot:
        """Derive, record and publish the snapshot for one input event.

        *heart_rate* is the latest sample at the time the event is handled,
        or ``None`` when no reading has arrived yet.
        """
        if isinstance(event, ResetMarker):
            frame = self._begin_new_session()
        else:
            frame = event
            self.frames_processed += 1

        snapshot = derive_snapshot(frame, baseline=self.baseline, last=self.last)
        self.last.observe(frame)
        self._record(snapshot, frame, heart_rate)
        self.broadcaster.publish(snapshot)
        return snapshot

    def _begin_new_session(self) -> RawFrame:
        self.baseline.rebase(self.last)
        self.resets_processed += 1
        try:
            self.recorder.reset()
        except Exception:
            self._note_recorder_failure("reset")
        LOGGER.info(
            "Session reset: baseline distance=%.1fcm strokes=%d",
            self.baseline.start_distance,
            self.baseline.start_stroke_count,
        )
        return self.last.reset_frame()

    def _record(
        self,
        snapshot: DerivedSnapshot,
        frame: RawFrame,
        heart_rate: HeartRateSample | None,
    ) -> None:
        # Readings without skin contact are noise; the recorder gets "no heart rate".
        recorded_hr = heart_rate if heart_rate is not None and heart_rate.contact_detected else None
        try:
            self.recorder.add(snapshot, recorded_hr)
        except Exception:
            self._note_recorder_failure("append")
        try:
            self.recorder.add_raw(frame)
        except Exception:
            self._note_recorder_failure("raw append")

    def _note_recorder_failure(self, operation: str) -> None:
        self.recorder_failures += 1
        now = time.monotonic()
        if (now - self._last_recorder_error_log_ts) >= _RECORDER_ERROR_LOG_INTERVAL_S:
            self._last_recorder_error_log_ts = now
            LOGGER.warning(
                "Recorder %s failed (%d failure(s) so far); snapshot still published.",
                operation,
                self.recorder_failures,
                exc_info=True,
            )

    # -- last-observed passthrough getters ----------------------------------------

    @property
    def ble_service_flag(self) -> BleServiceFlag:
        return self.last.ble_service_flag

    @property
    def log_level(self) -> LogLevel:
        return self.last.log_level

    @property
    def drag_factor(self) -> float:
        return self.last.drag_factor

    @property
    def flywheel_inertia(self) -> float:
        return self.last.flywheel_inertia

    @property
    def magic_number(self) -> float:
        return self.last.magic_number

    @property
    def auto_drag_factor(self) -> AutoDragFactor:
        return self.last.auto_drag_factor

    def device_settings(self) -> dict[str, Any]:
        return {
            "bleServiceFlag": int(self.ble_service_flag),
            "logLevel": int(self.log_level),
            "dragFactor": self.drag_factor,
            "flywheelInertia": self.flywheel_inertia,
            "magicNumber": self.magic_number,
            "autoDragFactor": int(self.auto_drag_factor),
        }
