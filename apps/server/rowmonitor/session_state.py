"""Mutable offset and scratch state owned by the aggregation state machine.

Neither class is thread-safe: both are written only from the single
sequential consumer of the merged input sequence.
"""

from __future__ import annotations

from dataclasses import dataclass

from .domain_models import AutoDragFactor, BleServiceFlag, LogLevel, RawFrame


@dataclass(slots=True)
class SessionBaseline:
    """Cumulative raw counters captured at the most recent reset."""

    start_distance: float = 0.0
    start_stroke_count: int = 0

    def rebase(self, last: LastObserved) -> None:
        self.start_distance = last.distance
        self.start_stroke_count = last.stroke_count

    def session_distance(self, raw_distance: float) -> float:
        return raw_distance - self.start_distance

    def session_stroke_count(self, raw_stroke_count: int) -> int:
        return raw_stroke_count - self.start_stroke_count


@dataclass(slots=True)
class LastObserved:
    """Raw values of the most recently processed frame.

    ``rev_count`` is the rounded distance (cm) used as the previous sample
    for speed and distance-per-stroke deltas.
    """

    rev_time: float = 0.0
    rev_count: int = 0
    stroke_time: float = 0.0
    stroke_count: int = 0
    distance: float = 0.0
    elapsed_time: float = 0.0
    total_calories: float = 0.0
    battery_level: int = 0
    ble_service_flag: BleServiceFlag = BleServiceFlag.FTMS
    log_level: LogLevel = LogLevel.TRACE
    flywheel_inertia: float = 0.0
    magic_number: float = 0.0
    auto_drag_factor: AutoDragFactor = AutoDragFactor.OFF
    drag_factor: float = 0.0

    def observe(self, frame: RawFrame) -> None:
        self.rev_time = frame.rev_time
        self.rev_count = frame.distance_cm
        self.stroke_time = frame.stroke_time
        self.stroke_count = frame.stroke_count
        self.distance = frame.distance
        self.elapsed_time = frame.elapsed_time
        self.total_calories = frame.total_calories
        self.battery_level = frame.battery_level
        self.ble_service_flag = frame.ble_service_flag
        self.log_level = frame.log_level
        self.flywheel_inertia = frame.flywheel_inertia
        self.magic_number = frame.magic_number
        self.auto_drag_factor = frame.auto_drag_factor
        self.drag_factor = frame.drag_factor

    def reset_frame(self) -> RawFrame:
        """Synthesize the frame that opens a new session.

        Duration, power and force fields are zeroed; every counter and
        configuration value is carried over so the next real frame sees
        coherent deltas.
        """
        return RawFrame(
            distance=self.distance,
            stroke_count=self.stroke_count,
            rev_time=self.rev_time,
            stroke_time=self.stroke_time,
            drive_duration=0.0,
            recovery_duration=0.0,
            avg_stroke_power=0.0,
            total_calories=self.total_calories,
            handle_forces=(),
            battery_level=self.battery_level,
            drag_factor=self.drag_factor,
            flywheel_inertia=self.flywheel_inertia,
            magic_number=self.magic_number,
            auto_drag_factor=self.auto_drag_factor,
            ble_service_flag=self.ble_service_flag,
            log_level=self.log_level,
            elapsed_time=self.elapsed_time,
        )
