"""Snapshot derivation: pure functions, no I/O, no state mutation.

Rates are computed from the delta between the incoming frame and the
previously observed raw values.  Division follows IEEE float semantics
(``x/0 -> ±inf``, ``0/0 -> nan``) instead of raising, so a duplicate frame
or a frame without elapsed device time still yields a snapshot.
"""

from __future__ import annotations

import numpy as np

from .constants import CM_PER_M, MICROS_PER_SECOND, PEAK_FORCE_EMPTY, SECONDS_PER_MINUTE
from .domain_models import DerivedSnapshot, RawFrame
from .session_state import LastObserved, SessionBaseline


def ratio(numerator: float, denominator: float) -> float:
    """Divide without raising; a zero denominator yields ``inf`` or ``nan``."""
    with np.errstate(divide="ignore", invalid="ignore"):
        return float(np.float64(numerator) / np.float64(denominator))


def stroke_rate_spm(frame: RawFrame, last: LastObserved) -> float:
    strokes = frame.stroke_count - last.stroke_count
    elapsed_s = (frame.stroke_time - last.stroke_time) / MICROS_PER_SECOND
    return ratio(strokes, elapsed_s) * SECONDS_PER_MINUTE


def speed_mps(distance_cm: int, frame: RawFrame, last: LastObserved) -> float:
    travelled_m = (distance_cm - last.rev_count) / CM_PER_M
    elapsed_s = (frame.rev_time - last.rev_time) / MICROS_PER_SECOND
    return ratio(travelled_m, elapsed_s)


def distance_per_stroke_m(distance_cm: int, frame: RawFrame, last: LastObserved) -> float:
    # No distance progressed (duplicate frame or idle flywheel): report 0
    # rather than 0/0 or a stale per-stroke value.
    if distance_cm == last.rev_count:
        return 0.0
    travelled_m = (distance_cm - last.rev_count) / CM_PER_M
    return ratio(travelled_m, frame.stroke_count - last.stroke_count)


def peak_force(handle_forces: tuple[float, ...]) -> float:
    if not handle_forces:
        return PEAK_FORCE_EMPTY
    return float(np.max(handle_forces))


def derive_snapshot(
    frame: RawFrame,
    *,
    baseline: SessionBaseline,
    last: LastObserved,
) -> DerivedSnapshot:
    """Compute the published snapshot for *frame*.

    *last* must still hold the values of the previous frame; updating it is
    the caller's job once the snapshot exists.
    """
    distance_cm = frame.distance_cm
    return DerivedSnapshot(
        ble_service_flag=frame.ble_service_flag,
        log_level=frame.log_level,
        drive_duration=frame.drive_duration / MICROS_PER_SECOND,
        recovery_duration=frame.recovery_duration / MICROS_PER_SECOND,
        avg_stroke_power=frame.avg_stroke_power,
        distance=baseline.session_distance(frame.distance),
        battery_level=frame.battery_level,
        drag_factor=frame.drag_factor,
        flywheel_inertia=frame.flywheel_inertia,
        magic_number=frame.magic_number,
        auto_drag_factor=frame.auto_drag_factor,
        elapsed_time=frame.elapsed_time,
        stroke_count=baseline.session_stroke_count(frame.stroke_count),
        total_calories=frame.total_calories,
        handle_forces=frame.handle_forces,
        peak_force=peak_force(frame.handle_forces),
        stroke_rate=stroke_rate_spm(frame, last),
        speed=speed_mps(distance_cm, frame, last),
        dist_per_stroke=distance_per_stroke_m(distance_cm, frame, last),
    )
