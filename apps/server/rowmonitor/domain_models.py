"""Domain model objects for the rowing monitor backend.

Typed, immutable dataclasses for everything that crosses a module boundary:
raw telemetry frames, heart-rate readings, the reset marker that shares the
telemetry input sequence, and the derived snapshot published to consumers.
The JSON contract (camelCase keys, as sent by the monitor firmware) is kept
at the ``from_dict`` / ``to_dict`` edges only.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import IntEnum
from typing import Any

# ---------------------------------------------------------------------------
# Passthrough enums
# ---------------------------------------------------------------------------


class BleServiceFlag(IntEnum):
    CPS = 0
    CSC = 1
    FTMS = 2


class LogLevel(IntEnum):
    SILENT = 0
    FATAL = 1
    ERROR = 2
    WARNING = 3
    INFO = 4
    TRACE = 5
    VERBOSE = 6


class AutoDragFactor(IntEnum):
    OFF = 0
    ON = 1


def _coerce_enum(enum_cls: type[IntEnum], value: object, default: IntEnum) -> Any:
    """Map *value* onto *enum_cls*; unknown codes fall back to *default*."""
    number = _as_float_or_none(value)
    if number is None:
        return default
    try:
        return enum_cls(int(number))
    except ValueError:
        return default


# ---------------------------------------------------------------------------
# Shared coercion helpers
# ---------------------------------------------------------------------------


def _as_float_or_none(value: object) -> float | None:
    if value in (None, "") or isinstance(value, bool):
        return None
    try:
        out = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return None
    if math.isnan(out) or math.isinf(out):
        return None
    return out


def _as_float(value: object, default: float = 0.0) -> float:
    out = _as_float_or_none(value)
    return default if out is None else out


def _as_int(value: object, default: int = 0) -> int:
    out = _as_float_or_none(value)
    return default if out is None else int(round(out))


def _required_float(data: dict[str, Any], key: str) -> float:
    out = _as_float_or_none(data.get(key))
    if out is None:
        raise ValueError(f"Telemetry frame field {key!r} is missing or not a finite number")
    return out


def _as_forces(value: object) -> tuple[float, ...]:
    if not isinstance(value, (list, tuple)):
        return ()
    forces: list[float] = []
    for item in value:
        number = _as_float_or_none(item)
        if number is not None:
            forces.append(number)
    return tuple(forces)


# ---------------------------------------------------------------------------
# 1) RawFrame
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class RawFrame:
    """One telemetry sample as reported by the monitor.

    ``distance`` (cm), ``stroke_count``, ``rev_time``/``stroke_time`` (µs)
    and ``total_calories`` are cumulative device counters.
    """

    distance: float
    stroke_count: int
    rev_time: float
    stroke_time: float
    drive_duration: float = 0.0
    recovery_duration: float = 0.0
    avg_stroke_power: float = 0.0
    total_calories: float = 0.0
    handle_forces: tuple[float, ...] = ()
    battery_level: int = 0
    drag_factor: float = 0.0
    flywheel_inertia: float = 0.0
    magic_number: float = 0.0
    auto_drag_factor: AutoDragFactor = AutoDragFactor.OFF
    ble_service_flag: BleServiceFlag = BleServiceFlag.FTMS
    log_level: LogLevel = LogLevel.TRACE
    elapsed_time: float = 0.0

    @property
    def distance_cm(self) -> int:
        """Distance rounded half-up to whole centimetres."""
        return math.floor(self.distance + 0.5)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RawFrame:
        """Build a frame from the firmware's camelCase JSON object.

        The four counters the rate derivation depends on are required;
        everything else falls back to its neutral default.
        """
        if not isinstance(data, dict):
            raise ValueError(f"Telemetry frame must be a JSON object, got {type(data).__name__}")
        return cls(
            distance=_required_float(data, "distance"),
            stroke_count=int(round(_required_float(data, "strokeCount"))),
            rev_time=_required_float(data, "revTime"),
            stroke_time=_required_float(data, "strokeTime"),
            drive_duration=_as_float(data.get("driveDuration")),
            recovery_duration=_as_float(data.get("recoveryDuration")),
            avg_stroke_power=_as_float(data.get("avgStrokePower")),
            total_calories=_as_float(data.get("totalCalories")),
            handle_forces=_as_forces(data.get("handleForces")),
            battery_level=max(0, min(100, _as_int(data.get("batteryLevel")))),
            drag_factor=_as_float(data.get("dragFactor")),
            flywheel_inertia=_as_float(data.get("flywheelInertia")),
            magic_number=_as_float(data.get("magicNumber")),
            auto_drag_factor=_coerce_enum(
                AutoDragFactor, data.get("autoDragFactor"), AutoDragFactor.OFF
            ),
            ble_service_flag=_coerce_enum(
                BleServiceFlag, data.get("bleServiceFlag"), BleServiceFlag.FTMS
            ),
            log_level=_coerce_enum(LogLevel, data.get("logLevel"), LogLevel.TRACE),
            elapsed_time=_as_float(data.get("elapsedTime")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "distance": self.distance,
            "strokeCount": self.stroke_count,
            "revTime": self.rev_time,
            "strokeTime": self.stroke_time,
            "driveDuration": self.drive_duration,
            "recoveryDuration": self.recovery_duration,
            "avgStrokePower": self.avg_stroke_power,
            "totalCalories": self.total_calories,
            "handleForces": list(self.handle_forces),
            "batteryLevel": self.battery_level,
            "dragFactor": self.drag_factor,
            "flywheelInertia": self.flywheel_inertia,
            "magicNumber": self.magic_number,
            "autoDragFactor": int(self.auto_drag_factor),
            "bleServiceFlag": int(self.ble_service_flag),
            "logLevel": int(self.log_level),
            "elapsedTime": self.elapsed_time,
        }


# ---------------------------------------------------------------------------
# 2) ResetMarker
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ResetMarker:
    """Placed on the telemetry input sequence to start a new logical session."""


InputEvent = RawFrame | ResetMarker
"""Tagged variant consumed, in order, by the aggregation state machine."""


# ---------------------------------------------------------------------------
# 3) HeartRateSample
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class HeartRateSample:
    bpm: int
    contact_detected: bool

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> HeartRateSample:
        if not isinstance(data, dict):
            raise ValueError("Heart-rate sample must be a JSON object")
        bpm = _as_float_or_none(data.get("bpm", data.get("heartRate")))
        if bpm is None or bpm < 0:
            raise ValueError(f"Heart-rate sample has invalid bpm: {data.get('bpm')!r}")
        return cls(
            bpm=int(round(bpm)),
            contact_detected=bool(data.get("contactDetected", False)),
        )

    def to_dict(self) -> dict[str, Any]:
        return {"bpm": self.bpm, "contactDetected": self.contact_detected}


# ---------------------------------------------------------------------------
# 4) DerivedSnapshot
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class DerivedSnapshot:
    """Fully derived, session-relative performance snapshot.

    Rates may be non-finite (``inf``/``nan``) when the device reported no
    elapsed time between samples; rendering them is the consumer's concern.
    """

    ble_service_flag: BleServiceFlag
    log_level: LogLevel
    drive_duration: float
    recovery_duration: float
    avg_stroke_power: float
    distance: float
    battery_level: int
    drag_factor: float
    flywheel_inertia: float
    magic_number: float
    auto_drag_factor: AutoDragFactor
    elapsed_time: float
    stroke_count: int
    total_calories: float
    handle_forces: tuple[float, ...]
    peak_force: float
    stroke_rate: float
    speed: float
    dist_per_stroke: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "bleServiceFlag": int(self.ble_service_flag),
            "logLevel": int(self.log_level),
            "driveDuration": self.drive_duration,
            "recoveryDuration": self.recovery_duration,
            "avgStrokePower": self.avg_stroke_power,
            "distance": self.distance,
            "batteryLevel": self.battery_level,
            "dragFactor": self.drag_factor,
            "flywheelInertia": self.flywheel_inertia,
            "magicNumber": self.magic_number,
            "autoDragFactor": int(self.auto_drag_factor),
            "elapsedTime": self.elapsed_time,
            "strokeCount": self.stroke_count,
            "totalCalories": self.total_calories,
            "handleForces": list(self.handle_forces),
            "peakForce": self.peak_force,
            "strokeRate": self.stroke_rate,
            "speed": self.speed,
            "distPerStroke": self.dist_per_stroke,
        }
