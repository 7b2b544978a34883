"""Synthetic rowing telemetry for running the service without a monitor.

Frames follow the device contract: cumulative counters only move forward,
``stroke_time`` advances when a stroke completes, ``rev_time`` advances with
every frame that carries new distance.
"""

from __future__ import annotations

import asyncio
import math
from collections.abc import AsyncIterator
from dataclasses import dataclass

import numpy as np

from .constants import CM_PER_M, MICROS_PER_SECOND, SECONDS_PER_MINUTE
from .domain_models import AutoDragFactor, BleServiceFlag, HeartRateSample, LogLevel, RawFrame

_FORCE_CURVE_POINTS = 24


@dataclass(frozen=True, slots=True)
class RowingProfile:
    name: str
    stroke_rate_spm: float
    speed_mps: float
    peak_force_n: float
    avg_power_w: float
    drive_ratio: float
    heart_rate_bpm: float
    drag_factor: float = 110.0
    flywheel_inertia: float = 0.073
    magic_number: float = 2.8
    noise_pct: float = 0.03


PROFILE_LIBRARY: dict[str, RowingProfile] = {
    "steady": RowingProfile(
        name="steady",
        stroke_rate_spm=22.0,
        speed_mps=3.9,
        peak_force_n=420.0,
        avg_power_w=160.0,
        drive_ratio=0.38,
        heart_rate_bpm=142.0,
    ),
    "sprint": RowingProfile(
        name="sprint",
        stroke_rate_spm=34.0,
        speed_mps=5.1,
        peak_force_n=690.0,
        avg_power_w=380.0,
        drive_ratio=0.46,
        heart_rate_bpm=176.0,
    ),
    "warmup": RowingProfile(
        name="warmup",
        stroke_rate_spm=18.0,
        speed_mps=3.0,
        peak_force_n=260.0,
        avg_power_w=85.0,
        drive_ratio=0.34,
        heart_rate_bpm=112.0,
        noise_pct=0.05,
    ),
}


def force_curve(
    peak_force_n: float,
    rng: np.random.Generator,
    noise_pct: float,
) -> tuple[float, ...]:
    """Half-sine handle-force curve with multiplicative noise, clipped at 0."""
    phase = np.linspace(0.0, np.pi, _FORCE_CURVE_POINTS)
    curve = peak_force_n * np.sin(phase) * (1.0 + rng.normal(0.0, noise_pct, phase.size))
    return tuple(float(v) for v in np.clip(curve, 0.0, None).round(1))


class RowingSimulator:
    def __init__(self, profile: RowingProfile, *, seed: int = 0, battery_level: int = 87):
        self.profile = profile
        self._rng = np.random.default_rng(seed)
        self._clock_us = 0.0
        self._distance_cm = 0.0
        self._stroke_count = 0
        self._stroke_time_us = 0.0
        self._rev_time_us = 0.0
        self._calories = 0.0
        self._stroke_phase = 0.0
        self._forces: tuple[float, ...] = ()
        self._battery_level = battery_level

    def _jitter(self, value: float) -> float:
        return value * (1.0 + float(self._rng.normal(0.0, self.profile.noise_pct)))

    def step(self, dt_s: float) -> RawFrame:
        p = self.profile
        self._clock_us += dt_s * MICROS_PER_SECOND
        self._distance_cm += max(0.0, self._jitter(p.speed_mps)) * dt_s * CM_PER_M
        self._rev_time_us = self._clock_us
        self._calories += p.avg_power_w * dt_s / 1000.0
        self._stroke_phase += dt_s * p.stroke_rate_spm / SECONDS_PER_MINUTE
        if self._stroke_phase >= 1.0:
            self._stroke_phase -= math.floor(self._stroke_phase)
            self._stroke_count += 1
            self._stroke_time_us = self._clock_us
            self._forces = force_curve(p.peak_force_n, self._rng, p.noise_pct)
        stroke_period_us = SECONDS_PER_MINUTE / p.stroke_rate_spm * MICROS_PER_SECOND
        return RawFrame(
            distance=round(self._distance_cm, 2),
            stroke_count=self._stroke_count,
            rev_time=self._rev_time_us,
            stroke_time=self._stroke_time_us,
            drive_duration=round(stroke_period_us * p.drive_ratio),
            recovery_duration=round(stroke_period_us * (1.0 - p.drive_ratio)),
            avg_stroke_power=round(self._jitter(p.avg_power_w), 1),
            total_calories=round(self._calories, 3),
            handle_forces=self._forces,
            battery_level=self._battery_level,
            drag_factor=p.drag_factor,
            flywheel_inertia=p.flywheel_inertia,
            magic_number=p.magic_number,
            auto_drag_factor=AutoDragFactor.ON,
            ble_service_flag=BleServiceFlag.FTMS,
            log_level=LogLevel.INFO,
            elapsed_time=self._clock_us,
        )

    def heart_rate(self) -> HeartRateSample:
        bpm = self._jitter(self.profile.heart_rate_bpm)
        return HeartRateSample(bpm=int(round(bpm)), contact_detected=True)


async def simulate_telemetry(
    simulator: RowingSimulator,
    hz: float,
    max_frames: int | None = None,
) -> AsyncIterator[RawFrame]:
    interval = 1.0 / max(hz, 1e-3)
    emitted = 0
    while max_frames is None or emitted < max_frames:
        yield simulator.step(interval)
        emitted += 1
        await asyncio.sleep(interval)


async def simulate_heart_rate(
    simulator: RowingSimulator,
    hz: float = 1.0,
    max_samples: int | None = None,
) -> AsyncIterator[HeartRateSample]:
    interval = 1.0 / max(hz, 1e-3)
    emitted = 0
    while max_samples is None or emitted < max_samples:
        yield simulator.heart_rate()
        emitted += 1
        await asyncio.sleep(interval)
