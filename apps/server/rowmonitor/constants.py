"""Shared unit conversions and sentinels (single source of truth)."""

from __future__ import annotations

from typing import Final

# ---------------------------------------------------------------------------
# Unit conversion
# ---------------------------------------------------------------------------
MICROS_PER_SECOND: Final[float] = 1e6
"""Device clocks (revTime, strokeTime, drive/recovery durations) tick in µs."""

CM_PER_M: Final[float] = 100.0
"""Device distance is reported in centimetres."""

SECONDS_PER_MINUTE: Final[float] = 60.0

# ---------------------------------------------------------------------------
# Sentinels
# ---------------------------------------------------------------------------
PEAK_FORCE_EMPTY: Final[float] = 0.0
"""Peak force reported for a frame without handle-force samples (e.g. a reset frame)."""
