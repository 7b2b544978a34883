"""JSON encoding for consumer-facing payloads.

Snapshots legitimately carry non-finite rates (no elapsed device time);
JSON has no representation for them, so they are published as ``null``.
"""

from __future__ import annotations

import json
import math
from enum import IntEnum
from typing import Any

__all__ = [
    "encode_payload",
    "sanitize_for_json",
    "sanitize_value",
]


def sanitize_for_json(obj: Any) -> tuple[Any, bool]:
    """Recursively replace non-finite floats (NaN, Inf, -Inf) with ``None``.

    Objects exposing ``to_dict()`` (domain dataclasses) are expanded, enums
    become their integer code, numpy scalars/arrays become native Python.

    Returns the sanitised object and a flag telling whether any non-finite
    value was encountered.
    """
    found_non_finite = False

    def _walk(v: Any) -> Any:
        nonlocal found_non_finite
        if hasattr(v, "to_dict") and callable(v.to_dict):
            v = v.to_dict()
        elif isinstance(v, IntEnum):
            return int(v)
        elif hasattr(v, "tolist") and hasattr(v, "ndim"):
            v = v.tolist()
        elif hasattr(v, "item") and not isinstance(v, (dict, list, tuple, str)):
            v = v.item()
        if isinstance(v, float):
            if math.isfinite(v):
                return v
            found_non_finite = True
            return None
        if isinstance(v, dict):
            return {k: _walk(val) for k, val in v.items()}
        if isinstance(v, (list, tuple)):
            return [_walk(item) for item in v]
        return v

    cleaned = _walk(obj)
    return cleaned, found_non_finite


def sanitize_value(value: Any) -> Any:
    cleaned, _ = sanitize_for_json(value)
    return cleaned


def encode_payload(value: Any) -> tuple[str, bool]:
    """Serialise *value* to compact JSON; also report whether it held NaN/Inf."""
    cleaned, had_non_finite = sanitize_for_json(value)
    text = json.dumps(cleaned, separators=(",", ":"), allow_nan=False)
    return text, had_non_finite
