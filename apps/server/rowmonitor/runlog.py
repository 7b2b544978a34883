from __future__ import annotations

import json
import logging
import os
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from .json_utils import sanitize_value

LOGGER = logging.getLogger(__name__)

__all__ = [
    "SEGMENT_SCHEMA_VERSION",
    "SEGMENT_METADATA_TYPE",
    "DERIVED_SAMPLE_TYPE",
    "RAW_SAMPLE_TYPE",
    "SEGMENT_END_TYPE",
    "SegmentData",
    "utc_now_iso",
    "create_segment_metadata",
    "create_segment_end_record",
    "append_jsonl_records",
    "read_jsonl_segments",
]

SEGMENT_SCHEMA_VERSION = "rowmonitor-v1-jsonl"
SEGMENT_METADATA_TYPE = "segment_metadata"
DERIVED_SAMPLE_TYPE = "derived"
RAW_SAMPLE_TYPE = "raw"
SEGMENT_END_TYPE = "segment_end"


@dataclass(slots=True)
class SegmentData:
    metadata: dict[str, Any]
    derived: list[dict[str, Any]] = field(default_factory=list)
    raw: list[dict[str, Any]] = field(default_factory=list)
    end_time_utc: str | None = None


def utc_now_iso() -> str:
    return datetime.now(UTC).isoformat()


def create_segment_metadata(*, segment_id: str, start_time_utc: str) -> dict[str, Any]:
    return {
        "record_type": SEGMENT_METADATA_TYPE,
        "schema_version": SEGMENT_SCHEMA_VERSION,
        "segment_id": segment_id,
        "start_time_utc": start_time_utc,
    }


def create_segment_end_record(segment_id: str, end_time_utc: str | None = None) -> dict[str, Any]:
    return {
        "record_type": SEGMENT_END_TYPE,
        "schema_version": SEGMENT_SCHEMA_VERSION,
        "segment_id": segment_id,
        "end_time_utc": end_time_utc or utc_now_iso(),
    }


def append_jsonl_records(
    path: Path,
    records: Iterable[dict[str, Any]],
    *,
    durable: bool = False,
) -> None:
    """Append *records* as compact JSON lines; non-finite floats become ``null``."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("a", encoding="utf-8") as f:
        for record in records:
            f.write(
                json.dumps(
                    sanitize_value(record),
                    ensure_ascii=False,
                    separators=(",", ":"),
                    allow_nan=False,
                )
            )
            f.write("\n")
        if durable:
            f.flush()
            os.fsync(f.fileno())


def read_jsonl_segments(path: Path) -> list[SegmentData]:
    """Read every recorded segment from *path*, in file order.

    Sample lines that precede any segment metadata are skipped; corrupt lines
    are logged and skipped.
    """
    if not path.exists():
        raise FileNotFoundError(path)

    segments: dict[str, SegmentData] = {}
    skipped = 0
    with path.open("r", encoding="utf-8") as f:
        for line_no, line in enumerate(f, start=1):
            text = line.strip()
            if not text:
                continue
            try:
                payload = json.loads(text)
            except json.JSONDecodeError as exc:
                LOGGER.warning("Skipping corrupt JSONL line %d in %s: %s", line_no, path, exc)
                skipped += 1
                continue
            if not isinstance(payload, dict):
                continue
            record_type = str(payload.get("record_type", ""))
            segment_id = str(payload.get("segment_id", ""))
            if record_type == SEGMENT_METADATA_TYPE:
                segments.setdefault(segment_id, SegmentData(metadata=payload))
                continue
            segment = segments.get(segment_id)
            if segment is None:
                continue
            if record_type == DERIVED_SAMPLE_TYPE:
                segment.derived.append(payload)
            elif record_type == RAW_SAMPLE_TYPE:
                segment.raw.append(payload)
            elif record_type == SEGMENT_END_TYPE:
                segment.end_time_utc = payload.get("end_time_utc")

    if skipped:
        LOGGER.warning("Skipped %d corrupt line(s) while reading %s", skipped, path)
    return list(segments.values())
