"""Session recorder: receives every derived snapshot and its raw frame.

``Recorder`` is the write-only contract the aggregation state machine
depends on.  ``SessionRecorder`` is the bundled implementation: it keeps
the current segment in memory and, when a log path is configured, appends
the segment as JSON lines.
"""

from __future__ import annotations

import logging
import time
from collections import deque
from pathlib import Path
from threading import RLock
from typing import Any, Protocol
from uuid import uuid4

from .domain_models import DerivedSnapshot, HeartRateSample, RawFrame
from .runlog import (
    DERIVED_SAMPLE_TYPE,
    RAW_SAMPLE_TYPE,
    append_jsonl_records,
    create_segment_end_record,
    create_segment_metadata,
    utc_now_iso,
)

LOGGER = logging.getLogger(__name__)

_MAX_LIVE_RECORDS = 20_000
_DEFAULT_FLUSH_EVERY = 20
_SAMPLE_TYPES = frozenset({DERIVED_SAMPLE_TYPE, RAW_SAMPLE_TYPE})


class Recorder(Protocol):
    def add(self, snapshot: DerivedSnapshot, heart_rate: HeartRateSample | None) -> None: ...

    def add_raw(self, frame: RawFrame) -> None: ...

    def reset(self) -> None: ...


class NullRecorder:
    """Recorder that discards everything (recording disabled)."""

    def add(self, snapshot: DerivedSnapshot, heart_rate: HeartRateSample | None) -> None:
        return None

    def add_raw(self, frame: RawFrame) -> None:
        return None

    def reset(self) -> None:
        return None


class SessionRecorder:
    def __init__(
        self,
        log_path: Path | None = None,
        *,
        durable: bool = False,
        flush_every: int = _DEFAULT_FLUSH_EVERY,
        max_live_records: int = _MAX_LIVE_RECORDS,
    ):
        self.log_path = log_path
        self.durable = bool(durable)
        self.flush_every = max(1, int(flush_every))
        self._lock = RLock()
        self._derived: deque[dict[str, Any]] = deque(maxlen=max(1, max_live_records))
        self._raw: deque[dict[str, Any]] = deque(maxlen=max(1, max_live_records))
        self._pending: list[dict[str, Any]] = []
        self._segment_id = ""
        self._segment_start_utc = ""
        self._segment_start_mono_s = 0.0
        self._segment_count = 0
        self._written_record_count = 0
        self._last_write_error: str | None = None
        with self._lock:
            self._start_segment_locked()

    # -- segment lifecycle ------------------------------------------------------

    def _start_segment_locked(self) -> None:
        self._segment_count += 1
        self._segment_id = uuid4().hex
        self._segment_start_utc = utc_now_iso()
        self._segment_start_mono_s = time.monotonic()
        self._derived.clear()
        self._raw.clear()
        self._pending.append(
            create_segment_metadata(
                segment_id=self._segment_id,
                start_time_utc=self._segment_start_utc,
            )
        )

    def reset(self) -> None:
        """Close the current segment and open a new one."""
        with self._lock:
            previous = self._segment_id
            self._pending.append(create_segment_end_record(previous))
            self._flush_locked()
            self._start_segment_locked()
            segment_id = self._segment_id
        LOGGER.info("Recorder segment %s closed; started segment %s", previous, segment_id)

    def close(self) -> None:
        with self._lock:
            self._pending.append(create_segment_end_record(self._segment_id))
            self._flush_locked()

    # -- sample intake -----------------------------------------------------------

    def add(self, snapshot: DerivedSnapshot, heart_rate: HeartRateSample | None) -> None:
        record = {
            "record_type": DERIVED_SAMPLE_TYPE,
            "segment_id": "",
            "t_s": 0.0,
            "snapshot": snapshot.to_dict(),
            "heart_rate": heart_rate.to_dict() if heart_rate is not None else None,
        }
        with self._lock:
            self._append_locked(record, self._derived)

    def add_raw(self, frame: RawFrame) -> None:
        record = {
            "record_type": RAW_SAMPLE_TYPE,
            "segment_id": "",
            "t_s": 0.0,
            "frame": frame.to_dict(),
        }
        with self._lock:
            self._append_locked(record, self._raw)

    def _append_locked(self, record: dict[str, Any], live: deque[dict[str, Any]]) -> None:
        record["segment_id"] = self._segment_id
        record["t_s"] = round(time.monotonic() - self._segment_start_mono_s, 3)
        live.append(record)
        if self.log_path is None:
            return
        self._pending.append(record)
        if len(self._pending) >= self.flush_every:
            self._flush_locked()

    def _flush_locked(self) -> None:
        if self.log_path is None:
            self._pending.clear()
            return
        if not self._pending:
            return
        try:
            append_jsonl_records(self.log_path, self._pending, durable=self.durable)
        except OSError as exc:
            self._last_write_error = str(exc) or type(exc).__name__
            LOGGER.warning(
                "Failed to append %d record(s) to %s",
                len(self._pending),
                self.log_path,
                exc_info=True,
            )
            self._trim_pending_locked()
            return
        self._written_record_count += len(self._pending)
        self._pending.clear()
        self._last_write_error = None

    def _trim_pending_locked(self) -> None:
        # Only the newest samples survive a dead disk; segment boundary records
        # are kept so the reader can still attribute them.
        sample_idx = [
            i for i, record in enumerate(self._pending) if record["record_type"] in _SAMPLE_TYPES
        ]
        excess = len(sample_idx) - self.flush_every
        if excess <= 0:
            return
        dropped = set(sample_idx[:excess])
        self._pending = [r for i, r in enumerate(self._pending) if i not in dropped]

    def flush(self) -> None:
        with self._lock:
            self._flush_locked()

    # -- read side -----------------------------------------------------------------

    def derived_samples(self) -> list[dict[str, Any]]:
        with self._lock:
            return list(self._derived)

    def raw_samples(self) -> list[dict[str, Any]]:
        with self._lock:
            return list(self._raw)

    def status(self) -> dict[str, Any]:
        with self._lock:
            return {
                "segment_id": self._segment_id,
                "segment_start_time_utc": self._segment_start_utc,
                "segment_count": self._segment_count,
                "derived_samples": len(self._derived),
                "raw_samples": len(self._raw),
                "written_records": self._written_record_count,
                "log_path": str(self.log_path) if self.log_path is not None else None,
                "last_write_error": self._last_write_error,
            }
