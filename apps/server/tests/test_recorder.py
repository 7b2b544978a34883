"""Tests for the JSONL session recorder."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from unittest.mock import patch

import pytest
from builders import make_frame

from rowmonitor.domain_models import HeartRateSample
from rowmonitor.processing import derive_snapshot
from rowmonitor.recorder import NullRecorder, SessionRecorder
from rowmonitor.runlog import read_jsonl_segments
from rowmonitor.session_state import LastObserved, SessionBaseline


def _snapshot(**overrides):
    return derive_snapshot(make_frame(**overrides), baseline=SessionBaseline(), last=LastObserved())


def _read_lines(path: Path) -> list[dict]:
    return [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines()]


class TestInMemory:
    def test_without_path_keeps_samples_in_memory(self) -> None:
        recorder = SessionRecorder()
        recorder.add(_snapshot(), HeartRateSample(bpm=130, contact_detected=True))
        recorder.add_raw(make_frame())
        derived = recorder.derived_samples()
        assert len(derived) == 1
        assert derived[0]["heart_rate"] == {"bpm": 130, "contactDetected": True}
        assert derived[0]["snapshot"]["peakForce"] == 350.0
        assert len(recorder.raw_samples()) == 1
        assert recorder.status()["log_path"] is None

    def test_absent_heart_rate_recorded_as_null(self) -> None:
        recorder = SessionRecorder()
        recorder.add(_snapshot(), None)
        assert recorder.derived_samples()[0]["heart_rate"] is None

    def test_reset_starts_new_segment(self) -> None:
        recorder = SessionRecorder()
        first_id = recorder.status()["segment_id"]
        recorder.add(_snapshot(), None)
        recorder.reset()
        status = recorder.status()
        assert status["segment_id"] != first_id
        assert status["segment_count"] == 2
        assert status["derived_samples"] == 0

    def test_live_buffer_is_bounded(self) -> None:
        recorder = SessionRecorder(max_live_records=3)
        for _ in range(5):
            recorder.add(_snapshot(), None)
        assert len(recorder.derived_samples()) == 3


class TestJsonl:
    def test_flushes_every_n_records(self, tmp_path: Path) -> None:
        path = tmp_path / "sessions.jsonl"
        recorder = SessionRecorder(path, flush_every=4)
        recorder.add(_snapshot(), None)
        recorder.add_raw(make_frame())
        assert not path.exists()
        recorder.add(_snapshot(), None)
        # metadata + 3 records reach the threshold
        lines = _read_lines(path)
        assert [line["record_type"] for line in lines] == [
            "segment_metadata",
            "derived",
            "raw",
            "derived",
        ]
        assert recorder.status()["written_records"] == 4

    def test_segments_round_trip(self, tmp_path: Path) -> None:
        path = tmp_path / "sessions.jsonl"
        recorder = SessionRecorder(path, flush_every=100)
        recorder.add(_snapshot(), None)
        recorder.add_raw(make_frame())
        recorder.reset()
        recorder.add(_snapshot(distance=50.0), HeartRateSample(bpm=99, contact_detected=True))
        recorder.close()

        segments = read_jsonl_segments(path)
        assert len(segments) == 2
        assert len(segments[0].derived) == 1
        assert len(segments[0].raw) == 1
        assert segments[0].end_time_utc is not None
        assert segments[1].derived[0]["heart_rate"]["bpm"] == 99
        assert segments[1].end_time_utc is not None

    def test_non_finite_rates_written_as_null(self, tmp_path: Path) -> None:
        path = tmp_path / "sessions.jsonl"
        recorder = SessionRecorder(path, flush_every=1)
        frame = make_frame()
        last = LastObserved()
        last.observe(frame)
        recorder.add(derive_snapshot(frame, baseline=SessionBaseline(), last=last), None)
        derived = [line for line in _read_lines(path) if line["record_type"] == "derived"]
        assert derived[0]["snapshot"]["strokeRate"] is None
        assert derived[0]["snapshot"]["speed"] is None

    def test_write_failure_is_reported_not_raised(
        self, tmp_path: Path, caplog: pytest.LogCaptureFixture
    ) -> None:
        recorder = SessionRecorder(tmp_path / "sessions.jsonl", flush_every=1)
        with (
            patch(
                "rowmonitor.recorder.append_jsonl_records",
                side_effect=OSError("read-only file system"),
            ),
            caplog.at_level(logging.WARNING, logger="rowmonitor.recorder"),
        ):
            recorder.add(_snapshot(), None)
        assert recorder.status()["last_write_error"] == "read-only file system"
        assert any("Failed to append" in r.message for r in caplog.records)
        # The sample is still visible in memory.
        assert len(recorder.derived_samples()) == 1

    def test_recovers_after_write_failure(self, tmp_path: Path) -> None:
        path = tmp_path / "sessions.jsonl"
        recorder = SessionRecorder(path, flush_every=1)
        with patch("rowmonitor.recorder.append_jsonl_records", side_effect=OSError("eio")):
            recorder.add(_snapshot(), None)
        recorder.add(_snapshot(), None)
        assert recorder.status()["last_write_error"] is None
        assert path.exists()

    def test_segment_metadata_survives_repeated_write_failures(self, tmp_path: Path) -> None:
        path = tmp_path / "sessions.jsonl"
        recorder = SessionRecorder(path, flush_every=2)
        with patch("rowmonitor.recorder.append_jsonl_records", side_effect=OSError("eio")):
            for _ in range(3):
                recorder.add(_snapshot(), None)
                recorder.add_raw(make_frame())
        for _ in range(3):
            recorder.add(_snapshot(), None)
            recorder.add_raw(make_frame())
        recorder.close()

        segments = read_jsonl_segments(path)
        assert len(segments) == 1
        assert segments[0].metadata["segment_id"] == recorder.status()["segment_id"]
        assert len(segments[0].derived) >= 3
        assert len(segments[0].raw) >= 3
        assert segments[0].end_time_utc is not None


def test_null_recorder_accepts_everything() -> None:
    recorder = NullRecorder()
    recorder.add(_snapshot(), None)
    recorder.add_raw(make_frame())
    recorder.reset()
