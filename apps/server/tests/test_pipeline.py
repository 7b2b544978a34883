"""Tests for the merged-input aggregation pipeline."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from unittest.mock import MagicMock, call, patch

import pytest
from builders import collect, frame_sequence, make_frame
from conftest import async_wait_until

from rowmonitor import processing
from rowmonitor.aggregator import TelemetryAggregator
from rowmonitor.domain_models import HeartRateSample, RawFrame, ResetMarker
from rowmonitor.heart_rate import HeartRateMonitor
from rowmonitor.ingest import QueueSource
from rowmonitor.pipeline import AggregationPipeline


def _recorded_snapshots(recorder: MagicMock) -> list:
    return [c.args[0] for c in recorder.add.call_args_list]


class TestOrdering:
    @pytest.mark.asyncio
    async def test_reset_is_applied_in_input_order(self) -> None:
        recorder = MagicMock()
        pipeline = AggregationPipeline(aggregator=TelemetryAggregator(recorder=recorder))
        first, second = frame_sequence(2)
        pipeline.submit(first)
        pipeline.reset()
        pipeline.submit(second)

        await asyncio.wait_for(pipeline.run(collect([])), timeout=2.0)

        snapshots = _recorded_snapshots(recorder)
        assert [s.distance for s in snapshots] == [100.0, 0.0, 100.0]
        assert [s.stroke_count for s in snapshots] == [1, 0, 1]

    @pytest.mark.asyncio
    async def test_frames_processed_in_arrival_order(self) -> None:
        recorder = MagicMock()
        pipeline = AggregationPipeline(aggregator=TelemetryAggregator(recorder=recorder))
        frames = frame_sequence(5)

        await asyncio.wait_for(pipeline.run(collect(frames)), timeout=2.0)

        raw = [c.args[0] for c in recorder.add_raw.call_args_list]
        assert raw == frames

    @pytest.mark.asyncio
    async def test_reset_while_running(self) -> None:
        recorder = MagicMock()
        agg = TelemetryAggregator(recorder=recorder)
        pipeline = AggregationPipeline(aggregator=agg)
        source: QueueSource[RawFrame] = QueueSource("telemetry")
        task = asyncio.create_task(pipeline.run(source))

        source.offer(make_frame(distance=2000.0, stroke_count=20))
        assert await async_wait_until(lambda: agg.frames_processed == 1)
        pipeline.reset()
        assert await async_wait_until(lambda: agg.resets_processed == 1)
        source.offer(make_frame(distance=2300.0, stroke_count=23))
        source.close()
        await asyncio.wait_for(task, timeout=2.0)

        final = pipeline.latest
        assert final is not None
        assert final.distance == pytest.approx(300.0)
        assert final.stroke_count == 3


class TestHeartRatePairing:
    @pytest.mark.asyncio
    async def test_frame_pairs_with_latest_preceding_sample(self) -> None:
        monitor = HeartRateMonitor("ble")
        agg = TelemetryAggregator()
        agg.process = MagicMock(wraps=agg.process)  # type: ignore[method-assign]
        pipeline = AggregationPipeline(aggregator=agg, heart_rate_monitor=monitor)
        source: QueueSource[RawFrame] = QueueSource("telemetry")
        task = asyncio.create_task(pipeline.run(source))

        frame_t0, frame_t2, frame_t4 = frame_sequence(3)
        hr_t1 = HeartRateSample(bpm=110, contact_detected=False)
        hr_t3 = HeartRateSample(bpm=118, contact_detected=True)

        source.offer(frame_t0)
        assert await async_wait_until(lambda: agg.process.call_count == 1)
        monitor.ingest(hr_t1)
        source.offer(frame_t2)
        assert await async_wait_until(lambda: agg.process.call_count == 2)
        monitor.ingest(hr_t3)
        source.offer(frame_t4)
        source.close()
        await asyncio.wait_for(task, timeout=2.0)

        assert agg.process.call_args_list == [
            call(frame_t0, None),
            call(frame_t2, hr_t1),
            call(frame_t4, hr_t3),
        ]

    @pytest.mark.asyncio
    async def test_reset_pairs_with_sample_at_request_time(self) -> None:
        monitor = HeartRateMonitor("ant")
        agg = TelemetryAggregator()
        agg.process = MagicMock(wraps=agg.process)  # type: ignore[method-assign]
        pipeline = AggregationPipeline(aggregator=agg, heart_rate_monitor=monitor)
        sample = HeartRateSample(bpm=150, contact_detected=True)
        monitor.ingest(sample)
        pipeline.reset()

        await asyncio.wait_for(pipeline.run(collect([])), timeout=2.0)

        agg.process.assert_called_once_with(ResetMarker(), sample)

    @pytest.mark.asyncio
    async def test_heart_rate_source_runs_alongside_telemetry(self) -> None:
        monitor = HeartRateMonitor("ble")
        pipeline = AggregationPipeline(heart_rate_monitor=monitor)
        samples = [HeartRateSample(bpm=120 + i, contact_detected=True) for i in range(3)]
        gate: asyncio.Event = asyncio.Event()

        async def _telemetry() -> AsyncIterator[RawFrame]:
            await gate.wait()
            yield make_frame()

        task = asyncio.create_task(pipeline.run(_telemetry(), collect(samples)))
        assert await async_wait_until(lambda: monitor.samples_received == 3)
        gate.set()
        await asyncio.wait_for(task, timeout=2.0)
        assert monitor.cache.latest() == samples[-1]

    @pytest.mark.asyncio
    async def test_endless_heart_rate_source_is_cancelled_at_end(self) -> None:
        async def _endless() -> AsyncIterator[HeartRateSample]:
            while True:
                yield HeartRateSample(bpm=100, contact_detected=True)
                await asyncio.sleep(0.01)

        pipeline = AggregationPipeline(heart_rate_monitor=HeartRateMonitor("ble"))
        await asyncio.wait_for(pipeline.run(collect(frame_sequence(3)), _endless()), timeout=2.0)
        assert pipeline.state == "stopped"


class TestBroadcast:
    @pytest.mark.asyncio
    async def test_end_of_stream_closes_subscribers(self) -> None:
        pipeline = AggregationPipeline()
        sub = pipeline.subscribe()
        frames = frame_sequence(2)

        await asyncio.wait_for(pipeline.run(collect(frames)), timeout=2.0)

        received = [snapshot async for snapshot in sub]
        assert received[-1] is pipeline.latest
        assert sub.closed

    @pytest.mark.asyncio
    async def test_snapshot_derived_once_for_all_subscribers(self) -> None:
        pipeline = AggregationPipeline()
        subs = [pipeline.subscribe() for _ in range(4)]
        with patch(
            "rowmonitor.aggregator.derive_snapshot", wraps=processing.derive_snapshot
        ) as spy:
            await asyncio.wait_for(pipeline.run(collect([make_frame()])), timeout=2.0)

        assert spy.call_count == 1
        delivered = [sub.get_nowait() for sub in subs]
        assert all(item is delivered[0] for item in delivered)

    @pytest.mark.asyncio
    async def test_telemetry_failure_ends_stream(self) -> None:
        async def _broken() -> AsyncIterator[RawFrame]:
            yield make_frame()
            raise OSError("serial link lost")

        pipeline = AggregationPipeline()
        sub = pipeline.subscribe()
        await asyncio.wait_for(pipeline.run(_broken()), timeout=2.0)

        assert pipeline.aggregator.frames_processed == 1
        assert sub.get_nowait() is pipeline.latest
        assert sub.closed


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_run_only_once(self) -> None:
        pipeline = AggregationPipeline()
        await pipeline.run(collect([]))
        with pytest.raises(RuntimeError):
            await pipeline.run(collect([]))

    @pytest.mark.asyncio
    async def test_processing_failure_is_counted_and_skipped(self) -> None:
        agg = TelemetryAggregator()
        real_process = agg.process
        calls = {"n": 0}

        def _flaky(event, heart_rate=None):
            calls["n"] += 1
            if calls["n"] == 1:
                raise ValueError("bad frame")
            return real_process(event, heart_rate)

        agg.process = _flaky  # type: ignore[method-assign]
        pipeline = AggregationPipeline(aggregator=agg)
        await asyncio.wait_for(pipeline.run(collect(frame_sequence(3))), timeout=2.0)

        assert pipeline.processing_failure_count == 1
        assert agg.frames_processed == 2

    @pytest.mark.asyncio
    async def test_status_dict(self) -> None:
        pipeline = AggregationPipeline()
        assert pipeline.status_dict()["state"] == "idle"
        pipeline.reset()
        assert pipeline.status_dict()["pending_events"] == 1
        await asyncio.wait_for(pipeline.run(collect(frame_sequence(2))), timeout=2.0)
        status = pipeline.status_dict()
        assert status == {
            "state": "stopped",
            "frames_processed": 2,
            "resets_processed": 1,
            "snapshots_published": 3,
            "subscribers": 0,
            "pending_events": 0,
            "processing_failures": 0,
            "recorder_failures": 0,
        }

    def test_default_heart_rate_monitor_is_off(self) -> None:
        assert not AggregationPipeline().heart_rate_monitor.enabled
