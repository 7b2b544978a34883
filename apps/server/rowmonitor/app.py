"""Runtime orchestration for ingestion -> aggregation -> recorder/WS/API.

Boundary note for maintainers:
- Keep this module focused on orchestration, not metric math.
- Derivation belongs in `processing.py`, state transitions in `aggregator.py`.
- API schemas belong in `api_models.py`.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
from collections.abc import AsyncIterable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import uvicorn
from fastapi import FastAPI

from .aggregator import TelemetryAggregator
from .config import AppConfig, load_config
from .domain_models import HeartRateSample, RawFrame
from .heart_rate import HeartRateMonitor
from .ingest import QueueSource
from .pipeline import AggregationPipeline
from .recorder import NullRecorder, Recorder, SessionRecorder
from .routes import create_router
from .session import SessionController
from .simulator import PROFILE_LIBRARY, RowingSimulator, simulate_heart_rate, simulate_telemetry
from .ws_hub import WebSocketHub

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class RuntimeState:
    config: AppConfig
    pipeline: AggregationPipeline
    session_controller: SessionController
    ws_hub: WebSocketHub
    recorder: Recorder
    telemetry_source: QueueSource[RawFrame] | None = None
    heart_rate_source: QueueSource[HeartRateSample] | None = None
    simulator: RowingSimulator | None = None
    tasks: list[asyncio.Task] = field(default_factory=list)

    def recorder_status(self) -> dict[str, Any] | None:
        if isinstance(self.recorder, SessionRecorder):
            return self.recorder.status()
        return None

    def telemetry_stream(self) -> AsyncIterable[RawFrame]:
        if self.simulator is not None:
            return simulate_telemetry(self.simulator, self.config.telemetry.simulator_hz)
        if self.telemetry_source is None:
            raise RuntimeError("No telemetry source configured")
        return self.telemetry_source

    def heart_rate_stream(self) -> AsyncIterable[HeartRateSample] | None:
        if not self.pipeline.heart_rate_monitor.enabled:
            return None
        if self.simulator is not None:
            return simulate_heart_rate(self.simulator)
        return self.heart_rate_source

    async def start(self) -> None:
        # Subscribe before the pipeline runs so the hub sees the first snapshot.
        subscription = self.pipeline.subscribe()
        self.tasks = [
            asyncio.create_task(self.ws_hub.run(subscription), name="ws-fanout"),
            asyncio.create_task(
                self.pipeline.run(self.telemetry_stream(), self.heart_rate_stream()),
                name="aggregation-pipeline",
            ),
        ]

    async def stop(self) -> None:
        for source in (self.telemetry_source, self.heart_rate_source):
            if source is not None:
                source.close()
        for task in self.tasks:
            task.cancel()
        await asyncio.gather(*self.tasks, return_exceptions=True)
        self.tasks.clear()
        if isinstance(self.recorder, SessionRecorder):
            try:
                self.recorder.close()
            except Exception:
                LOGGER.warning("Error closing session recorder", exc_info=True)


def build_runtime(config: AppConfig) -> RuntimeState:
    recorder: Recorder
    if config.recorder.enabled:
        recorder = SessionRecorder(
            config.recorder.path,
            durable=config.recorder.durable,
            flush_every=config.recorder.flush_every,
        )
    else:
        recorder = NullRecorder()

    heart_rate_monitor = HeartRateMonitor(config.heart_rate.mode)
    pipeline = AggregationPipeline(
        aggregator=TelemetryAggregator(recorder=recorder),
        heart_rate_monitor=heart_rate_monitor,
    )
    runtime = RuntimeState(
        config=config,
        pipeline=pipeline,
        session_controller=SessionController(pipeline),
        ws_hub=WebSocketHub(send_timeout_s=config.websocket.send_timeout_s),
        recorder=recorder,
    )
    if config.telemetry.source == "simulator":
        runtime.simulator = RowingSimulator(PROFILE_LIBRARY[config.telemetry.simulator_profile])
    else:
        runtime.telemetry_source = QueueSource("telemetry", config.telemetry.queue_maxsize)
        if heart_rate_monitor.enabled:
            runtime.heart_rate_source = QueueSource("heart-rate", config.heart_rate.queue_maxsize)
    return runtime


def create_app(config_path: Path | None = None) -> FastAPI:
    config = load_config(config_path)
    runtime = build_runtime(config)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await runtime.start()
        try:
            yield
        finally:
            await runtime.stop()

    app = FastAPI(title="Rowing Monitor", lifespan=lifespan)
    app.state.runtime = runtime
    app.include_router(create_router(runtime))
    return app


def main() -> None:
    parser = argparse.ArgumentParser(description="Run the rowing monitor aggregation server")
    parser.add_argument("--config", type=Path, default=None, help="Path to config YAML")
    args = parser.parse_args()

    runtime_app = create_app(config_path=args.config)
    runtime: RuntimeState = runtime_app.state.runtime
    uvicorn.run(
        runtime_app,
        host=runtime.config.server.host,
        port=runtime.config.server.port,
        log_level=runtime.config.server.log_level,
    )


if __name__ == "__main__":
    main()
