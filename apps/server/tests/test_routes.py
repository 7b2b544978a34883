"""Tests for the HTTP and websocket route registration and handlers."""

from __future__ import annotations

import math
from unittest.mock import AsyncMock, MagicMock

import pytest
from builders import make_frame
from fastapi import WebSocketDisconnect

from rowmonitor.api_models import DeviceSettingsResponse, HealthResponse
from rowmonitor.domain_models import RawFrame
from rowmonitor.ingest import QueueSource
from rowmonitor.pipeline import AggregationPipeline
from rowmonitor.routes import create_router
from rowmonitor.session import SessionController


def _endpoint(router, path: str):
    for route in router.routes:
        if getattr(route, "path", "") == path:
            return route.endpoint
    raise AssertionError(f"route {path} not registered")


def _state() -> MagicMock:
    state = MagicMock()
    state.pipeline = AggregationPipeline()
    state.session_controller = SessionController(state.pipeline)
    state.ws_hub.connection_count = 2
    state.ws_hub.add = AsyncMock()
    state.ws_hub.remove = AsyncMock()
    state.recorder_status.return_value = None
    return state


def test_expected_routes_registered() -> None:
    router = create_router(MagicMock())
    paths = {getattr(r, "path", None) for r in router.routes}
    assert {
        "/api/health",
        "/api/session/reset",
        "/api/session/latest",
        "/api/device/settings",
        "/ws",
        "/ws/telemetry",
        "/ws/heart-rate",
    } <= paths


@pytest.mark.asyncio
async def test_health_response_shape() -> None:
    state = _state()
    result = await _endpoint(create_router(state), "/api/health")()
    assert result["status"] == "ok"
    assert result["pipeline"]["state"] == "idle"
    assert result["heart_rate"]["mode"] == "off"
    assert result["websocket_connections"] == 2
    HealthResponse.model_validate(result)


@pytest.mark.asyncio
async def test_reset_endpoint_enqueues_marker() -> None:
    state = _state()
    result = await _endpoint(create_router(state), "/api/session/reset")()
    assert result == {"status": "ok"}
    assert state.pipeline.status_dict()["pending_events"] == 1


@pytest.mark.asyncio
async def test_latest_snapshot_none_before_first_frame() -> None:
    state = _state()
    result = await _endpoint(create_router(state), "/api/session/latest")()
    assert result == {"snapshot": None}


@pytest.mark.asyncio
async def test_latest_snapshot_is_json_safe() -> None:
    state = _state()
    frame = make_frame()
    state.pipeline.aggregator.process(frame)
    state.pipeline.aggregator.process(frame)
    assert math.isnan(state.pipeline.latest.speed)
    result = await _endpoint(create_router(state), "/api/session/latest")()
    assert result["snapshot"]["speed"] is None
    assert result["snapshot"]["distance"] == 1000.0


@pytest.mark.asyncio
async def test_device_settings_endpoint() -> None:
    state = _state()
    state.pipeline.aggregator.process(make_frame(drag_factor=131.0))
    result = await _endpoint(create_router(state), "/api/device/settings")()
    settings = DeviceSettingsResponse.model_validate(result)
    assert settings.dragFactor == 131.0
    assert settings.bleServiceFlag == 2


@pytest.mark.asyncio
async def test_consumer_websocket_registers_and_removes() -> None:
    state = _state()
    ws = AsyncMock()
    ws.receive_text.side_effect = WebSocketDisconnect()
    await _endpoint(create_router(state), "/ws")(ws)
    ws.accept.assert_awaited_once()
    state.ws_hub.add.assert_awaited_once_with(ws, None)
    state.ws_hub.remove.assert_awaited_once_with(ws)


@pytest.mark.asyncio
async def test_telemetry_ingest_offers_valid_frames() -> None:
    state = _state()
    state.telemetry_source = QueueSource("telemetry")
    ws = AsyncMock()
    ws.receive_text.side_effect = [
        '{"distance": 10, "strokeCount": 1, "revTime": 1, "strokeTime": 1}',
        "not json",
        '{"distance": 10}',
        WebSocketDisconnect(),
    ]
    await _endpoint(create_router(state), "/ws/telemetry")(ws)
    assert state.telemetry_source.stats()["accepted"] == 1
    item = await state.telemetry_source.__anext__()
    assert isinstance(item, RawFrame)


@pytest.mark.asyncio
async def test_ingest_rejected_when_source_disabled() -> None:
    state = _state()
    state.heart_rate_source = None
    ws = AsyncMock()
    await _endpoint(create_router(state), "/ws/heart-rate")(ws)
    ws.close.assert_awaited_once()
    assert ws.close.call_args.kwargs["code"] == 1008
    ws.accept.assert_not_awaited()
