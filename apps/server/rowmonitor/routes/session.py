"""Session control and one-shot read endpoints."""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import APIRouter

from ..api_models import DeviceSettingsResponse, LatestSnapshotResponse, ResetResponse
from ..json_utils import sanitize_value

if TYPE_CHECKING:
    from ..app import RuntimeState


def create_session_routes(state: RuntimeState) -> APIRouter:
    router = APIRouter()

    @router.post("/api/session/reset", response_model=ResetResponse)
    async def reset_session() -> ResetResponse:
        state.session_controller.reset()
        return {"status": "ok"}

    @router.get("/api/session/latest", response_model=LatestSnapshotResponse)
    async def latest_snapshot() -> LatestSnapshotResponse:
        latest = state.pipeline.latest
        return {"snapshot": sanitize_value(latest) if latest is not None else None}

    @router.get("/api/device/settings", response_model=DeviceSettingsResponse)
    async def device_settings() -> DeviceSettingsResponse:
        return state.pipeline.aggregator.device_settings()

    return router
