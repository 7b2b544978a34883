"""Health check endpoint."""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import APIRouter

from ..api_models import HealthResponse

if TYPE_CHECKING:
    from ..app import RuntimeState


def create_health_routes(state: RuntimeState) -> APIRouter:
    router = APIRouter()

    @router.get("/api/health", response_model=HealthResponse)
    async def health() -> HealthResponse:
        pipeline_status = state.pipeline.status_dict()
        return {
            "status": "ok" if pipeline_status["state"] != "stopped" else "stopped",
            "pipeline": pipeline_status,
            "heart_rate": state.pipeline.heart_rate_monitor.status_dict(),
            "websocket_connections": state.ws_hub.connection_count,
            "recorder": state.recorder_status(),
        }

    return router
