"""WebSocket endpoints: snapshot stream for consumers, ingest for sources."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from ..domain_models import HeartRateSample, RawFrame
from ..ingest import decode_message

if TYPE_CHECKING:
    from ..app import RuntimeState

LOGGER = logging.getLogger(__name__)


def create_websocket_routes(state: RuntimeState) -> APIRouter:
    router = APIRouter()

    @router.websocket("/ws")
    async def ws_endpoint(ws: WebSocket) -> None:
        await ws.accept()
        await state.ws_hub.add(ws, state.pipeline.latest)
        try:
            while True:
                # Consumers do not send commands; reading only detects disconnects.
                await ws.receive_text()
        except WebSocketDisconnect:
            LOGGER.debug("WebSocket consumer disconnected")
        except Exception:
            LOGGER.warning("WebSocket consumer handler error", exc_info=True)
        finally:
            await state.ws_hub.remove(ws)

    @router.websocket("/ws/telemetry")
    async def telemetry_ingest(ws: WebSocket) -> None:
        if state.telemetry_source is None:
            await ws.close(code=1008, reason="telemetry ingest disabled")
            return
        await ws.accept()
        try:
            while True:
                frame = decode_message(await ws.receive_text(), RawFrame.from_dict)
                if frame is not None:
                    state.telemetry_source.offer(frame)
        except WebSocketDisconnect:
            LOGGER.info("Telemetry ingest connection closed")
        except Exception:
            LOGGER.warning("Telemetry ingest handler error", exc_info=True)

    @router.websocket("/ws/heart-rate")
    async def heart_rate_ingest(ws: WebSocket) -> None:
        if state.heart_rate_source is None:
            await ws.close(code=1008, reason="heart-rate ingest disabled")
            return
        await ws.accept()
        try:
            while True:
                sample = decode_message(await ws.receive_text(), HeartRateSample.from_dict)
                if sample is not None:
                    state.heart_rate_source.offer(sample)
        except WebSocketDisconnect:
            LOGGER.info("Heart-rate ingest connection closed")
        except Exception:
            LOGGER.warning("Heart-rate ingest handler error", exc_info=True)

    return router
