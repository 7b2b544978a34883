from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any

from fastapi import WebSocket

from .broadcast import Subscription
from .json_utils import encode_payload

LOGGER = logging.getLogger(__name__)

_SEND_TIMEOUT_S: float = 0.5
"""Per-connection send timeout; connections exceeding this are dropped."""

_SEND_ERROR_LOG_INTERVAL_S: float = 10.0
"""Minimum interval between logged send-error warnings to avoid log spam."""

_ERROR_PAYLOAD: str = json.dumps(
    {"error": "payload_encode_failed"},
    separators=(",", ":"),
)


@dataclass(slots=True)
class WSConnection:
    websocket: WebSocket
    sent: int = 0
    last_payload: Any = None


class WebSocketHub:
    """Fans published snapshots out to connected websocket consumers.

    Each snapshot is encoded once and the same text is sent to every
    connection.
    """

    def __init__(self, send_timeout_s: float = _SEND_TIMEOUT_S):
        self._connections: dict[int, WSConnection] = {}
        self._lock = asyncio.Lock()
        self._send_timeout_s = send_timeout_s
        self._last_send_error_log_ts = 0.0
        self._send_error_log_interval_s = _SEND_ERROR_LOG_INTERVAL_S

    async def add(self, websocket: WebSocket, latest: Any | None = None) -> None:
        """Register *websocket*; *latest* is sent to it before any later snapshot."""
        conn = WSConnection(websocket=websocket)
        async with self._lock:
            self._connections[id(websocket)] = conn
            # Sent under the lock so a concurrent broadcast cannot overtake it.
            if latest is not None and not await self._send(conn, latest, self._encode(latest)):
                self._connections.pop(id(websocket), None)

    async def remove(self, websocket: WebSocket) -> None:
        async with self._lock:
            self._connections.pop(id(websocket), None)

    async def _snapshot(self) -> list[WSConnection]:
        async with self._lock:
            return list(self._connections.values())

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    def _encode(self, payload: Any) -> str:
        try:
            text, had_non_finite = encode_payload(payload)
        except Exception:
            LOGGER.error("WebSocket payload encoding failed; sending error payload.", exc_info=True)
            return _ERROR_PAYLOAD
        if had_non_finite:
            LOGGER.debug("Snapshot contained NaN/Inf values; replaced with null.")
        return text

    async def _send(self, conn: WSConnection, payload: Any, text: str) -> bool:
        try:
            await asyncio.wait_for(conn.websocket.send_text(text), timeout=self._send_timeout_s)
        except Exception:
            now = asyncio.get_running_loop().time()
            if (now - self._last_send_error_log_ts) >= self._send_error_log_interval_s:
                self._last_send_error_log_ts = now
                LOGGER.warning(
                    "WebSocket send failed; connection will be removed.",
                    exc_info=True,
                )
            return False
        conn.sent += 1
        conn.last_payload = payload
        return True

    async def broadcast(self, payload: Any) -> None:
        # A connection that already received this object on connect is skipped.
        conns = [conn for conn in await self._snapshot() if conn.last_payload is not payload]
        if not conns:
            return
        text = self._encode(payload)
        results = await asyncio.gather(*(self._send(conn, payload, text) for conn in conns))
        for conn, ok in zip(conns, results, strict=True):
            if not ok:
                await self.remove(conn.websocket)

    async def run(self, subscription: Subscription[Any]) -> None:
        """Forward every snapshot from *subscription* until the stream ends."""
        async for snapshot in subscription:
            try:
                await self.broadcast(snapshot)
            except Exception:
                LOGGER.warning("WebSocket broadcast failed; will continue.", exc_info=True)
        LOGGER.info("Snapshot stream ended; websocket fan-out stopped")
