"""Pydantic response models for the rowing monitor HTTP API."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel


class PipelineStatusResponse(BaseModel):
    state: str
    frames_processed: int
    resets_processed: int
    snapshots_published: int
    subscribers: int
    pending_events: int
    processing_failures: int
    recorder_failures: int


class HeartRateStatusResponse(BaseModel):
    mode: str
    connection_state: str
    samples_received: int
    bpm: int | None = None
    contact_detected: bool | None = None
    last_update_age_s: float | None = None
    last_error: str | None = None


class HealthResponse(BaseModel):
    status: str
    pipeline: PipelineStatusResponse
    heart_rate: HeartRateStatusResponse
    websocket_connections: int
    recorder: dict[str, Any] | None = None


class ResetResponse(BaseModel):
    status: str


class DeviceSettingsResponse(BaseModel):
    bleServiceFlag: int
    logLevel: int
    dragFactor: float
    flywheelInertia: float
    magicNumber: float
    autoDragFactor: int


class LatestSnapshotResponse(BaseModel):
    snapshot: dict[str, Any] | None = None
