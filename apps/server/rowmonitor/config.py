from __future__ import annotations

import logging
from copy import deepcopy
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from .heart_rate import VALID_MONITOR_MODES
from .simulator import PROFILE_LIBRARY

SERVER_DIR = Path(__file__).resolve().parents[1]
"""Root of the ``apps/server/`` package tree."""

LOGGER = logging.getLogger(__name__)

VALID_TELEMETRY_SOURCES: tuple[str, ...] = ("websocket", "simulator")
VALID_LOG_LEVELS: tuple[str, ...] = ("critical", "error", "warning", "info", "debug", "trace")

DEFAULT_CONFIG: dict[str, Any] = {
    "server": {"host": "0.0.0.0", "port": 8080, "log_level": "info"},
    "telemetry": {
        "source": "websocket",
        "queue_maxsize": 1024,
        "simulator_hz": 2.0,
        "simulator_profile": "steady",
    },
    "heart_rate": {"mode": "off", "queue_maxsize": 64},
    "recorder": {
        "enabled": True,
        "path": "data/sessions.jsonl",
        "durable": False,
        "flush_every": 20,
    },
    "websocket": {"send_timeout_s": 0.5},
}


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _resolve_config_path(path_text: str, config_path: Path) -> Path:
    path = Path(path_text)
    if path.is_absolute():
        return path
    return config_path.resolve().parent / path


@dataclass(slots=True)
class ServerConfig:
    host: str
    port: int
    log_level: str

    def __post_init__(self) -> None:
        if not isinstance(self.port, int) or not (1 <= self.port <= 65535):
            raise ValueError(f"server.port must be 1-65535, got {self.port!r}")
        if self.log_level not in VALID_LOG_LEVELS:
            raise ValueError(f"server.log_level must be one of {VALID_LOG_LEVELS}")


@dataclass(slots=True)
class TelemetryConfig:
    source: str
    queue_maxsize: int
    simulator_hz: float
    simulator_profile: str

    def __post_init__(self) -> None:
        if self.source not in VALID_TELEMETRY_SOURCES:
            raise ValueError(
                f"telemetry.source must be one of {VALID_TELEMETRY_SOURCES}, got {self.source!r}"
            )
        if self.queue_maxsize < 1:
            LOGGER.warning(
                "telemetry.queue_maxsize=%s is below minimum 1; clamped to 1",
                self.queue_maxsize,
            )
            self.queue_maxsize = 1
        if not self.simulator_hz > 0:
            LOGGER.warning(
                "telemetry.simulator_hz=%s is not positive; using 1.0",
                self.simulator_hz,
            )
            self.simulator_hz = 1.0


@dataclass(slots=True)
class HeartRateConfig:
    mode: str
    queue_maxsize: int

    def __post_init__(self) -> None:
        if self.mode not in VALID_MONITOR_MODES:
            raise ValueError(
                f"heart_rate.mode must be one of {VALID_MONITOR_MODES}, got {self.mode!r}"
            )
        if self.queue_maxsize < 1:
            self.queue_maxsize = 1


@dataclass(slots=True)
class RecorderConfig:
    enabled: bool
    path: Path | None
    durable: bool
    flush_every: int

    def __post_init__(self) -> None:
        if self.flush_every < 1:
            LOGGER.warning(
                "recorder.flush_every=%s is below minimum 1; clamped to 1",
                self.flush_every,
            )
            self.flush_every = 1


@dataclass(slots=True)
class WebSocketConfig:
    send_timeout_s: float

    def __post_init__(self) -> None:
        if not self.send_timeout_s > 0:
            self.send_timeout_s = 0.5


@dataclass(slots=True)
class AppConfig:
    server: ServerConfig
    telemetry: TelemetryConfig
    heart_rate: HeartRateConfig
    recorder: RecorderConfig
    websocket: WebSocketConfig
    config_path: Path


def _read_config_file(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    with path.open("r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ValueError(f"{path} must contain a YAML object at the top level.")
        return data


def documented_default_config() -> dict[str, Any]:
    """Return runtime defaults in the shape documented by config.example.yaml."""
    return deepcopy(DEFAULT_CONFIG)


def load_config(config_path: Path | None = None) -> AppConfig:
    path = config_path or (SERVER_DIR / "config.yaml")
    path = path.resolve()
    merged = _deep_merge(DEFAULT_CONFIG, _read_config_file(path))

    recorder_cfg = merged["recorder"]
    recorder_enabled = bool(recorder_cfg.get("enabled", True))
    recorder_path_raw = recorder_cfg.get("path")
    recorder_path: Path | None = None
    if isinstance(recorder_path_raw, str) and recorder_path_raw.strip():
        recorder_path = _resolve_config_path(recorder_path_raw, path)
    elif recorder_enabled:
        raise ValueError("recorder.path must be configured when recorder.enabled is true.")

    simulator_profile = str(merged["telemetry"].get("simulator_profile", "steady"))
    if simulator_profile not in PROFILE_LIBRARY:
        raise ValueError(
            f"telemetry.simulator_profile must be one of {sorted(PROFILE_LIBRARY)}, "
            f"got {simulator_profile!r}"
        )

    app_config = AppConfig(
        server=ServerConfig(
            host=str(merged["server"]["host"]),
            port=int(merged["server"]["port"]),
            log_level=str(merged["server"].get("log_level", "info")).lower(),
        ),
        telemetry=TelemetryConfig(
            source=str(merged["telemetry"]["source"]),
            queue_maxsize=int(merged["telemetry"].get("queue_maxsize", 1024)),
            simulator_hz=float(merged["telemetry"].get("simulator_hz", 2.0)),
            simulator_profile=simulator_profile,
        ),
        heart_rate=HeartRateConfig(
            mode=str(merged["heart_rate"]["mode"]).lower(),
            queue_maxsize=int(merged["heart_rate"].get("queue_maxsize", 64)),
        ),
        recorder=RecorderConfig(
            enabled=recorder_enabled,
            path=recorder_path,
            durable=bool(recorder_cfg.get("durable", False)),
            flush_every=int(recorder_cfg.get("flush_every", 20)),
        ),
        websocket=WebSocketConfig(
            send_timeout_s=float(merged["websocket"].get("send_timeout_s", 0.5)),
        ),
        config_path=path,
    )
    LOGGER.info(
        "Loaded config=%s telemetry_source=%s heart_rate_mode=%s recorder_path=%s",
        app_config.config_path,
        app_config.telemetry.source,
        app_config.heart_rate.mode,
        app_config.recorder.path,
    )
    return app_config
