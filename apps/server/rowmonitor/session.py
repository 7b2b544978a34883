from __future__ import annotations

import logging
from typing import Protocol

LOGGER = logging.getLogger(__name__)


class Resettable(Protocol):
    def reset(self) -> None: ...


class SessionController:
    """Single entry point for user-initiated session resets.

    Holds no state of its own: every reset is forwarded to the pipeline,
    which rebases in order with the telemetry already queued.
    """

    def __init__(self, pipeline: Resettable):
        self._pipeline = pipeline

    def reset(self) -> None:
        LOGGER.debug("Forwarding session reset to pipeline")
        self._pipeline.reset()
