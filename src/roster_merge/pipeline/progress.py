"""Progress events emitted while a run advances."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from roster_merge.models.enums import ImportPhase

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProgressEvent:
    phase: ImportPhase
    percent: int
    """0-100, never decreasing within one run."""

    message: str
    details: dict[str, Any] | None = None


ProgressCallback = Callable[[ProgressEvent], None]


class ProgressReporter:
    """Forwards progress to an optional callback, keeping percent monotonic."""

    def __init__(self, callback: ProgressCallback | None = None) -> None:
        self._callback = callback
        self._last = 0
        self.events: list[ProgressEvent] = []

    def report(
        self,
        phase: ImportPhase,
        percent: float,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> ProgressEvent:
        clamped = max(self._last, min(100, int(percent)))
        self._last = clamped
        event = ProgressEvent(phase=phase, percent=clamped, message=message, details=details)
        self.events.append(event)
        logger.debug("[%3d%%] %s: %s", clamped, phase.value, message)
        if self._callback is not None:
            self._callback(event)
        return event
