"""Structured stage transition events."""

import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PipelineEvent:
    """One run or stage transition.

    Attributes:
        event: "run.start", "run.end", "stage.start", "stage.phase" or "stage.end".
        run_number: Run the event belongs to.
        stage: Stage name, for stage events.
        status: Run or stage status value, when known.
        phase: Stage phase value, for phase events.
        attempt: Attempt number, for stage events.
        duration_seconds: Elapsed time, for end events.
        error: Redacted error message, for failures.
    """

    event: str
    run_number: int
    stage: Optional[str] = None
    status: Optional[str] = None
    phase: Optional[str] = None
    attempt: Optional[int] = None
    duration_seconds: Optional[float] = None
    error: Optional[str] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, Any]:
        data = {
            "event": self.event,
            "run_number": self.run_number,
            "timestamp": self.timestamp.isoformat(),
        }
        for key in ("stage", "status", "phase", "attempt", "duration_seconds", "error"):
            value = getattr(self, key)
            if value is not None:
                data[key] = value
        return data


class EventSink(ABC):
    """Destination for pipeline events."""

    @abstractmethod
    def emit(self, event: PipelineEvent) -> None:
        pass


class LoggingEventSink(EventSink):
    """Emits each event as a log record with the event fields as extra.

    With LOG_FORMAT=json the fields become top-level keys of the JSON
    line, ready for a log aggregation collector.
    """

    def __init__(self, event_logger: Optional[logging.Logger] = None):
        self._logger = event_logger or logger

    def emit(self, event: PipelineEvent) -> None:
        level = logging.WARNING if event.error else logging.INFO
        label = f"{event.event} run={event.run_number}"
        if event.stage:
            label += f" stage={event.stage}"
        if event.phase:
            label += f" phase={event.phase}"
        if event.status:
            label += f" status={event.status}"
        self._logger.log(level, label, extra={"event": event.to_dict()})


class RecordingEventSink(EventSink):
    """Keeps events in memory, e.g. for tests or run reports."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.events: list[PipelineEvent] = []

    def emit(self, event: PipelineEvent) -> None:
        with self._lock:
            self.events.append(event)

    def of_type(self, name: str) -> list[PipelineEvent]:
        with self._lock:
            return [e for e in self.events if e.event == name]
