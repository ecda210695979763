"""Outbound event channel consumed by presentation/streaming layers."""

from __future__ import annotations

import json
import time
from dataclasses import dataclass, field
from pathlib import Path
from threading import Lock
from typing import Any, Callable, Dict, Iterable, List, MutableMapping, Protocol

from ..observability.logging import get_logger


logger = get_logger(__name__)

QUEUE_UPDATE = "queue_update"
STEP_PROGRESS = "step_progress"
STEP_FAILURE = "step_failure"
STEP_CONFIRMATION = "step_confirmation"
INTERRUPTION_REQUEST = "interruption_request"

EVENT_KINDS = (
    QUEUE_UPDATE,
    STEP_PROGRESS,
    STEP_FAILURE,
    STEP_CONFIRMATION,
    INTERRUPTION_REQUEST,
)


class EventSink(Protocol):
    """A destination for planning events."""

    def write(self, event: Dict[str, Any]) -> None:
        """Persist or forward an event."""


@dataclass
class EventChannel:
    """Dispatcher that fans tagged events out to the configured sinks.

    Every event is a plain mapping carrying an ``event`` tag, the emission
    ``time`` and the channel ``context`` (typically the agent id), followed by
    the event payload. Sink failures are logged and never reach the caller.
    """

    sinks: Iterable[EventSink] = field(default_factory=tuple)
    context: MutableMapping[str, Any] = field(default_factory=dict)
    clock: Callable[[], float] = field(default=time.time)

    def emit(self, event: str, **payload: Any) -> None:
        if event not in EVENT_KINDS:
            raise ValueError(f"Unknown planning event: {event}")
        if not self.sinks:
            return
        base: Dict[str, Any] = {"event": event, "time": float(self.clock())}
        if self.context:
            base.update(self.context)
        base.update(payload)
        for sink in self.sinks:
            try:
                sink.write(dict(base))
            except Exception as exc:
                logger.warning("event_sink_failed", event_kind=event, error=str(exc))
                continue

    def queue_update(self, state: Dict[str, Any]) -> None:
        self.emit(QUEUE_UPDATE, state=state)

    def step_progress(self, step: Dict[str, Any], percent: int, success: bool) -> None:
        self.emit(STEP_PROGRESS, step=step, percent=percent, success=success)

    def step_failure(self, step: Dict[str, Any], error: str, fallback: Dict[str, Any] | None = None) -> None:
        self.emit(STEP_FAILURE, step=step, error=error, fallback=fallback)

    def step_confirmation(self, step: Dict[str, Any], task_id: str, reason: str | None) -> None:
        self.emit(STEP_CONFIRMATION, step=step, task_id=task_id, reason=reason)

    def interruption_request(self, message: str, **details: Any) -> None:
        self.emit(INTERRUPTION_REQUEST, message=message, **details)


@dataclass
class InMemorySink:
    """Sink that keeps events in-memory for inspection in tests."""

    events: List[Dict[str, Any]] = field(default_factory=list)

    def write(self, event: Dict[str, Any]) -> None:
        self.events.append(dict(event))

    def of_kind(self, kind: str) -> List[Dict[str, Any]]:
        return [event for event in self.events if event.get("event") == kind]


@dataclass
class JsonLinesSink:
    """Append-only JSONL sink for planning events."""

    path: Path
    _lock: Lock = field(default_factory=Lock, init=False)

    def write(self, event: Dict[str, Any]) -> None:
        line = json.dumps(event, sort_keys=True, default=str)
        with self._lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open("a", encoding="utf-8") as fh:
                fh.write(line + "\n")


__all__ = [
    "EVENT_KINDS",
    "EventChannel",
    "EventSink",
    "INTERRUPTION_REQUEST",
    "InMemorySink",
    "JsonLinesSink",
    "QUEUE_UPDATE",
    "STEP_CONFIRMATION",
    "STEP_FAILURE",
    "STEP_PROGRESS",
]
