"""Time gating for ``scheduled`` tasks."""

from __future__ import annotations

import time
from typing import Callable, Iterable, List, Optional, Tuple

from .types import Task


class TemporalScheduler:
    """Decide which scheduled tasks have reached their trigger time.

    Only tasks of type ``scheduled`` are gated; everything else is always
    eligible. A scheduled task without ``scheduled_for`` is treated as due.
    The scheduler only filters and never waits.
    """

    def __init__(self, *, clock: Callable[[], float] | None = None) -> None:
        self._clock = clock or time.time

    def now(self) -> float:
        return float(self._clock())

    def is_due(self, task: Task, now: Optional[float] = None) -> bool:
        if task.type != "scheduled":
            return True
        if task.scheduled_for is None:
            return True
        current = self.now() if now is None else now
        return float(task.scheduled_for) <= current

    def filter_due_tasks(self, pending: Iterable[Task], now: Optional[float] = None) -> List[Task]:
        current = self.now() if now is None else now
        return [task for task in pending if task.type == "scheduled" and self.is_due(task, current)]

    def split(self, pending: Iterable[Task], now: Optional[float] = None) -> Tuple[List[Task], List[Task]]:
        """Return ``(eligible, waiting)`` preserving the input order."""

        current = self.now() if now is None else now
        eligible: List[Task] = []
        waiting: List[Task] = []
        for task in pending:
            (eligible if self.is_due(task, current) else waiting).append(task)
        return eligible, waiting

    def next_due_at(self, pending: Iterable[Task], now: Optional[float] = None) -> Optional[float]:
        current = self.now() if now is None else now
        upcoming = [
            float(task.scheduled_for)
            for task in pending
            if task.type == "scheduled" and task.scheduled_for is not None and float(task.scheduled_for) > current
        ]
        return min(upcoming) if upcoming else None


__all__ = ["TemporalScheduler"]
