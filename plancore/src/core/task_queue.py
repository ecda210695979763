"""Pending/active/completed partitions of flattened task records."""

from __future__ import annotations

import time
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional

from ..observability.logging import get_logger
from .types import Task, TaskQueue, UID, new_id


logger = get_logger(__name__)


class TaskQueueManager:
    """Queue bookkeeping with a single-active-task invariant.

    Every mutator tolerates stale ids and reports failure through its return
    value instead of raising.
    """

    def __init__(self, queue: TaskQueue | None = None, *, clock: Callable[[], float] | None = None) -> None:
        self._queue = queue or TaskQueue()
        self._clock = clock or time.time

    @property
    def queue(self) -> TaskQueue:
        return self._queue

    @property
    def active(self) -> Optional[Task]:
        return self._queue.active

    @property
    def pending(self) -> List[Task]:
        return list(self._queue.pending)

    def add_task(self, task: Task) -> Task:
        now = self._clock()
        if not task.id:
            task.id = new_id()
        if not task.created_at:
            task.created_at = now
        if not task.updated_at:
            task.updated_at = task.created_at
        if self.get_task(task.id) is not None:
            logger.debug("task_already_queued", task_id=task.id)
            return task
        task.status = "pending"
        if task.type == "strategic":
            self._queue.strategic.append(task)
        else:
            self._queue.pending.append(task)
        return task

    def get_task(self, task_id: UID) -> Optional[Task]:
        active = self._queue.active
        if active is not None and active.id == task_id:
            return active
        for bucket in (self._queue.pending, self._queue.strategic, self._queue.completed):
            for task in bucket:
                if task.id == task_id:
                    return task
        return None

    def get_pending(self, task_id: UID) -> Optional[Task]:
        for task in self._queue.pending:
            if task.id == task_id:
                return task
        return None

    def start_task(self, task_id: UID) -> Optional[Task]:
        if self._queue.active is not None:
            return None
        task = self.get_pending(task_id)
        if task is None:
            return None
        self._queue.pending.remove(task)
        task.status = "active"
        task.updated_at = self._clock()
        self._queue.active = task
        return task

    def _finish_active(self, status: str) -> Optional[Task]:
        task = self._queue.active
        if task is None:
            return None
        task.status = status
        task.updated_at = self._clock()
        self._queue.active = None
        self._queue.completed.append(task)
        return task

    def complete_task(self, result: Any = None) -> Optional[Task]:
        task = self._finish_active("completed")
        if task is not None:
            task.progress = 100
            task.result = result
        return task

    def fail_task(self, error: str) -> Optional[Task]:
        task = self._finish_active("failed")
        if task is not None:
            task.error = error
        return task

    def cancel_task(self, task_id: UID) -> Optional[Task]:
        active = self._queue.active
        if active is not None and active.id == task_id:
            return self._finish_active("cancelled")
        for bucket in (self._queue.pending, self._queue.strategic):
            for task in bucket:
                if task.id == task_id:
                    bucket.remove(task)
                    task.status = "cancelled"
                    task.updated_at = self._clock()
                    self._queue.completed.append(task)
                    return task
        return None

    def requeue_active(self) -> Optional[Task]:
        """Move the active task back to the front of ``pending``."""

        task = self._queue.active
        if task is None:
            return None
        task.status = "pending"
        task.updated_at = self._clock()
        self._queue.active = None
        self._queue.pending.insert(0, task)
        return task

    def remove_pending(self, task_id: UID) -> Optional[Task]:
        """Drop a pending task without recording it as completed."""

        task = self.get_pending(task_id)
        if task is None:
            return None
        self._queue.pending.remove(task)
        return task

    def promote_strategic(self, task_id: UID) -> Optional[Task]:
        for task in self._queue.strategic:
            if task.id == task_id:
                self._queue.strategic.remove(task)
                task.updated_at = self._clock()
                self._queue.pending.append(task)
                return task
        return None

    def set_pending_tasks(self, ordered: Iterable[Task]) -> None:
        ordered_list = list(ordered)
        current_ids = sorted(task.id for task in self._queue.pending)
        if sorted(task.id for task in ordered_list) != current_ids:
            raise ValueError("set_pending_tasks expects a permutation of the pending tasks")
        self._queue.pending = ordered_list

    def completed_ids(self) -> set[UID]:
        return {task.id for task in self._queue.completed if task.status == "completed"}

    def snapshot(self) -> TaskQueue:
        return TaskQueue(
            pending=[task.copy() for task in self._queue.pending],
            active=self._queue.active.copy() if self._queue.active is not None else None,
            completed=[task.copy() for task in self._queue.completed],
            strategic=[task.copy() for task in self._queue.strategic],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pending": [task.to_dict() for task in self._queue.pending],
            "active": self._queue.active.to_dict() if self._queue.active is not None else None,
            "completed": [task.to_dict() for task in self._queue.completed],
            "strategic": [task.to_dict() for task in self._queue.strategic],
        }

    @classmethod
    def from_dict(
        cls,
        payload: Mapping[str, Any],
        *,
        clock: Callable[[], float] | None = None,
    ) -> "TaskQueueManager":
        active = payload.get("active")
        queue = TaskQueue(
            pending=[Task.from_dict(item) for item in payload.get("pending") or []],
            active=Task.from_dict(active) if isinstance(active, Mapping) else None,
            completed=[Task.from_dict(item) for item in payload.get("completed") or []],
            strategic=[Task.from_dict(item) for item in payload.get("strategic") or []],
        )
        return cls(queue, clock=clock)


__all__ = ["TaskQueueManager"]
