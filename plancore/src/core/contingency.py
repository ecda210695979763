"""Pre-registered fallback plans consumed when a task fails."""

from __future__ import annotations

from collections import OrderedDict
from typing import Dict, List, Optional

from ..observability.logging import get_logger
from .types import FallbackPlan, Task, UID, clamp, new_id


logger = get_logger(__name__)

FALLBACK_OF_KEY = "fallback_of"
FALLBACK_DEPTH_KEY = "fallback_depth"


def fallback_depth(task: Task) -> int:
    try:
        return max(0, int(task.metadata.get(FALLBACK_DEPTH_KEY, 0)))
    except (TypeError, ValueError):
        return 0


class FallbackStrategyManager:
    """Register and hand out fallback plans, one per failure event.

    Plans are consumed in registration order. A task that is itself a
    fallback ``max_depth`` levels deep never yields another plan.
    """

    def __init__(self, *, max_depth: int = 2) -> None:
        self._max_depth = max_depth
        self._plans: Dict[UID, "OrderedDict[UID, FallbackPlan]"] = {}

    @property
    def max_depth(self) -> int:
        return self._max_depth

    def register_fallback(self, task_id: UID, description: str, priority: float = 0.5) -> UID:
        if not description or not description.strip():
            raise ValueError("fallback description must not be empty")
        plan = FallbackPlan(id=new_id(), task_id=task_id, description=description.strip(), priority=clamp(priority))
        self._plans.setdefault(task_id, OrderedDict())[plan.id] = plan
        logger.debug("fallback_registered", task_id=task_id, fallback_id=plan.id)
        return plan.id

    def get_fallbacks(self, task_id: UID) -> List[FallbackPlan]:
        return list(self._plans.get(task_id, {}).values())

    def has_fallback(self, task: Task) -> bool:
        return bool(self._plans.get(task.id)) and fallback_depth(task) < self._max_depth

    def handle_failure(self, task: Task, error: str) -> Optional[FallbackPlan]:
        plans = self._plans.get(task.id)
        if not plans:
            return None
        depth = fallback_depth(task)
        if depth >= self._max_depth:
            logger.info("fallback_depth_exhausted", task_id=task.id, depth=depth, error=error)
            return None
        _, plan = plans.popitem(last=False)
        if not plans:
            del self._plans[task.id]
        logger.info("fallback_selected", task_id=task.id, fallback_id=plan.id, error=error)
        return plan

    def build_task(self, failed: Task, plan: FallbackPlan, *, now: float) -> Task:
        """Turn ``plan`` into a self-generated task that replaces ``failed``."""

        metadata = {
            FALLBACK_OF_KEY: failed.id,
            FALLBACK_DEPTH_KEY: fallback_depth(failed) + 1,
            "fallback_id": plan.id,
        }
        return Task(
            id=new_id(),
            title=f"Fallback: {failed.title}",
            description=plan.description,
            type="immediate",
            source="self-generated",
            priority=plan.priority,
            urgency=failed.urgency,
            created_at=now,
            updated_at=now,
            metadata=metadata,
            parent_id=failed.parent_id,
        )

    def clear(self, task_id: Optional[UID] = None) -> None:
        if task_id is None:
            self._plans.clear()
        else:
            self._plans.pop(task_id, None)

    def to_dict(self) -> Dict[str, List[Dict[str, object]]]:
        return {
            task_id: [
                {"id": plan.id, "task_id": plan.task_id, "description": plan.description, "priority": plan.priority}
                for plan in plans.values()
            ]
            for task_id, plans in self._plans.items()
        }

    def load(self, payload: Dict[str, List[Dict[str, object]]]) -> None:
        self._plans.clear()
        for task_id, plans in (payload or {}).items():
            bucket: "OrderedDict[UID, FallbackPlan]" = OrderedDict()
            for raw in plans:
                plan = FallbackPlan(
                    id=str(raw.get("id") or new_id()),
                    task_id=str(task_id),
                    description=str(raw.get("description", "")),
                    priority=clamp(raw.get("priority", 0.5)),
                )
                bucket[plan.id] = plan
            if bucket:
                self._plans[str(task_id)] = bucket


__all__ = ["FALLBACK_DEPTH_KEY", "FALLBACK_OF_KEY", "FallbackStrategyManager", "fallback_depth"]
