"""Readiness and ordering of leaf tasks in the goal/task tree."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional

from .tree import TreeManager
from .types import URGENCY_RANK, GoalTaskNode, UID


@dataclass
class ExecutionOrder:
    path: List[UID] = field(default_factory=list)
    ready: List[GoalTaskNode] = field(default_factory=list)
    blocked: List[GoalTaskNode] = field(default_factory=list)


def _ready_sort_key(node: GoalTaskNode) -> tuple[int, float]:
    return (-URGENCY_RANK.get(node.urgency or "low", 1), -(node.priority or 0.0))


class ExecutionOrderCalculator:
    """Split leaf tasks into ready and blocked sets.

    A leaf task is ready when it is still ``pending`` and every ancestor has
    completed. Ready tasks are ordered by urgency rank and then by priority.
    """

    def __init__(self, trees: TreeManager) -> None:
        self._trees = trees

    def get_execution_order(self) -> ExecutionOrder:
        ready: List[GoalTaskNode] = []
        blocked: List[GoalTaskNode] = []
        for leaf in self._trees.get_leaf_tasks():
            if leaf.task_status == "pending" and self._ancestors_completed(leaf):
                ready.append(leaf)
            else:
                blocked.append(leaf)
        ready.sort(key=_ready_sort_key)
        return ExecutionOrder(path=[node.id for node in ready], ready=ready, blocked=blocked)

    def _ancestors_completed(self, node: GoalTaskNode) -> bool:
        return all(ancestor.is_completed() for ancestor in self._trees.get_ancestors(node.id))

    def get_next_task(self) -> Optional[GoalTaskNode]:
        ready = self.get_execution_order().ready
        return ready[0] if ready else None

    def get_ready_tasks(self) -> List[GoalTaskNode]:
        return self.get_execution_order().ready

    def get_blocked_tasks(self) -> List[GoalTaskNode]:
        return self.get_execution_order().blocked

    def get_execution_path(self) -> List[UID]:
        return self.get_execution_order().path

    def is_ready(self, node_id: UID) -> bool:
        return node_id in set(self.get_execution_path())


__all__ = ["ExecutionOrder", "ExecutionOrderCalculator"]
