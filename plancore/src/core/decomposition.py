"""Oracle-backed decomposition of goals into sub-goals and tasks.

The decomposition oracle only proposes structure. Everything it returns is
validated here before a node reaches the tree: titles are required, literals
are checked, priorities clamped and missing fields defaulted. Each goal keeps
the context it was decomposed under (urgency plus a hash of the memories that
informed it) so that stale plans can be detected and redone.
"""

from __future__ import annotations

import hashlib
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional

from ..observability.logging import get_logger
from .collaborators import MemoryCollaborator, memory_ids, resolve
from .config import PlanningConfig
from .oracles import DecompositionOracle, OracleError, call_oracle
from .steps import PRECOMPUTED_STEPS_KEY, StepSequenceManager
from .tree import TreeManager
from .types import (
    URGENCY_LEVELS,
    FocusState,
    GoalTaskNode,
    Task,
    UID,
    clamp,
    new_id,
    normalise_urgency,
)


logger = get_logger(__name__)

CONTEXT_KEY = "decomposition_context"


@dataclass
class DecompositionResult:
    goal_id: UID
    created: List[GoalTaskNode] = field(default_factory=list)
    cancelled: List[GoalTaskNode] = field(default_factory=list)
    memory_ids: List[str] = field(default_factory=list)

    @property
    def tasks(self) -> List[GoalTaskNode]:
        return [node for node in self.created if node.type == "task"]

    @property
    def goals(self) -> List[GoalTaskNode]:
        return [node for node in self.created if node.type == "goal"]


def context_hash(goal: GoalTaskNode, urgency: str, ids: List[str]) -> str:
    joined = "|".join([goal.title, goal.description or "", urgency, ",".join(ids)])
    return hashlib.sha256(joined.encode("utf-8")).hexdigest()


class GoalDecomposer:
    def __init__(
        self,
        trees: TreeManager,
        *,
        oracle: DecompositionOracle | None = None,
        steps: StepSequenceManager | None = None,
        memory: MemoryCollaborator | None = None,
        config: PlanningConfig | None = None,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self._trees = trees
        self._oracle = oracle
        self._steps = steps
        self._memory = memory
        self._config = config or PlanningConfig()
        self._clock = clock or time.time

    def set_memory(self, memory: MemoryCollaborator | None) -> None:
        self._memory = memory

    @staticmethod
    def should_decompose(node: Optional[GoalTaskNode]) -> bool:
        return node is not None and node.type == "goal" and node.goal_status == "active" and not node.children

    async def _relevant_memories(self, goal: GoalTaskNode) -> List[Mapping[str, Any]]:
        if self._memory is None:
            return []
        try:
            result = await resolve(
                self._memory.get_relevant_memories(
                    goal.title,
                    types=("semantic", "episodic"),
                    limit=self._config.decomposition_memory_limit,
                )
            )
        except Exception as exc:
            logger.warning("memory_lookup_failed", goal_id=goal.id, error=str(exc))
            return []
        if isinstance(result, Mapping):
            result = result.get("memories", [])
        return [item for item in result or [] if isinstance(item, Mapping)]

    async def current_context_hash(self, goal: GoalTaskNode, urgency: str) -> str:
        memories = await self._relevant_memories(goal)
        return context_hash(goal, urgency, memory_ids(memories))

    @staticmethod
    def stored_context(goal: GoalTaskNode) -> Optional[Dict[str, Any]]:
        stored = goal.metadata.get(CONTEXT_KEY)
        return stored if isinstance(stored, dict) else None

    async def has_context_changed(self, goal: GoalTaskNode, urgency: str) -> bool:
        stored = self.stored_context(goal)
        if stored is None:
            return True
        if stored.get("urgency") != urgency:
            return True
        return stored.get("memory_hash") != await self.current_context_hash(goal, urgency)

    async def should_redecompose(self, goal: GoalTaskNode, urgency: str) -> bool:
        if goal.type != "goal" or goal.goal_status != "active":
            return False
        if not goal.children:
            return True
        return await self.has_context_changed(goal, urgency)

    async def decompose(
        self,
        goal: GoalTaskNode,
        urgency: str,
        focus: FocusState | None = None,
    ) -> DecompositionResult:
        """Ask the oracle for children of ``goal`` and insert the valid ones.

        Oracle failure yields an empty result and leaves the tree untouched.
        """

        result = DecompositionResult(goal_id=goal.id)
        if goal.type != "goal" or self._oracle is None:
            return result
        urgency = normalise_urgency(urgency)
        memories = await self._relevant_memories(goal)
        result.memory_ids = memory_ids(memories)
        try:
            payload = await call_oracle(self._oracle.decompose, goal, urgency, focus, memories=memories)
            if isinstance(payload, Mapping):
                proposed = payload.get("children", [])
            else:
                proposed = payload
            if not isinstance(proposed, list):
                raise OracleError("children must be a list")
        except OracleError as exc:
            logger.warning("decomposition_failed", goal_id=goal.id, error=str(exc))
            return result

        await self._insert_children(goal, proposed, urgency, focus, result)
        goal.metadata[CONTEXT_KEY] = {
            "urgency": urgency,
            "memory_hash": context_hash(goal, urgency, result.memory_ids),
            "timestamp": self._clock(),
        }
        goal.updated_at = self._clock()
        logger.info("goal_decomposed", goal_id=goal.id, created=len(result.created))
        return result

    async def redecompose(
        self,
        goal: GoalTaskNode,
        urgency: str,
        focus: FocusState | None = None,
    ) -> Optional[DecompositionResult]:
        """Replace an out-of-date plan; ``None`` when the current one still holds."""

        if not await self.should_redecompose(goal, urgency):
            return None
        cancelled: List[GoalTaskNode] = []
        for child in self._trees.get_children(goal.id):
            cancelled.extend(self._trees.cancel_node(child.id, cascade=False))
        result = await self.decompose(goal, urgency, focus)
        result.cancelled = cancelled
        return result

    async def _insert_children(
        self,
        parent: GoalTaskNode,
        proposed: List[Any],
        urgency: str,
        focus: FocusState | None,
        result: DecompositionResult,
    ) -> None:
        now = self._clock()
        for index, raw in enumerate(proposed):
            node = self._validate_child(raw, index, urgency, parent.source, now)
            if node is None:
                continue
            if node.type == "task":
                node = await self._pre_validate_task(node, urgency, focus, now)
            self._trees.add_node(node, parent.id)
            result.created.append(node)
            nested = raw.get("children") if isinstance(raw, Mapping) else None
            if node.type == "goal" and isinstance(nested, list) and nested:
                await self._insert_children(node, nested, urgency, focus, result)

    def _validate_child(
        self,
        raw: Any,
        index: int,
        urgency: str,
        source: str,
        now: float,
    ) -> Optional[GoalTaskNode]:
        if not isinstance(raw, Mapping):
            logger.warning("decomposition_child_invalid", index=index, reason="not an object")
            return None
        title = str(raw.get("title") or "").strip()
        if not title:
            logger.warning("decomposition_child_invalid", index=index, reason="missing title")
            return None
        node_type = raw.get("type", "task")
        if node_type not in ("goal", "task"):
            node_type = "task"
        order = raw.get("order")
        order = int(order) if isinstance(order, (int, float)) else index
        description = str(raw.get("description") or "")
        if node_type == "goal" or raw.get("children"):
            return GoalTaskNode.goal(title, description=description, source=source, order=order, now=now)
        child_urgency = raw.get("urgency")
        if child_urgency not in URGENCY_LEVELS:
            child_urgency = urgency
        priority = raw.get("priority")
        return GoalTaskNode.task(
            title,
            description=description,
            urgency=child_urgency,
            priority=0.5 if priority is None else clamp(priority),
            source=source,
            order=order,
            now=now,
        )

    async def _pre_validate_task(
        self,
        node: GoalTaskNode,
        urgency: str,
        focus: FocusState | None,
        now: float,
    ) -> GoalTaskNode:
        # Tasks too large for one tactical pass become sub-goals.
        if self._steps is None or not self._steps.has_oracle:
            return node
        probe = Task(id=node.id, title=node.title, description=node.description, urgency=node.urgency or urgency)
        steps = await self._steps.decompose(probe, probe.urgency, focus)
        if len(steps) >= self._config.complex_task_step_threshold:
            logger.info("task_promoted_to_goal", title=node.title, steps=len(steps))
            return GoalTaskNode.goal(
                node.title,
                description=node.description,
                source=node.source,
                order=node.order,
                now=now,
                ident=new_id(),
            )
        if steps:
            node.metadata[PRECOMPUTED_STEPS_KEY] = [step.to_dict() for step in steps]
        return node


__all__ = ["CONTEXT_KEY", "DecompositionResult", "GoalDecomposer", "context_hash"]
