"""Tactical step sequences for a single task."""

from __future__ import annotations

import re
from typing import Any, List, Mapping, Optional, Sequence

from ..observability.logging import get_logger
from .oracles import OracleError, StepOracle, call_oracle
from .types import FocusState, Task, TaskStep, new_id


logger = get_logger(__name__)

STEPS_KEY = "steps"
PRECOMPUTED_STEPS_KEY = "precomputed_steps"

_SPLIT_PATTERN = re.compile(r"→|->|\n|(?:^|\s)-\s")


def fallback_step(task: Task) -> List[TaskStep]:
    return [TaskStep(id=f"{task.id}-step-0", title=task.title, order=0)]


def steps_from_payload(raw: Any) -> List[TaskStep]:
    steps: List[TaskStep] = []
    for index, item in enumerate(raw):
        if isinstance(item, str):
            item = {"title": item}
        if not isinstance(item, Mapping):
            raise OracleError(f"Step {index} is not an object")
        title = item.get("title") or item.get("description") or f"Complete task step {index + 1}"
        order = item.get("order")
        steps.append(
            TaskStep(
                id=str(item.get("id") or new_id()),
                title=str(title).strip(),
                order=int(order) if isinstance(order, (int, float)) else index,
                description=item.get("description"),
                requires_confirmation=bool(
                    item.get("requires_confirmation", item.get("requiresConfirmation", False))
                ),
                confirmation_reason=item.get("confirmation_reason", item.get("confirmationReason")),
            )
        )
    steps.sort(key=lambda step: step.order)
    return steps


def load_steps(raw: Any) -> Optional[List[TaskStep]]:
    """Rebuild steps stashed in task metadata, or ``None`` when absent."""

    if not isinstance(raw, list) or not raw:
        return None
    steps: List[TaskStep] = []
    for item in raw:
        if isinstance(item, TaskStep):
            steps.append(item)
        elif isinstance(item, Mapping):
            steps.append(TaskStep.from_dict(item))
    return steps or None


class StepSequenceManager:
    """Produce and track the ordered steps of an active task."""

    def __init__(self, oracle: StepOracle | None = None) -> None:
        self._oracle = oracle

    @property
    def has_oracle(self) -> bool:
        return self._oracle is not None

    async def decompose(self, task: Task, urgency: str, focus: FocusState | None = None) -> List[TaskStep]:
        """Ask the step oracle for a plan.

        An explicit ``steps_required: false`` or an empty list means the task
        runs as a single action (no steps). Any failure yields one fallback
        step titled after the task.
        """

        if self._oracle is None:
            return self.create_steps(task)
        try:
            payload = await call_oracle(self._oracle.decompose_steps, task, urgency, focus)
            if isinstance(payload, Mapping):
                required = payload.get("steps_required", payload.get("stepsRequired"))
                if required is False:
                    return []
                raw_steps = payload.get("steps", [])
            else:
                raw_steps = payload
            if not isinstance(raw_steps, list):
                raise OracleError("steps must be a list")
            return steps_from_payload(raw_steps)
        except OracleError as exc:
            logger.warning("step_oracle_failed", task_id=task.id, error=str(exc))
            return fallback_step(task)

    def create_steps(self, task: Task) -> List[TaskStep]:
        """Derive steps from the task description without an oracle."""

        steps: List[TaskStep] = []
        for text in (part.strip() for part in _SPLIT_PATTERN.split(task.description or "")):
            if not text:
                continue
            steps.append(TaskStep(id=f"{task.id}-step-{len(steps)}", title=text, order=len(steps)))
        return steps or fallback_step(task)

    @staticmethod
    def current_step(steps: Sequence[TaskStep]) -> Optional[TaskStep]:
        for step in steps:
            if not step.completed:
                return step
        return None

    @staticmethod
    def complete_step(steps: Sequence[TaskStep], step_id: str, result: Any = None) -> bool:
        for step in steps:
            if step.id == step_id:
                step.completed = True
                step.result = result
                return True
        return False

    @staticmethod
    def calculate_progress(steps: Sequence[TaskStep]) -> int:
        if not steps:
            return 0
        done = sum(1 for step in steps if step.completed)
        return int(done * 100 / len(steps) + 0.5)

    @staticmethod
    def all_completed(steps: Sequence[TaskStep]) -> bool:
        return all(step.completed for step in steps)


__all__ = [
    "PRECOMPUTED_STEPS_KEY",
    "STEPS_KEY",
    "StepSequenceManager",
    "fallback_step",
    "load_steps",
    "steps_from_payload",
]
