"""Reactive task switching and the interruption negotiation protocol."""

from __future__ import annotations

import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable, Deque, Dict, List, Optional

from ..observability.logging import get_logger
from .oracles import (
    ConfirmationMessageOracle,
    ContinuityOracle,
    InterruptionDecision,
    InterruptionResponseInterpreter,
    OracleError,
    call_oracle,
    default_assessment,
    default_confirmation_text,
    keyword_interpretation,
    parse_assessment,
    parse_decision,
    payload_as_text,
)
from .types import FocusState, PendingInterruption, SwitchAssessment, Task, UID


logger = get_logger(__name__)

IDLE = "IDLE"
RUNNING = "RUNNING"
PENDING_CONFIRMATION = "PENDING_CONFIRMATION"

STAY = "stay"
PREEMPT = "preempt"
ASSESS = "assess"


@dataclass
class TaskContext:
    task_id: UID
    saved_at: float
    context: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"task_id": self.task_id, "saved_at": self.saved_at, "context": dict(self.context)}

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "TaskContext":
        return cls(
            task_id=str(payload.get("task_id", "")),
            saved_at=float(payload.get("saved_at") or 0.0),
            context=dict(payload.get("context") or {}),
        )


def interruption_state(active: Optional[Task], pending: Optional[PendingInterruption]) -> str:
    if active is None:
        return IDLE
    if pending is not None:
        return PENDING_CONFIRMATION
    return RUNNING


class TaskSwitcher:
    """Decides between continuing, preempting and asking the user.

    The switcher keeps the per-task context store used to resume preempted
    work and a bounded history of every switch. Oracle failures never escape:
    continuity falls back to ``should_switch=True`` at the default strength,
    wording falls back to a template and reply interpretation falls back to
    keyword matching.
    """

    def __init__(
        self,
        *,
        continuity: ContinuityOracle | None = None,
        messages: ConfirmationMessageOracle | None = None,
        interpreter: InterruptionResponseInterpreter | None = None,
        history_limit: int = 100,
        default_strength: float = 0.5,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self._continuity = continuity
        self._messages = messages
        self._interpreter = interpreter
        self._default_strength = default_strength
        self._clock = clock or time.time
        self._contexts: Dict[UID, TaskContext] = {}
        self._history: Deque[Dict[str, Any]] = deque(maxlen=history_limit)

    # ------------------------------------------------------------------
    # Decisions
    # ------------------------------------------------------------------

    @staticmethod
    def classify(active: Task, candidate: Task) -> str:
        if candidate.id == active.id:
            return STAY
        if candidate.urgency == "critical":
            return PREEMPT
        return ASSESS

    async def assess(self, current: Task, candidate: Task, focus: FocusState | None) -> SwitchAssessment:
        if self._continuity is None:
            return default_assessment(self._default_strength, "no continuity oracle configured")
        try:
            payload = await call_oracle(self._continuity.assess_switch, current, candidate, focus)
            return parse_assessment(payload, default_strength=self._default_strength)
        except OracleError as exc:
            logger.warning("continuity_oracle_failed", task_id=current.id, candidate_id=candidate.id, error=str(exc))
            return default_assessment(self._default_strength)

    async def confirmation_message(self, current: Task, candidate: Task, request_text: str) -> str:
        text = request_text or candidate.title
        if self._messages is not None:
            try:
                payload = await call_oracle(
                    self._messages.generate_confirmation_text, current, text, candidate.urgency
                )
            except OracleError as exc:
                logger.warning("confirmation_oracle_failed", task_id=current.id, error=str(exc))
            else:
                message = payload_as_text(payload)
                if message:
                    return message
        return default_confirmation_text(current, text, candidate.urgency)

    async def interpret(self, user_text: str) -> InterruptionDecision:
        if self._interpreter is not None:
            try:
                payload = await call_oracle(self._interpreter.interpret, user_text)
                return parse_decision(payload)
            except OracleError as exc:
                logger.warning("interpreter_failed", error=str(exc))
        return keyword_interpretation(user_text)

    # ------------------------------------------------------------------
    # Context store and history
    # ------------------------------------------------------------------

    def record_switch(self, from_task: Optional[Task], to_task: Task, reason: str) -> None:
        if from_task is not None:
            self.save_task_context(
                from_task.id,
                {
                    "progress": from_task.progress,
                    "status": from_task.status,
                    "metadata": dict(from_task.metadata),
                },
            )
        self._history.append(
            {
                "from": from_task.id if from_task is not None else None,
                "to": to_task.id,
                "reason": reason,
                "timestamp": self._clock(),
            }
        )

    def save_task_context(self, task_id: UID, context: Dict[str, Any]) -> TaskContext:
        saved = TaskContext(task_id=task_id, saved_at=self._clock(), context=dict(context))
        self._contexts[task_id] = saved
        return saved

    def get_task_context(self, task_id: UID) -> Optional[TaskContext]:
        return self._contexts.get(task_id)

    def restore_context(self, task: Task) -> bool:
        """Merge saved metadata back into ``task`` when it resumes."""

        saved = self._contexts.get(task.id)
        if saved is None:
            return False
        metadata = saved.context.get("metadata")
        if isinstance(metadata, dict):
            merged = dict(metadata)
            merged.update(task.metadata)
            task.metadata = merged
        task.progress = max(task.progress, int(saved.context.get("progress") or 0))
        return True

    def clear_context(self, task_id: UID) -> None:
        self._contexts.pop(task_id, None)

    def get_switch_history(self) -> List[Dict[str, Any]]:
        return list(self._history)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "contexts": {task_id: ctx.to_dict() for task_id, ctx in self._contexts.items()},
            "history": list(self._history),
        }

    def load(self, payload: Dict[str, Any]) -> None:
        self._contexts = {
            str(task_id): TaskContext.from_dict(raw) for task_id, raw in (payload.get("contexts") or {}).items()
        }
        self._history.clear()
        for entry in payload.get("history") or []:
            self._history.append(dict(entry))


__all__ = [
    "ASSESS",
    "IDLE",
    "PENDING_CONFIRMATION",
    "PREEMPT",
    "RUNNING",
    "STAY",
    "TaskContext",
    "TaskSwitcher",
    "interruption_state",
]
