"""Shared type definitions for the planning core."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Mapping, Optional


UID = str

URGENCY_LEVELS = ("low", "medium", "high", "critical")
URGENCY_RANK = {"low": 1, "medium": 2, "high": 3, "critical": 4}
TASK_TYPES = ("immediate", "strategic", "scheduled")
TASK_SOURCES = ("user", "prospective", "self-generated")
TASK_STATUSES = ("pending", "active", "completed", "failed", "cancelled")
GOAL_STATUSES = ("active", "completed", "cancelled")
NODE_TYPES = ("goal", "task")

TERMINAL_TASK_STATUSES = frozenset({"completed", "failed", "cancelled"})
ROOT_ID = "root"


def new_id() -> UID:
    return uuid.uuid4().hex


def clamp(value: Any, lower: float = 0.0, upper: float = 1.0) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return lower
    if number != number:  # NaN
        return lower
    return max(lower, min(upper, number))


def clamp_progress(value: Any) -> int:
    return int(round(clamp(value, 0.0, 100.0)))


def _check_literal(value: str, allowed: tuple[str, ...], label: str) -> str:
    if value not in allowed:
        raise ValueError(f"Unknown {label}: {value!r}")
    return value


def normalise_urgency(value: Any, default: str = "medium") -> str:
    text = str(value).lower() if value is not None else ""
    return text if text in URGENCY_LEVELS else default


@dataclass
class GoalTaskNode:
    """Node of the goal/task hierarchy.

    Relations are stored as ids only: ``parent_id`` is a weak back-reference
    and ``children`` an ordered list of child ids. Goals populate
    ``goal_status``; tasks populate ``task_status``, ``urgency`` and
    ``priority``.
    """

    id: UID
    type: str
    title: str
    description: str = ""
    parent_id: Optional[UID] = None
    children: List[UID] = field(default_factory=list)
    order: int = 0
    source: str = "user"
    created_at: float = 0.0
    updated_at: float = 0.0
    progress: int = 0
    goal_status: Optional[str] = None
    task_status: Optional[str] = None
    urgency: Optional[str] = None
    priority: Optional[float] = None
    result: Any = None
    error: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        _check_literal(self.type, NODE_TYPES, "node type")
        _check_literal(self.source, TASK_SOURCES, "task source")
        if self.type == "goal":
            self.goal_status = _check_literal(self.goal_status or "active", GOAL_STATUSES, "goal status")
            self.task_status = None
            self.urgency = None
            self.priority = None
        else:
            self.task_status = _check_literal(self.task_status or "pending", TASK_STATUSES, "task status")
            self.goal_status = None
            self.urgency = _check_literal(self.urgency or "medium", URGENCY_LEVELS, "urgency")
            self.priority = 0.5 if self.priority is None else self.priority
        self.progress = clamp_progress(self.progress)

    def __setattr__(self, name: str, value: Any) -> None:
        if name == "type" and "type" in self.__dict__ and value != self.__dict__["type"]:
            raise AttributeError("node type is immutable after creation")
        if name == "priority" and value is not None:
            value = clamp(value)
        super().__setattr__(name, value)

    @classmethod
    def goal(
        cls,
        title: str,
        *,
        description: str = "",
        source: str = "user",
        order: int = 0,
        now: float = 0.0,
        ident: Optional[UID] = None,
        metadata: Mapping[str, Any] | None = None,
    ) -> "GoalTaskNode":
        return cls(
            id=ident or new_id(),
            type="goal",
            title=title,
            description=description,
            source=source,
            order=order,
            created_at=now,
            updated_at=now,
            goal_status="active",
            metadata=dict(metadata or {}),
        )

    @classmethod
    def task(
        cls,
        title: str,
        *,
        description: str = "",
        urgency: str = "medium",
        priority: float = 0.5,
        source: str = "user",
        order: int = 0,
        now: float = 0.0,
        ident: Optional[UID] = None,
        metadata: Mapping[str, Any] | None = None,
    ) -> "GoalTaskNode":
        return cls(
            id=ident or new_id(),
            type="task",
            title=title,
            description=description,
            source=source,
            order=order,
            created_at=now,
            updated_at=now,
            task_status="pending",
            urgency=urgency,
            priority=priority,
            metadata=dict(metadata or {}),
        )

    @property
    def is_goal(self) -> bool:
        return self.type == "goal"

    @property
    def status(self) -> str:
        return self.goal_status if self.type == "goal" else self.task_status  # type: ignore[return-value]

    def is_completed(self) -> bool:
        return self.status == "completed"

    def is_terminal(self) -> bool:
        if self.type == "goal":
            return self.goal_status in {"completed", "cancelled"}
        return self.task_status in TERMINAL_TASK_STATUSES

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "id": self.id,
            "type": self.type,
            "title": self.title,
            "description": self.description,
            "parent_id": self.parent_id,
            "children": list(self.children),
            "order": self.order,
            "source": self.source,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "progress": self.progress,
            "metadata": dict(self.metadata),
        }
        if self.type == "goal":
            payload["goal_status"] = self.goal_status
        else:
            payload["task_status"] = self.task_status
            payload["urgency"] = self.urgency
            payload["priority"] = self.priority
            if self.result is not None:
                payload["result"] = self.result
            if self.error is not None:
                payload["error"] = self.error
        return payload

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "GoalTaskNode":
        return cls(
            id=str(payload["id"]),
            type=str(payload.get("type", "task")),
            title=str(payload.get("title", "")),
            description=str(payload.get("description") or ""),
            parent_id=payload.get("parent_id"),
            children=[str(child) for child in payload.get("children", [])],
            order=int(payload.get("order", 0)),
            source=str(payload.get("source", "user")),
            created_at=float(payload.get("created_at", 0.0)),
            updated_at=float(payload.get("updated_at", 0.0)),
            progress=payload.get("progress", 0),
            goal_status=payload.get("goal_status"),
            task_status=payload.get("task_status"),
            urgency=payload.get("urgency"),
            priority=payload.get("priority"),
            result=payload.get("result"),
            error=payload.get("error"),
            metadata=dict(payload.get("metadata") or {}),
        )


@dataclass
class GoalTaskTree:
    """Arena of nodes keyed by id with a synthetic root container."""

    root: GoalTaskNode = field(
        default_factory=lambda: GoalTaskNode(id=ROOT_ID, type="goal", title="Root", goal_status="active")
    )
    nodes: Dict[UID, GoalTaskNode] = field(default_factory=dict)
    active_node_id: Optional[UID] = None


@dataclass
class Task:
    """Flattened queue record, structurally mirroring a task node."""

    title: str
    id: UID = ""
    description: str = ""
    type: str = "immediate"
    source: str = "user"
    priority: float = 0.5
    urgency: str = "medium"
    status: str = "pending"
    created_at: float = 0.0
    updated_at: float = 0.0
    dependencies: List[UID] = field(default_factory=list)
    progress: int = 0
    result: Any = None
    error: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    prospective_memory_id: Optional[str] = None
    scheduled_for: Optional[float] = None
    parent_id: Optional[UID] = None

    def __post_init__(self) -> None:
        _check_literal(self.type, TASK_TYPES, "task type")
        _check_literal(self.source, TASK_SOURCES, "task source")
        _check_literal(self.urgency, URGENCY_LEVELS, "urgency")
        _check_literal(self.status, TASK_STATUSES, "task status")
        self.progress = clamp_progress(self.progress)

    def __setattr__(self, name: str, value: Any) -> None:
        if name == "priority":
            value = clamp(value)
        super().__setattr__(name, value)

    def copy(self) -> "Task":
        return Task.from_dict(self.to_dict())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "type": self.type,
            "source": self.source,
            "priority": self.priority,
            "urgency": self.urgency,
            "status": self.status,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "dependencies": list(self.dependencies),
            "progress": self.progress,
            "result": self.result,
            "error": self.error,
            "metadata": dict(self.metadata),
            "prospective_memory_id": self.prospective_memory_id,
            "scheduled_for": self.scheduled_for,
            "parent_id": self.parent_id,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "Task":
        return cls(
            id=str(payload.get("id") or ""),
            title=str(payload.get("title", "")),
            description=str(payload.get("description") or ""),
            type=str(payload.get("type", "immediate")),
            source=str(payload.get("source", "user")),
            priority=payload.get("priority", 0.5),
            urgency=str(payload.get("urgency", "medium")),
            status=str(payload.get("status", "pending")),
            created_at=float(payload.get("created_at") or 0.0),
            updated_at=float(payload.get("updated_at") or 0.0),
            dependencies=[str(dep) for dep in payload.get("dependencies") or []],
            progress=payload.get("progress", 0),
            result=payload.get("result"),
            error=payload.get("error"),
            metadata=dict(payload.get("metadata") or {}),
            prospective_memory_id=payload.get("prospective_memory_id"),
            scheduled_for=payload.get("scheduled_for"),
            parent_id=payload.get("parent_id"),
        )


@dataclass
class TaskQueue:
    pending: List[Task] = field(default_factory=list)
    active: Optional[Task] = None
    completed: List[Task] = field(default_factory=list)
    strategic: List[Task] = field(default_factory=list)


@dataclass
class TaskStep:
    """One tactical step of an active task."""

    id: UID
    title: str
    order: int = 0
    description: Optional[str] = None
    requires_confirmation: bool = False
    confirmation_reason: Optional[str] = None
    completed: bool = False
    result: Any = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "order": self.order,
            "description": self.description,
            "requires_confirmation": self.requires_confirmation,
            "confirmation_reason": self.confirmation_reason,
            "completed": self.completed,
            "result": self.result,
            "error": self.error,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "TaskStep":
        return cls(
            id=str(payload.get("id") or new_id()),
            title=str(payload.get("title", "")),
            order=int(payload.get("order", 0)),
            description=payload.get("description"),
            requires_confirmation=bool(payload.get("requires_confirmation", False)),
            confirmation_reason=payload.get("confirmation_reason"),
            completed=bool(payload.get("completed", False)),
            result=payload.get("result"),
            error=payload.get("error"),
        )


@dataclass(frozen=True)
class FallbackPlan:
    id: UID
    task_id: UID
    description: str
    priority: float = 0.5


@dataclass(frozen=True)
class SwitchAssessment:
    """Continuity judgement between the active task and a candidate."""

    should_switch: bool
    continuity_strength: float = 0.5
    reasoning: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "should_switch": self.should_switch,
            "continuity_strength": self.continuity_strength,
            "reasoning": self.reasoning,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "SwitchAssessment":
        return cls(
            should_switch=bool(payload.get("should_switch", True)),
            continuity_strength=clamp(payload.get("continuity_strength", 0.5)),
            reasoning=str(payload.get("reasoning") or ""),
        )


@dataclass
class PendingInterruption:
    current_task: Task
    new_task: Task
    original_user_message: str
    assessment: SwitchAssessment
    created_at: float
    conversation_id: Optional[str] = None
    message: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "current_task": self.current_task.to_dict(),
            "new_task": self.new_task.to_dict(),
            "original_user_message": self.original_user_message,
            "assessment": self.assessment.to_dict(),
            "created_at": self.created_at,
            "conversation_id": self.conversation_id,
            "message": self.message,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "PendingInterruption":
        return cls(
            current_task=Task.from_dict(payload["current_task"]),
            new_task=Task.from_dict(payload["new_task"]),
            original_user_message=str(payload.get("original_user_message") or ""),
            assessment=SwitchAssessment.from_dict(payload.get("assessment") or {}),
            created_at=float(payload.get("created_at") or 0.0),
            conversation_id=payload.get("conversation_id"),
            message=str(payload.get("message") or ""),
        )


@dataclass(frozen=True)
class ProcessQueueResult:
    type: Literal["task", "pending_interruption", "none"]
    task: Optional[Task] = None
    interruption: Optional[PendingInterruption] = None

    @classmethod
    def none(cls) -> "ProcessQueueResult":
        return cls(type="none")

    @classmethod
    def for_task(cls, task: Task) -> "ProcessQueueResult":
        return cls(type="task", task=task)

    @classmethod
    def for_interruption(cls, interruption: PendingInterruption) -> "ProcessQueueResult":
        return cls(type="pending_interruption", interruption=interruption)


@dataclass
class PlanningStats:
    total_completed: int = 0
    total_failed: int = 0
    total_cancelled: int = 0
    average_completion_time: float = 0.0
    last_completed_at: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_completed": self.total_completed,
            "total_failed": self.total_failed,
            "total_cancelled": self.total_cancelled,
            "average_completion_time": self.average_completion_time,
            "last_completed_at": self.last_completed_at,
        }


@dataclass
class FocusState:
    """What the agent is currently attending to."""

    current_task: Optional[str] = None
    topic: Optional[str] = None
    urgency: Optional[str] = None
    conversation_id: Optional[str] = None


__all__ = [
    "FallbackPlan",
    "FocusState",
    "GOAL_STATUSES",
    "GoalTaskNode",
    "GoalTaskTree",
    "NODE_TYPES",
    "PendingInterruption",
    "PlanningStats",
    "ProcessQueueResult",
    "ROOT_ID",
    "SwitchAssessment",
    "TASK_SOURCES",
    "TASK_STATUSES",
    "TASK_TYPES",
    "Task",
    "TaskQueue",
    "TaskStep",
    "UID",
    "URGENCY_LEVELS",
    "URGENCY_RANK",
    "clamp",
    "clamp_progress",
    "new_id",
    "normalise_urgency",
]
