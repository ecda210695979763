"""Versioned snapshot of one agent's planning state.

The planning core keeps everything in memory; callers persist it by writing a
:class:`PlanningSnapshot`. The payload is plain id-keyed JSON (no object
references) so it can be validated against the exported JSON schema before a
planner is rebuilt from it.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .types import GOAL_STATUSES, NODE_TYPES, TASK_STATUSES


SNAPSHOT_SCHEMA_VERSION = "1.0.0"


class SnapshotTree(BaseModel):
    """Serialised :class:`GoalTaskTree` arena."""

    root_children: List[str] = Field(default_factory=list)
    active_node_id: Optional[str] = None
    nodes: Dict[str, Dict[str, Any]] = Field(default_factory=dict)

    @field_validator("nodes")
    @classmethod
    def _validate_nodes(cls, value: Dict[str, Dict[str, Any]]) -> Dict[str, Dict[str, Any]]:
        for node_id, node in value.items():
            if node.get("id") != node_id:
                raise ValueError(f"node key {node_id!r} does not match its id")
            if node.get("type") not in NODE_TYPES:
                raise ValueError(f"node {node_id!r} has unknown type {node.get('type')!r}")
            if node["type"] == "goal" and node.get("goal_status") not in GOAL_STATUSES:
                raise ValueError(f"goal {node_id!r} has invalid status")
            if node["type"] == "task" and node.get("task_status") not in TASK_STATUSES:
                raise ValueError(f"task {node_id!r} has invalid status")
            for child in node.get("children") or []:
                if child not in value:
                    raise ValueError(f"node {node_id!r} references unknown child {child!r}")
        return value


class SnapshotQueue(BaseModel):
    """Serialised :class:`TaskQueue`."""

    pending: List[Dict[str, Any]] = Field(default_factory=list)
    active: Optional[Dict[str, Any]] = None
    completed: List[Dict[str, Any]] = Field(default_factory=list)
    strategic: List[Dict[str, Any]] = Field(default_factory=list)


class SnapshotStats(BaseModel):
    total_completed: int = 0
    total_failed: int = 0
    total_cancelled: int = 0
    average_completion_time: float = 0.0
    last_completed_at: Optional[float] = None


class PlanningSnapshot(BaseModel):
    """Everything needed to rebuild a :class:`PlanningManager`."""

    model_config = ConfigDict(extra="forbid")

    schema_version: str = Field(default=SNAPSHOT_SCHEMA_VERSION)
    agent_id: str
    created_at: float
    tree: SnapshotTree = Field(default_factory=SnapshotTree)
    queue: SnapshotQueue = Field(default_factory=SnapshotQueue)
    stats: SnapshotStats = Field(default_factory=SnapshotStats)
    contexts: Dict[str, Dict[str, Any]] = Field(default_factory=dict)
    switch_history: List[Dict[str, Any]] = Field(default_factory=list)
    fallbacks: Dict[str, List[Dict[str, Any]]] = Field(default_factory=dict)
    pending_interruption: Optional[Dict[str, Any]] = None

    @field_validator("schema_version")
    @classmethod
    def _validate_version(cls, value: str) -> str:
        major = value.split(".", 1)[0]
        if major != SNAPSHOT_SCHEMA_VERSION.split(".", 1)[0]:
            raise ValueError(f"unsupported snapshot schema version {value}")
        return value

    def write(self, path: Path) -> None:
        """Persist the snapshot to disk in canonical JSON form."""

        path.write_text(self.model_dump_json(indent=2), encoding="utf-8")

    @classmethod
    def load(cls, path: Path) -> "PlanningSnapshot":
        return cls.model_validate_json(Path(path).read_text(encoding="utf-8"))

    @classmethod
    def write_schema(cls, path: Path) -> None:
        """Write the JSON schema for the snapshot to disk."""

        path.write_text(json.dumps(cls.model_json_schema(), indent=2), encoding="utf-8")


def load_snapshot_schema() -> Dict[str, Any]:
    return PlanningSnapshot.model_json_schema()


__all__ = [
    "PlanningSnapshot",
    "SNAPSHOT_SCHEMA_VERSION",
    "SnapshotQueue",
    "SnapshotStats",
    "SnapshotTree",
    "load_snapshot_schema",
]
