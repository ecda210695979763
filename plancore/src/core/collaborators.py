"""Protocols for the collaborators the planning core talks to.

Implementations may expose plain or ``async`` methods; the planning manager
awaits whatever comes back when it is awaitable. Memory collaborators may
additionally offer ``on_task_completed``, ``on_task_failed``,
``on_step_completed``, ``on_step_failed`` and ``on_fallback_triggered``; those
hooks are looked up by name and skipped when absent.
"""

from __future__ import annotations

import inspect
from typing import Any, Iterable, List, Mapping, Optional, Protocol, runtime_checkable

from .types import FocusState


@runtime_checkable
class MemoryCollaborator(Protocol):
    """Read access to relevant memories plus write hooks for plan events."""

    def get_relevant_memories(
        self,
        text: str,
        *,
        types: Iterable[str] = ("semantic",),
        limit: int = 5,
    ) -> Any:
        """Return a list of memory mappings (each carrying at least an ``id``)."""

    def on_goal_created(
        self,
        goal_id: str,
        title: str,
        description: str,
        conversation_id: Optional[str] = None,
    ) -> Any:
        ...

    def on_goal_completed(self, goal_id: str, title: str) -> Any:
        ...

    def on_task_created(
        self,
        task_id: str,
        title: str,
        description: str,
        urgency: str,
        parent_id: Optional[str] = None,
    ) -> Any:
        ...

    def complete_prospective_memory(self, memory_id: str) -> Any:
        ...


@runtime_checkable
class AttentionCollaborator(Protocol):
    """Owner of the agent's focus state."""

    def update_task_focus(
        self,
        agent_id: str,
        title: str,
        urgency: str,
        conversation_id: Optional[str] = None,
    ) -> Any:
        ...

    def clear_task_focus(self, agent_id: str) -> Any:
        ...

    def get_focus(self, agent_id: str) -> Any:
        """Return the current :class:`FocusState` (or ``None``)."""


async def resolve(value: Any) -> Any:
    """Await ``value`` when it is awaitable, otherwise return it unchanged."""

    if inspect.isawaitable(value):
        return await value
    return value


def coerce_focus(value: Any) -> FocusState:
    if isinstance(value, FocusState):
        return value
    if isinstance(value, Mapping):
        return FocusState(
            current_task=value.get("current_task"),
            topic=value.get("topic"),
            urgency=value.get("urgency"),
            conversation_id=value.get("conversation_id"),
        )
    return FocusState()


def memory_ids(memories: Any) -> List[str]:
    """Extract stable ids from a memory lookup result."""

    if isinstance(memories, Mapping):
        memories = memories.get("memories", [])
    ids: List[str] = []
    for memory in memories or []:
        if isinstance(memory, Mapping):
            ident = memory.get("id")
        else:
            ident = getattr(memory, "id", None)
        if ident is not None:
            ids.append(str(ident))
    return ids


__all__ = [
    "AttentionCollaborator",
    "MemoryCollaborator",
    "coerce_focus",
    "memory_ids",
    "resolve",
]
