"""Attention-based scoring of ready tasks."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Set

from .config import PlanningConfig
from .types import FocusState, Task, clamp


_TOKEN_PATTERN = re.compile(r"[A-Za-z0-9]+")


def _tokenise(text: str) -> List[str]:
    return [match.group(0).lower() for match in _TOKEN_PATTERN.finditer(text)]


def relevance(text: str, topic: Optional[str]) -> float:
    """Share of the topic's tokens that appear in ``text``."""

    if not topic:
        return 0.0
    topic_tokens = set(_tokenise(topic))
    if not topic_tokens:
        return 0.0
    text_tokens = set(_tokenise(text))
    return len(topic_tokens & text_tokens) / len(topic_tokens)


@dataclass
class AttentionPrioritizer:
    config: PlanningConfig = field(default_factory=PlanningConfig)

    def score(
        self,
        task: Task,
        focus: FocusState | None = None,
        completed_ids: Set[str] | None = None,
    ) -> float:
        cfg = self.config
        value = cfg.urgency_weights.get(task.urgency, cfg.urgency_weights["low"])
        if focus is not None:
            if focus.topic:
                match = relevance(f"{task.title} {task.description}", focus.topic)
                if match > cfg.relevance_threshold:
                    value += cfg.relevance_weight * match
            if focus.current_task and focus.current_task.lower() in task.title.lower():
                value += cfg.current_task_bonus
        value += cfg.source_weights.get(task.source, 0.0)
        done = completed_ids or set()
        if any(dep not in done for dep in task.dependencies):
            value *= cfg.dependency_penalty
        return clamp(value)

    def prioritize(
        self,
        tasks: Iterable[Task],
        focus: FocusState | None = None,
        completed_ids: Set[str] | None = None,
    ) -> List[Task]:
        """Score ``tasks`` in place and return them highest score first.

        Each task's ``priority`` is overwritten with its score; equal scores
        keep first-come-first-served order by ``created_at``.
        """

        scored: List[Task] = []
        for task in tasks:
            task.priority = self.score(task, focus, completed_ids)
            scored.append(task)
        scored.sort(key=lambda item: (-item.priority, item.created_at))
        return scored


@dataclass
class FocusTracker:
    """In-memory attention collaborator keyed by agent id."""

    _focus: Dict[str, FocusState] = field(default_factory=dict)

    def update_task_focus(
        self,
        agent_id: str,
        title: str,
        urgency: str,
        conversation_id: Optional[str] = None,
    ) -> None:
        previous = self._focus.get(agent_id)
        self._focus[agent_id] = FocusState(
            current_task=title,
            topic=previous.topic if previous else None,
            urgency=urgency,
            conversation_id=conversation_id,
        )

    def set_topic(self, agent_id: str, topic: Optional[str]) -> None:
        state = self._focus.setdefault(agent_id, FocusState())
        state.topic = topic

    def clear_task_focus(self, agent_id: str) -> None:
        state = self._focus.get(agent_id)
        if state is None:
            return
        self._focus[agent_id] = FocusState(topic=state.topic)

    def get_focus(self, agent_id: str) -> FocusState:
        return self._focus.get(agent_id) or FocusState()


__all__ = ["AttentionPrioritizer", "FocusTracker", "relevance"]
