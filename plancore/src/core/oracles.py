"""Decision oracles consumed by the planning core.

Oracles produce content (decompositions, continuity judgements, wording,
interpretations); the core validates what they return and falls back to safe
defaults whenever a call raises or yields something unusable.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Protocol

from .collaborators import resolve
from .types import FocusState, GoalTaskNode, SwitchAssessment, Task, clamp


class OracleError(RuntimeError):
    pass


class DecompositionOracle(Protocol):
    def decompose(
        self,
        node: GoalTaskNode,
        urgency: str,
        focus: FocusState | None,
        *,
        memories: List[Mapping[str, Any]],
    ) -> Any:
        """Return ``{"children": [...]}`` as a mapping or JSON text."""


class StepOracle(Protocol):
    def decompose_steps(self, task: Task, urgency: str, focus: FocusState | None) -> Any:
        """Return ``{"steps_required": bool, "steps": [...]}`` or a bare step list."""


class ContinuityOracle(Protocol):
    def assess_switch(self, current: Task, candidate: Task, focus: FocusState | None) -> Any:
        """Return ``{"should_switch", "continuity_strength", "reasoning"}``."""


class ConfirmationMessageOracle(Protocol):
    def generate_confirmation_text(self, current_task: Task, request_text: str, urgency: str) -> Any:
        ...


class InterruptionResponseInterpreter(Protocol):
    def interpret(self, user_text: str) -> Any:
        """Return ``{"proceed", "add_to_queue", "reasoning"}``."""


_FENCE_PATTERN = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```")
_OBJECT_PATTERN = re.compile(r"\{[\s\S]*\}")


def parse_payload(raw: Any) -> Any:
    """Normalise an oracle reply into Python data.

    Mappings and lists pass through; text is parsed as JSON after stripping a
    Markdown code fence if present.
    """

    if isinstance(raw, (Mapping, list)):
        return raw
    if not isinstance(raw, str):
        raise OracleError(f"Unsupported oracle payload: {type(raw).__name__}")
    text = raw.strip()
    fenced = _FENCE_PATTERN.search(text)
    if fenced:
        text = fenced.group(1).strip()
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        embedded = _OBJECT_PATTERN.search(text)
        if embedded:
            try:
                return json.loads(embedded.group(0))
            except json.JSONDecodeError as exc:
                raise OracleError("Oracle returned invalid JSON") from exc
        raise OracleError("Oracle returned invalid JSON")


def _pick(data: Mapping[str, Any], *keys: str, default: Any = None) -> Any:
    for key in keys:
        if key in data:
            return data[key]
    return default


async def call_oracle(method: Any, *args: Any, **kwargs: Any) -> Any:
    """Invoke an oracle method and parse its reply, wrapping every failure."""

    try:
        raw = await resolve(method(*args, **kwargs))
    except OracleError:
        raise
    except Exception as exc:
        raise OracleError(f"{getattr(method, '__name__', 'oracle')} failed: {exc}") from exc
    return parse_payload(raw)


def parse_assessment(data: Any, *, default_strength: float = 0.5) -> SwitchAssessment:
    if not isinstance(data, Mapping):
        raise OracleError("Continuity oracle must return an object")
    strength = _pick(data, "continuity_strength", "continuityStrength")
    return SwitchAssessment(
        should_switch=bool(_pick(data, "should_switch", "shouldSwitch", default=False)),
        continuity_strength=default_strength if strength is None else clamp(strength),
        reasoning=str(data.get("reasoning") or "oracle decision"),
    )


def default_assessment(strength: float = 0.5, reason: str = "") -> SwitchAssessment:
    return SwitchAssessment(
        should_switch=True,
        continuity_strength=strength,
        reasoning=reason or "continuity assessment unavailable, defaulting to switch",
    )


@dataclass(frozen=True)
class InterruptionDecision:
    """Outcome of interpreting the user's reply to an interruption prompt."""

    proceed: bool
    add_to_queue: bool
    reasoning: str = ""

    @property
    def action(self) -> str:
        if self.proceed:
            return "proceed"
        if self.add_to_queue:
            return "add_to_queue"
        return "discard"

    @classmethod
    def from_action(cls, action: str, reasoning: str = "") -> "InterruptionDecision":
        normalised = action.strip().lower().replace("-", "_").replace(" ", "_")
        if normalised == "proceed":
            return cls(proceed=True, add_to_queue=False, reasoning=reasoning)
        if normalised in {"add_to_queue", "queue"}:
            return cls(proceed=False, add_to_queue=True, reasoning=reasoning)
        if normalised == "discard":
            return cls(proceed=False, add_to_queue=False, reasoning=reasoning)
        raise ValueError(f"Unknown interruption action: {action}")


_PROCEED_WORDS = ("yes", "sure")
_QUEUE_PHRASES = ("later", "not now")
_WORD_PATTERN = re.compile(r"[a-z']+")


def keyword_interpretation(user_text: str) -> InterruptionDecision:
    """Interpret a reply without an oracle."""

    lowered = user_text.lower()
    words = set(_WORD_PATTERN.findall(lowered))
    if any(word in words for word in _PROCEED_WORDS):
        return InterruptionDecision(proceed=True, add_to_queue=False, reasoning="keyword match: proceed")
    if any(phrase in lowered for phrase in _QUEUE_PHRASES):
        return InterruptionDecision(proceed=False, add_to_queue=True, reasoning="keyword match: add to queue")
    return InterruptionDecision(proceed=False, add_to_queue=False, reasoning="no keyword match: discard")


def parse_decision(data: Any) -> InterruptionDecision:
    if not isinstance(data, Mapping):
        raise OracleError("Interpreter must return an object")
    proceed = bool(data.get("proceed", False))
    add_to_queue = bool(_pick(data, "add_to_queue", "addToQueue", default=False))
    return InterruptionDecision(
        proceed=proceed,
        add_to_queue=add_to_queue and not proceed,
        reasoning=str(data.get("reasoning") or ""),
    )


def default_confirmation_text(current_task: Task, request_text: str, urgency: str) -> str:
    request = request_text.strip() or "a new request"
    return (
        f"I'm currently working on \"{current_task.title}\" ({current_task.progress}% done). "
        f"You asked for: {request} (urgency: {urgency}). "
        "Should I switch now, add it to the queue for later, or discard it?"
    )


def payload_as_text(data: Any) -> Optional[str]:
    if isinstance(data, str):
        return data.strip() or None
    if isinstance(data, Mapping):
        for key in ("message", "text", "content"):
            value = data.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
    return None


def as_dict_list(value: Any) -> List[Dict[str, Any]]:
    if not isinstance(value, list):
        return []
    return [dict(item) for item in value if isinstance(item, Mapping)]


__all__ = [
    "ConfirmationMessageOracle",
    "ContinuityOracle",
    "DecompositionOracle",
    "InterruptionDecision",
    "InterruptionResponseInterpreter",
    "OracleError",
    "StepOracle",
    "as_dict_list",
    "call_oracle",
    "default_assessment",
    "default_confirmation_text",
    "keyword_interpretation",
    "parse_assessment",
    "parse_decision",
    "parse_payload",
    "payload_as_text",
]
