"""Tunable parameters of the planning core.

Weights and caps used across the scheduler live in a single Pydantic model so
deployments can override them from a JSON file and invalid values are
rejected before a planner is built.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, Mapping

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .types import TASK_SOURCES, URGENCY_LEVELS


CONFIG_ENV_VAR = "PLANCORE_CONFIG"


def _default_urgency_weights() -> Dict[str, float]:
    return {"critical": 1.0, "high": 0.8, "medium": 0.5, "low": 0.3}


def _default_source_weights() -> Dict[str, float]:
    return {"user": 0.1, "prospective": 0.05, "self-generated": 0.0}


class PlanningConfig(BaseModel):
    """Configuration shared by the planning components."""

    model_config = ConfigDict(extra="forbid")

    urgency_weights: Dict[str, float] = Field(default_factory=_default_urgency_weights)
    source_weights: Dict[str, float] = Field(default_factory=_default_source_weights)
    relevance_threshold: float = Field(default=0.5, ge=0.0, le=1.0)
    relevance_weight: float = Field(default=0.3, ge=0.0)
    current_task_bonus: float = Field(default=0.2, ge=0.0)
    dependency_penalty: float = Field(default=0.8, ge=0.0, le=1.0)

    default_continuity_strength: float = Field(default=0.5, ge=0.0, le=1.0)
    switch_history_limit: int = Field(default=100, ge=1)

    max_fallback_depth: int = Field(default=2, ge=0)

    complex_task_step_threshold: int = Field(default=4, ge=1)
    decomposition_memory_limit: int = Field(default=5, ge=0)

    execution_timeout_s: float = Field(default=3600.0, gt=0)
    auto_confirm_steps: bool = True
    confirmation_timeout_s: float | None = Field(default=None, gt=0)

    @field_validator("urgency_weights")
    @classmethod
    def _validate_urgency_weights(cls, value: Dict[str, float]) -> Dict[str, float]:
        missing = [level for level in URGENCY_LEVELS if level not in value]
        if missing:
            raise ValueError(f"urgency_weights missing levels: {', '.join(missing)}")
        unknown = [key for key in value if key not in URGENCY_LEVELS]
        if unknown:
            raise ValueError(f"unknown urgency levels: {', '.join(unknown)}")
        return dict(value)

    @field_validator("source_weights")
    @classmethod
    def _validate_source_weights(cls, value: Dict[str, float]) -> Dict[str, float]:
        unknown = [key for key in value if key not in TASK_SOURCES]
        if unknown:
            raise ValueError(f"unknown task sources: {', '.join(unknown)}")
        merged = _default_source_weights()
        merged.update(value)
        return merged

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any] | None) -> "PlanningConfig":
        return cls.model_validate(dict(data or {}))

    @classmethod
    def load(cls, path: Path) -> "PlanningConfig":
        """Read a JSON configuration file."""

        payload = json.loads(Path(path).read_text(encoding="utf-8"))
        if not isinstance(payload, dict):
            raise ValueError("planning configuration must be a JSON object")
        return cls.model_validate(payload)


__all__ = ["CONFIG_ENV_VAR", "PlanningConfig"]
