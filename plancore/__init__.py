"""Convenience exports for the plancore package.

Attributes are resolved lazily from ``plancore.src`` so that importing the
package (for instance to reach the CLI) does not build the whole planning
stack up front.
"""

from __future__ import annotations

import importlib
from typing import Any

_IMPORT_MAP = {
    "AttentionPrioritizer": "plancore.src.core.attention",
    "ConfirmationGate": "plancore.src.governance.confirmation_gate",
    "ConfirmationStore": "plancore.src.oversight.store",
    "EventChannel": "plancore.src.core.events",
    "FocusState": "plancore.src.core.types",
    "FocusTracker": "plancore.src.core.attention",
    "GoalTaskNode": "plancore.src.core.types",
    "InMemorySink": "plancore.src.core.events",
    "InterruptionDecision": "plancore.src.core.oracles",
    "InterruptionOutcome": "plancore.src.core.manager",
    "JsonLinesSink": "plancore.src.core.events",
    "OracleError": "plancore.src.core.oracles",
    "PendingInterruption": "plancore.src.core.types",
    "PlanningConfig": "plancore.src.core.config",
    "PlanningManager": "plancore.src.core.manager",
    "PlanningSnapshot": "plancore.src.core.snapshot",
    "ProcessQueueResult": "plancore.src.core.types",
    "SwitchAssessment": "plancore.src.core.types",
    "Task": "plancore.src.core.types",
    "TaskStep": "plancore.src.core.types",
    "TreeManager": "plancore.src.core.tree",
}

__all__ = tuple(sorted(_IMPORT_MAP))


def __getattr__(name: str) -> Any:
    module_name = _IMPORT_MAP.get(name)
    if module_name is None:
        raise AttributeError(name)
    return getattr(importlib.import_module(module_name), name)


def __dir__() -> list[str]:
    return sorted(set(globals().keys()) | set(__all__))
