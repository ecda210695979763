from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional


def _copy_payload(data: Mapping[str, Any] | None) -> Dict[str, Any]:
    if not data:
        return {}
    return {key: value for key, value in data.items()}


@dataclass(frozen=True)
class ConfirmationRequest:
    """A flagged tactical step waiting for an external go-ahead."""

    id: str
    created_at: float
    task_id: str
    step_id: str
    step_title: str
    reason: Optional[str] = None
    context: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def build(
        cls,
        *,
        task_id: str,
        step_id: str,
        step_title: str,
        reason: Optional[str] = None,
        context: Mapping[str, Any] | None = None,
        ident: Optional[str] = None,
        created_at: Optional[float] = None,
    ) -> "ConfirmationRequest":
        return cls(
            id=ident or uuid.uuid4().hex,
            created_at=time.time() if created_at is None else created_at,
            task_id=task_id,
            step_id=step_id,
            step_title=step_title,
            reason=reason,
            context=_copy_payload(context),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "created_at": self.created_at,
            "task_id": self.task_id,
            "step_id": self.step_id,
            "step_title": self.step_title,
            "reason": self.reason,
            "context": dict(self.context),
        }


@dataclass(frozen=True)
class ConfirmationDecision:
    """Answer recorded by whoever reviews a step confirmation."""

    request_id: str
    approved: bool
    reviewer: str
    decided_at: float
    message: Optional[str] = None

    @classmethod
    def build(
        cls,
        *,
        request_id: str,
        approved: bool,
        reviewer: str,
        message: Optional[str] = None,
        decided_at: Optional[float] = None,
    ) -> "ConfirmationDecision":
        return cls(
            request_id=request_id,
            approved=approved,
            reviewer=reviewer,
            decided_at=time.time() if decided_at is None else decided_at,
            message=message,
        )


__all__ = [
    "ConfirmationDecision",
    "ConfirmationRequest",
]
