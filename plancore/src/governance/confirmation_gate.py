from __future__ import annotations

from typing import Any, Mapping, Optional

from ..oversight.models import ConfirmationDecision, ConfirmationRequest
from ..oversight.store import ConfirmationStore, ConfirmationTicket


class ConfirmationGate:
    """Pauses flagged tactical steps until a reviewer answers.

    Each call to :meth:`request` registers a ticket in the backing
    :class:`ConfirmationStore`; :meth:`wait` suspends the caller until
    :meth:`record_decision` resolves it or the configured timeout elapses.
    """

    def __init__(
        self,
        store: ConfirmationStore | None = None,
        *,
        timeout_s: Optional[float] = None,
        requester: str = "planner",
    ) -> None:
        self._store = store or ConfirmationStore()
        self._timeout_s = timeout_s
        self._requester = requester

    @property
    def store(self) -> ConfirmationStore:
        return self._store

    def request(
        self,
        *,
        task_id: str,
        step_id: str,
        step_title: str,
        reason: Optional[str] = None,
        context: Mapping[str, Any] | None = None,
    ) -> ConfirmationTicket:
        payload = {"requested_by": self._requester}
        payload.update(context or {})
        request = ConfirmationRequest.build(
            task_id=task_id,
            step_id=step_id,
            step_title=step_title,
            reason=reason,
            context=payload,
        )
        return self._store.create_request(request)

    async def wait(self, ticket: ConfirmationTicket) -> bool:
        decision = await ticket.wait(timeout=self._timeout_s)
        if decision is None:
            raise TimeoutError(
                f"Step confirmation timed out for request {ticket.request.id} "
                f"(task={ticket.request.task_id}, step={ticket.request.step_title})"
            )
        return decision.approved

    def record_decision(
        self,
        request_id: str,
        *,
        approved: bool,
        reviewer: str,
        message: str | None = None,
    ) -> None:
        decision = ConfirmationDecision.build(
            request_id=request_id,
            approved=approved,
            reviewer=reviewer,
            message=message,
        )
        self._store.resolve(request_id, decision)


__all__ = ["ConfirmationGate"]
