from __future__ import annotations

import asyncio
import json
import sqlite3
from dataclasses import dataclass, field
from pathlib import Path
from threading import Lock
from typing import Any, Dict, Iterable, List, Optional

from .models import ConfirmationDecision, ConfirmationRequest


def _json_dumps(data: Any) -> str:
    return json.dumps(data, ensure_ascii=False, sort_keys=True)


def _json_loads(text: Optional[str]) -> Any:
    if text in (None, ""):
        return None
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return None


@dataclass
class ConfirmationTicket:
    request: ConfirmationRequest
    _event: asyncio.Event = field(default_factory=asyncio.Event)
    _decision: Optional[ConfirmationDecision] = None

    def resolve(self, decision: ConfirmationDecision) -> None:
        self._decision = decision
        self._event.set()

    @property
    def decision(self) -> Optional[ConfirmationDecision]:
        return self._decision

    async def wait(self, timeout: Optional[float] = None) -> Optional[ConfirmationDecision]:
        if self._event.is_set():
            return self._decision
        try:
            await asyncio.wait_for(self._event.wait(), timeout)
        except asyncio.TimeoutError:
            return None
        return self._decision


class ConfirmationStore:
    """Pending step confirmations plus decision history.

    When ``db_path`` is given, requests and decisions are mirrored into SQLite
    so a restarted process can list what was still awaiting an answer.
    """

    def __init__(self, *, db_path: Optional[Path] = None) -> None:
        self._db_path = Path(db_path) if db_path is not None else None
        self._pending: Dict[str, ConfirmationTicket] = {}
        self._history: Dict[str, ConfirmationDecision] = {}
        self._lock = Lock()
        self._db_lock = Lock()
        self._conn: Optional[sqlite3.Connection] = None
        if self._db_path is not None:
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(str(self._db_path), check_same_thread=False)
            self._init_db()
            self._load_from_db()

    # ------------------------------------------------------------------
    # Database helpers
    # ------------------------------------------------------------------
    def _execute(self, sql: str, params: Iterable[Any] = ()) -> None:
        if self._conn is None:
            raise RuntimeError("SQLite connection not initialised")
        with self._db_lock:
            self._conn.execute(sql, tuple(params))
            self._conn.commit()

    def _init_db(self) -> None:
        assert self._conn is not None
        with self._db_lock:
            self._conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS confirmations (
                    id TEXT PRIMARY KEY,
                    created_at REAL NOT NULL,
                    task_id TEXT NOT NULL,
                    step_id TEXT NOT NULL,
                    step_title TEXT,
                    reason TEXT,
                    context TEXT,
                    status TEXT NOT NULL,
                    decided_at REAL,
                    reviewer TEXT,
                    message TEXT,
                    approved INTEGER
                );
                """
            )
            self._conn.commit()

    def _load_from_db(self) -> None:
        assert self._conn is not None
        with self._db_lock:
            self._conn.row_factory = sqlite3.Row
            rows = self._conn.execute("SELECT * FROM confirmations").fetchall()
            self._conn.row_factory = None
        for row in rows:
            request = ConfirmationRequest(
                id=row["id"],
                created_at=row["created_at"],
                task_id=row["task_id"],
                step_id=row["step_id"],
                step_title=row["step_title"] or "",
                reason=row["reason"],
                context=_json_loads(row["context"]) or {},
            )
            if row["status"] == "pending":
                self._pending[request.id] = ConfirmationTicket(request=request)
            else:
                self._history[request.id] = ConfirmationDecision(
                    request_id=request.id,
                    approved=bool(row["approved"]),
                    reviewer=row["reviewer"] or "",
                    decided_at=row["decided_at"] or 0.0,
                    message=row["message"],
                )

    # ------------------------------------------------------------------
    # Confirmation workflow
    # ------------------------------------------------------------------
    def create_request(self, request: ConfirmationRequest) -> ConfirmationTicket:
        ticket = ConfirmationTicket(request=request)
        with self._lock:
            if request.id in self._pending or request.id in self._history:
                raise ValueError(f"Confirmation id already tracked: {request.id}")
            self._pending[request.id] = ticket
        if self._conn is not None:
            self._execute(
                """
                INSERT INTO confirmations (id, created_at, task_id, step_id, step_title, reason, context, status)
                VALUES (?, ?, ?, ?, ?, ?, ?, 'pending')
                """,
                (
                    request.id,
                    request.created_at,
                    request.task_id,
                    request.step_id,
                    request.step_title,
                    request.reason,
                    _json_dumps(request.context),
                ),
            )
        return ticket

    def list_pending(self) -> List[ConfirmationRequest]:
        with self._lock:
            return [ticket.request for ticket in self._pending.values()]

    def list_decisions(self) -> List[ConfirmationDecision]:
        with self._lock:
            return list(self._history.values())

    def resolve(self, request_id: str, decision: ConfirmationDecision) -> None:
        with self._lock:
            ticket = self._pending.pop(request_id, None)
            if ticket is None:
                raise KeyError(request_id)
            self._history[request_id] = decision
        if self._conn is not None:
            self._execute(
                """
                UPDATE confirmations
                SET status = 'resolved', decided_at = ?, reviewer = ?, message = ?, approved = ?
                WHERE id = ?
                """,
                (
                    decision.decided_at,
                    decision.reviewer,
                    decision.message,
                    1 if decision.approved else 0,
                    request_id,
                ),
            )
        ticket.resolve(decision)

    def close(self) -> None:
        if self._conn is not None:
            with self._db_lock:
                self._conn.close()
            self._conn = None


__all__ = ["ConfirmationStore", "ConfirmationTicket"]
