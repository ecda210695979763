"""Step-wise execution of the single active task."""

from __future__ import annotations

import time
from typing import Any, Callable, List, Optional

from ..governance.confirmation_gate import ConfirmationGate
from ..observability.logging import get_logger
from .config import PlanningConfig
from .events import EventChannel
from .steps import PRECOMPUTED_STEPS_KEY, STEPS_KEY, StepSequenceManager, load_steps
from .types import FocusState, Task, TaskStep, clamp_progress


logger = get_logger(__name__)

CONFIRMED_STEPS_KEY = "confirmed_steps"


class TacticalExecutor:
    """Holds the active task and walks it through its steps.

    The executor is the owner of the single-active invariant on the tactical
    side: :meth:`start_execution` refuses while another task is running.
    Steps live in ``task.metadata["steps"]`` so that a preempted task resumes
    where it stopped.
    """

    def __init__(
        self,
        step_manager: StepSequenceManager | None = None,
        *,
        config: PlanningConfig | None = None,
        events: EventChannel | None = None,
        gate: ConfirmationGate | None = None,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self._steps_manager = step_manager or StepSequenceManager()
        self._config = config or PlanningConfig()
        self._events = events or EventChannel()
        self._gate = gate
        self._clock = clock or time.time
        self._task: Optional[Task] = None
        self._steps: List[TaskStep] = []
        self._started_at: Optional[float] = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def current_task(self) -> Optional[Task]:
        return self._task

    def is_task_active(self, task_id: str) -> bool:
        return self._task is not None and self._task.id == task_id

    async def start_execution(self, task: Task, focus: FocusState | None = None) -> bool:
        if self._task is not None and self._task.id != task.id:
            logger.warning("executor_busy", active_task_id=self._task.id, requested_task_id=task.id)
            return False
        steps = load_steps(task.metadata.get(STEPS_KEY))
        if steps is None:
            steps = load_steps(task.metadata.pop(PRECOMPUTED_STEPS_KEY, None))
        if steps is None:
            if self._steps_manager.has_oracle:
                steps = await self._steps_manager.decompose(task, task.urgency, focus)
            else:
                steps = self._steps_manager.create_steps(task)
        self._task = task
        self._steps = steps
        self._started_at = self._clock()
        task.status = "active"
        task.updated_at = self._started_at
        if steps:
            task.progress = self._steps_manager.calculate_progress(steps)
        self._sync_metadata()
        logger.info("execution_started", task_id=task.id, steps=len(steps))
        return True

    def resume_execution(self, task: Task) -> bool:
        """Re-attach a task that was already active, e.g. after a restore.

        Steps come from the task metadata only; the execution clock restarts.
        """

        if self._task is not None and self._task.id != task.id:
            return False
        self._task = task
        self._steps = load_steps(task.metadata.get(STEPS_KEY)) or []
        self._started_at = self._clock()
        return True

    def set_steps(self, steps: List[TaskStep]) -> None:
        self._steps = list(steps)
        self._sync_metadata()

    def _sync_metadata(self) -> None:
        if self._task is None:
            return
        self._task.metadata[STEPS_KEY] = [step.to_dict() for step in self._steps]

    def _confirmed_ids(self) -> List[str]:
        if self._task is None:
            return []
        return self._task.metadata.setdefault(CONFIRMED_STEPS_KEY, [])

    def clear(self) -> None:
        self._task = None
        self._steps = []
        self._started_at = None

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def get_current_step(self) -> Optional[TaskStep]:
        return self._steps_manager.current_step(self._steps)

    def get_steps(self) -> List[TaskStep]:
        return list(self._steps)

    def are_all_steps_completed(self) -> bool:
        return self._steps_manager.all_completed(self._steps)

    def is_step_confirmed(self, step: TaskStep) -> bool:
        return not step.requires_confirmation or step.id in self._confirmed_ids()

    async def confirm_current_step(self) -> bool:
        """Obtain the go-ahead for a flagged current step.

        Emits ``step_confirmation`` and waits on the confirmation gate when one
        is wired. Without a gate the step is confirmed automatically when
        ``auto_confirm_steps`` is enabled. Raises ``TimeoutError`` when the
        gate's wait elapses.
        """

        task = self._task
        step = self.get_current_step()
        if task is None or step is None:
            return False
        if self.is_step_confirmed(step):
            return True
        self._events.step_confirmation(step.to_dict(), task.id, step.confirmation_reason)
        if self._gate is not None:
            ticket = self._gate.request(
                task_id=task.id,
                step_id=step.id,
                step_title=step.title,
                reason=step.confirmation_reason,
            )
            approved = await self._gate.wait(ticket)
        elif self._config.auto_confirm_steps:
            logger.info("step_auto_confirmed", task_id=task.id, step_id=step.id)
            approved = True
        else:
            approved = False
        # The task may have been preempted while waiting; the answer stays with it.
        if approved:
            task.metadata.setdefault(CONFIRMED_STEPS_KEY, []).append(step.id)
        return approved

    def complete_current_step(self, result: Any = None) -> bool:
        if self._task is None:
            return False
        step = self.get_current_step()
        if step is None:
            return False
        if not self.is_step_confirmed(step):
            if self._gate is not None or not self._config.auto_confirm_steps:
                logger.info("step_awaiting_confirmation", task_id=self._task.id, step_id=step.id)
                return False
            self._events.step_confirmation(step.to_dict(), self._task.id, step.confirmation_reason)
            logger.info("step_auto_confirmed", task_id=self._task.id, step_id=step.id)
            self._confirmed_ids().append(step.id)
        self._steps_manager.complete_step(self._steps, step.id, result)
        progress = self._steps_manager.calculate_progress(self._steps)
        self.update_progress(self._task, progress)
        self._sync_metadata()
        self._events.step_progress(step.to_dict(), progress, True)
        return True

    def fail_current_step(self, error: str) -> Optional[TaskStep]:
        step = self.get_current_step()
        if self._task is None or step is None:
            return None
        step.error = error
        self._sync_metadata()
        return step

    # ------------------------------------------------------------------
    # Task outcome
    # ------------------------------------------------------------------

    def update_progress(self, task: Task, progress: float) -> bool:
        if not self.is_task_active(task.id):
            return False
        task.progress = clamp_progress(progress)
        task.updated_at = self._clock()
        return True

    def complete_execution(self, task: Task, result: Any = None) -> bool:
        if not self.is_task_active(task.id):
            return False
        task.status = "completed"
        task.progress = 100
        task.result = result
        task.updated_at = self._clock()
        self.clear()
        return True

    def fail_execution(self, task: Task, error: str) -> bool:
        if not self.is_task_active(task.id):
            return False
        task.status = "failed"
        task.error = error
        task.updated_at = self._clock()
        self.clear()
        return True

    # ------------------------------------------------------------------
    # Timing
    # ------------------------------------------------------------------

    def get_execution_time(self) -> Optional[float]:
        """Milliseconds since the current task started, or ``None``."""

        if self._started_at is None:
            return None
        return (self._clock() - self._started_at) * 1000.0

    def has_timed_out(self) -> bool:
        elapsed = self.get_execution_time()
        if elapsed is None:
            return False
        return elapsed > self._config.execution_timeout_s * 1000.0


__all__ = ["CONFIRMED_STEPS_KEY", "PRECOMPUTED_STEPS_KEY", "STEPS_KEY", "TacticalExecutor"]
