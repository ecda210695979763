"""Planning manager: the single entry point composing the planning core.

One :class:`PlanningManager` owns the goal/task tree and the task queue of a
single agent. Every public mutator is a coroutine serialised by one
``asyncio.Lock`` so that oracle calls (which suspend) can never interleave
with another mutation of the same planner.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Set

from ..governance.confirmation_gate import ConfirmationGate
from ..observability.logging import get_logger
from .attention import AttentionPrioritizer, FocusTracker
from .collaborators import AttentionCollaborator, MemoryCollaborator, coerce_focus, resolve
from .config import PlanningConfig
from .contingency import FallbackStrategyManager
from .decomposition import DecompositionResult, GoalDecomposer
from .events import EventChannel
from .execution_order import ExecutionOrderCalculator
from .executor import TacticalExecutor
from .oracles import (
    ConfirmationMessageOracle,
    ContinuityOracle,
    DecompositionOracle,
    InterruptionDecision,
    InterruptionResponseInterpreter,
    StepOracle,
)
from .snapshot import PlanningSnapshot
from .steps import StepSequenceManager
from .switcher import ASSESS, PREEMPT, STAY, TaskContext, TaskSwitcher, interruption_state
from .task_queue import TaskQueueManager
from .temporal import TemporalScheduler
from .tree import TreeManager
from .types import (
    FocusState,
    GoalTaskNode,
    PendingInterruption,
    PlanningStats,
    ProcessQueueResult,
    Task,
    TaskStep,
    UID,
    new_id,
    normalise_urgency,
)


logger = get_logger(__name__)


@dataclass(frozen=True)
class InterruptionOutcome:
    """What happened when a pending interruption was resolved."""

    action: str
    task: Optional[Task]
    interruption: PendingInterruption
    reasoning: str = ""


class PlanningManager:
    def __init__(
        self,
        agent_id: str,
        *,
        config: PlanningConfig | None = None,
        decomposition_oracle: DecompositionOracle | None = None,
        step_oracle: StepOracle | None = None,
        continuity_oracle: ContinuityOracle | None = None,
        message_oracle: ConfirmationMessageOracle | None = None,
        interpreter: InterruptionResponseInterpreter | None = None,
        memory: MemoryCollaborator | None = None,
        attention: AttentionCollaborator | None = None,
        events: EventChannel | None = None,
        confirmation_gate: ConfirmationGate | None = None,
        clock: Callable[[], float] | None = None,
        trees: TreeManager | None = None,
        queue: TaskQueueManager | None = None,
    ) -> None:
        self.agent_id = agent_id
        self.config = config or PlanningConfig()
        self._clock = clock or time.time
        self._events = events or EventChannel(context={"agent_id": agent_id}, clock=self._clock)
        self._memory = memory
        self._attention = attention if attention is not None else FocusTracker()

        self._trees = trees or TreeManager(clock=self._clock)
        self._order = ExecutionOrderCalculator(self._trees)
        self._queue = queue or TaskQueueManager(clock=self._clock)
        self._prioritizer = AttentionPrioritizer(self.config)
        self._steps = StepSequenceManager(step_oracle)
        self._executor = TacticalExecutor(
            self._steps,
            config=self.config,
            events=self._events,
            gate=confirmation_gate,
            clock=self._clock,
        )
        self._switcher = TaskSwitcher(
            continuity=continuity_oracle,
            messages=message_oracle,
            interpreter=interpreter,
            history_limit=self.config.switch_history_limit,
            default_strength=self.config.default_continuity_strength,
            clock=self._clock,
        )
        self._temporal = TemporalScheduler(clock=self._clock)
        self._fallbacks = FallbackStrategyManager(max_depth=self.config.max_fallback_depth)
        self._decomposer = GoalDecomposer(
            self._trees,
            oracle=decomposition_oracle,
            steps=self._steps,
            memory=memory,
            config=self.config,
            clock=self._clock,
        )

        self._stats = PlanningStats()
        self._pending_interruption: Optional[PendingInterruption] = None
        # Candidates the user chose to queue while the current task runs.
        self._deferred: Set[UID] = set()
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def trees(self) -> TreeManager:
        return self._trees

    @property
    def queue(self) -> TaskQueueManager:
        return self._queue

    @property
    def executor(self) -> TacticalExecutor:
        return self._executor

    @property
    def stats(self) -> PlanningStats:
        return self._stats

    def set_memory(self, memory: MemoryCollaborator | None) -> None:
        self._memory = memory
        self._decomposer.set_memory(memory)

    # ------------------------------------------------------------------
    # Collaborator plumbing
    # ------------------------------------------------------------------

    async def _notify_memory(self, hook: str, *args: Any, **kwargs: Any) -> None:
        if self._memory is None:
            return
        method = getattr(self._memory, hook, None)
        if method is None:
            return
        try:
            await resolve(method(*args, **kwargs))
        except Exception as exc:
            logger.warning("memory_hook_failed", hook=hook, error=str(exc))

    async def _focus(self) -> FocusState:
        try:
            return coerce_focus(await resolve(self._attention.get_focus(self.agent_id)))
        except Exception as exc:
            logger.warning("focus_lookup_failed", error=str(exc))
            return FocusState()

    async def _set_focus(self, task: Task, conversation_id: Optional[str]) -> None:
        try:
            await resolve(self._attention.update_task_focus(self.agent_id, task.title, task.urgency, conversation_id))
        except Exception as exc:
            logger.warning("focus_update_failed", task_id=task.id, error=str(exc))

    async def _clear_focus(self) -> None:
        try:
            await resolve(self._attention.clear_task_focus(self.agent_id))
        except Exception as exc:
            logger.warning("focus_clear_failed", error=str(exc))

    def _emit_queue_update(self) -> None:
        self._events.queue_update(self.get_queue_state())

    # ------------------------------------------------------------------
    # Creating work
    # ------------------------------------------------------------------

    def _mirror_task(self, task: Task) -> None:
        if self._trees.get_node(task.id) is not None:
            return
        node = GoalTaskNode.task(
            task.title,
            description=task.description,
            urgency=task.urgency,
            priority=task.priority,
            source=task.source,
            now=task.created_at,
            ident=task.id,
            metadata=task.metadata,
        )
        self._trees.add_node(node, task.parent_id)
        parent = self._trees.get_node(node.parent_id)
        task.parent_id = parent.id if parent is not None else None

    async def _add_task(self, task: Task, conversation_id: Optional[str] = None) -> Task:
        existing = self._queue.get_task(task.id) if task.id else None
        if existing is not None:
            return existing
        self._queue.add_task(task)
        self._mirror_task(task)
        await self._notify_memory(
            "on_task_created", task.id, task.title, task.description, task.urgency, parent_id=task.parent_id
        )
        logger.info("task_added", task_id=task.id, urgency=task.urgency, source=task.source, type=task.type)
        return task

    async def add_task(self, task: Task, *, conversation_id: Optional[str] = None) -> Task:
        """Enqueue ``task`` and mirror it into the tree under the same id."""

        async with self._lock:
            added = await self._add_task(task, conversation_id)
            self._emit_queue_update()
            return added

    async def create_goal(
        self,
        title: str,
        description: str = "",
        *,
        parent_id: Optional[UID] = None,
        source: str = "user",
        order: int = 0,
        conversation_id: Optional[str] = None,
    ) -> GoalTaskNode:
        async with self._lock:
            goal = GoalTaskNode.goal(title, description=description, source=source, order=order, now=self._clock())
            self._trees.add_node(goal, parent_id)
            await self._notify_memory("on_goal_created", goal.id, goal.title, goal.description, conversation_id)
            logger.info("goal_created", goal_id=goal.id, parent_id=goal.parent_id)
            return goal

    async def create_task(
        self,
        title: str,
        description: str = "",
        *,
        parent_id: Optional[UID] = None,
        urgency: str = "medium",
        priority: float = 0.5,
        type: str = "immediate",
        source: str = "user",
        scheduled_for: Optional[float] = None,
        dependencies: Iterable[UID] = (),
        prospective_memory_id: Optional[str] = None,
        metadata: Mapping[str, Any] | None = None,
        conversation_id: Optional[str] = None,
    ) -> Task:
        task = Task(
            title=title,
            id=new_id(),
            description=description,
            type=type,
            source=source,
            priority=priority,
            urgency=urgency,
            dependencies=list(dependencies),
            metadata=dict(metadata or {}),
            prospective_memory_id=prospective_memory_id,
            scheduled_for=scheduled_for,
            parent_id=parent_id,
        )
        async with self._lock:
            added = await self._add_task(task, conversation_id)
            self._emit_queue_update()
            return added

    async def _register_decomposition(self, result: DecompositionResult) -> None:
        for node in result.cancelled:
            if node.type == "task" and self._cancel_record(node.id):
                self._stats.total_cancelled += 1
        for node in result.created:
            if node.type == "goal":
                await self._notify_memory("on_goal_created", node.id, node.title, node.description)
                continue
            task = Task(
                title=node.title,
                id=node.id,
                description=node.description,
                source=node.source,
                priority=node.priority if node.priority is not None else 0.5,
                urgency=node.urgency or "medium",
                created_at=node.created_at,
                updated_at=node.updated_at,
                metadata=dict(node.metadata),
                parent_id=node.parent_id,
            )
            self._queue.add_task(task)
            await self._notify_memory(
                "on_task_created", task.id, task.title, task.description, task.urgency, parent_id=task.parent_id
            )

    async def decompose_goal(self, goal_id: UID, urgency: str = "medium") -> Optional[DecompositionResult]:
        async with self._lock:
            goal = self._trees.get_node(goal_id)
            if not self._decomposer.should_decompose(goal):
                return None
            assert goal is not None
            result = await self._decomposer.decompose(goal, normalise_urgency(urgency), await self._focus())
            await self._register_decomposition(result)
            self._emit_queue_update()
            return result

    async def redecompose_goals(self, urgency: Optional[str] = None) -> List[DecompositionResult]:
        """Redo every active goal whose decomposition context went stale."""

        async with self._lock:
            focus = await self._focus()
            results: List[DecompositionResult] = []
            for goal in self._trees.get_nodes_by_type("goal"):
                stored = self._decomposer.stored_context(goal)
                if stored is None:
                    continue
                goal_urgency = normalise_urgency(urgency or stored.get("urgency"))
                result = await self._decomposer.redecompose(goal, goal_urgency, focus)
                if result is None:
                    continue
                await self._register_decomposition(result)
                results.append(result)
            if results:
                if self._queue.active is None:
                    await self._clear_focus()
                self._emit_queue_update()
            return results

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    def _ready_candidates(self) -> List[Task]:
        eligible, _ = self._temporal.split(self._queue.pending)
        ready_ids = set(self._order.get_execution_path())
        return [
            task
            for task in eligible
            if self._trees.get_node(task.id) is None or task.id in ready_ids
        ]

    def _interruption_is_current(self, pending: PendingInterruption) -> bool:
        active = self._queue.active
        return (
            active is not None
            and active.id == pending.current_task.id
            and self._queue.get_pending(pending.new_task.id) is not None
        )

    async def _start(self, task: Task, focus: FocusState, conversation_id: Optional[str]) -> Optional[Task]:
        started = self._queue.start_task(task.id)
        if started is None:
            return None
        self._switcher.restore_context(started)
        if not await self._executor.start_execution(started, focus):
            self._queue.requeue_active()
            return None
        self._trees.set_task_status(started.id, "active")
        self._trees.set_active_node(started.id)
        self._deferred.clear()
        await self._set_focus(started, conversation_id)
        logger.info("task_started", task_id=started.id, title=started.title, urgency=started.urgency)
        self._emit_queue_update()
        return started

    async def _preempt(self, candidate: Task, reason: str, conversation_id: Optional[str]) -> Optional[Task]:
        previous = self._queue.active
        self._switcher.record_switch(previous, candidate, reason)
        self._executor.clear()
        requeued = self._queue.requeue_active()
        if requeued is not None:
            self._trees.set_task_status(requeued.id, "pending")
        self._trees.set_active_node(None)
        self._pending_interruption = None
        started = await self._start(candidate, await self._focus(), conversation_id)
        logger.info(
            "task_preempted",
            previous_task_id=previous.id if previous else None,
            task_id=candidate.id,
            reason=reason,
        )
        return started

    async def _process_queue(
        self,
        conversation_id: Optional[str] = None,
        original_user_message: str = "",
    ) -> ProcessQueueResult:
        pending = self._pending_interruption
        if pending is not None:
            if self._interruption_is_current(pending):
                return ProcessQueueResult.for_interruption(pending)
            logger.info("interruption_dropped", new_task_id=pending.new_task.id)
            self._pending_interruption = None

        active = self._queue.active
        focus = await self._focus()
        completed = self._queue.completed_ids()
        ordered = self._prioritizer.prioritize(self._ready_candidates(), focus, completed)
        ordered_ids = {task.id for task in ordered}
        rest = [task for task in self._queue.pending if task.id not in ordered_ids]
        self._queue.set_pending_tasks(ordered + rest)

        if not ordered:
            return ProcessQueueResult.for_task(active) if active is not None else ProcessQueueResult.none()

        if active is None:
            started = await self._start(ordered[0], focus, conversation_id)
            return ProcessQueueResult.for_task(started) if started is not None else ProcessQueueResult.none()

        active.priority = self._prioritizer.score(active, focus, completed)
        undeferred = [task for task in ordered if task.id not in self._deferred]
        if not undeferred:
            return ProcessQueueResult.for_task(active)
        candidate = undeferred[0]
        decision = self._switcher.classify(active, candidate)
        if decision == PREEMPT:
            started = await self._preempt(candidate, "critical", conversation_id)
            return ProcessQueueResult.for_task(started) if started is not None else ProcessQueueResult.none()
        if decision == STAY:
            return ProcessQueueResult.for_task(active)

        assert decision == ASSESS
        assessment = await self._switcher.assess(active, candidate, focus)
        if not assessment.should_switch:
            logger.info("switch_declined", task_id=active.id, candidate_id=candidate.id, reasoning=assessment.reasoning)
            return ProcessQueueResult.for_task(active)

        message = await self._switcher.confirmation_message(active, candidate, original_user_message)
        interruption = PendingInterruption(
            current_task=active,
            new_task=candidate,
            original_user_message=original_user_message,
            assessment=assessment,
            created_at=self._clock(),
            conversation_id=conversation_id,
            message=message,
        )
        self._pending_interruption = interruption
        self._events.interruption_request(
            message,
            current_task_id=active.id,
            new_task_id=candidate.id,
            conversation_id=conversation_id,
        )
        logger.info("interruption_requested", task_id=active.id, candidate_id=candidate.id)
        return ProcessQueueResult.for_interruption(interruption)

    async def process_queue(
        self,
        conversation_id: Optional[str] = None,
        original_user_message: str = "",
    ) -> ProcessQueueResult:
        """Continue, start, preempt or ask: pick what the agent works on next."""

        async with self._lock:
            return await self._process_queue(conversation_id, original_user_message)

    def get_pending_interruption(self) -> Optional[PendingInterruption]:
        return self._pending_interruption

    def get_interruption_state(self) -> str:
        return interruption_state(self._queue.active, self._pending_interruption)

    async def handle_interruption_confirmation(
        self,
        user_text: Optional[str] = None,
        *,
        decision: InterruptionDecision | str | None = None,
    ) -> Optional[InterruptionOutcome]:
        """Resolve the outstanding interruption from a reply or an explicit decision."""

        async with self._lock:
            pending = self._pending_interruption
            if pending is None:
                return None
            if not self._interruption_is_current(pending):
                self._pending_interruption = None
                return None

            if isinstance(decision, str):
                decision = InterruptionDecision.from_action(decision)
            if decision is None:
                decision = await self._switcher.interpret(user_text or "")
            self._pending_interruption = None
            current, candidate = pending.current_task, pending.new_task

            if decision.proceed:
                started = await self._preempt(candidate, "confirmed", pending.conversation_id)
                outcome = InterruptionOutcome("proceed", started, pending, decision.reasoning)
            elif decision.add_to_queue:
                self._deferred.add(candidate.id)
                outcome = InterruptionOutcome("add_to_queue", current, pending, decision.reasoning)
                self._emit_queue_update()
            else:
                self._cancel_record(candidate.id)
                self._trees.cancel_node(candidate.id)
                self._stats.total_cancelled += 1
                outcome = InterruptionOutcome("discard", current, pending, decision.reasoning)
                self._emit_queue_update()
            logger.info("interruption_resolved", action=outcome.action, candidate_id=candidate.id)
            return outcome

    async def promote_strategic(self, task_id: UID) -> bool:
        async with self._lock:
            promoted = self._queue.promote_strategic(task_id)
            if promoted is None:
                return False
            self._emit_queue_update()
            return True

    async def sync_prospective_tasks(
        self,
        intentions: Iterable[Mapping[str, Any]],
        *,
        prune: bool = False,
    ) -> List[Task]:
        """Bring prospective-memory intentions into the queue.

        Each intention carries an ``id`` plus ``title`` (or ``content``) and
        may carry ``description``, ``urgency``, ``priority`` and a trigger
        time (``scheduled_for`` / ``trigger_time``). Intentions already
        represented in the queue are skipped. With ``prune`` pending
        prospective tasks whose intention disappeared are cancelled.
        """

        async with self._lock:
            known: Dict[str, Task] = {}
            for bucket in (self._queue.pending, self._queue.queue.strategic):
                for task in bucket:
                    if task.prospective_memory_id:
                        known[task.prospective_memory_id] = task
            active = self._queue.active
            if active is not None and active.prospective_memory_id:
                known[active.prospective_memory_id] = active
            for task in self._queue.queue.completed:
                if task.prospective_memory_id:
                    known.setdefault(task.prospective_memory_id, task)

            seen: Set[str] = set()
            added: List[Task] = []
            for intention in intentions:
                memory_id = str(intention.get("id") or "")
                title = str(intention.get("title") or intention.get("content") or "").strip()
                if not memory_id or not title:
                    continue
                seen.add(memory_id)
                if memory_id in known:
                    continue
                trigger = intention.get("scheduled_for", intention.get("trigger_time"))
                task = Task(
                    title=title,
                    id=new_id(),
                    description=str(intention.get("description") or ""),
                    type="scheduled" if trigger is not None else "immediate",
                    source="prospective",
                    priority=intention.get("priority") if intention.get("priority") is not None else 0.5,
                    urgency=normalise_urgency(intention.get("urgency")),
                    prospective_memory_id=memory_id,
                    scheduled_for=float(trigger) if trigger is not None else None,
                )
                added.append(await self._add_task(task))

            if prune:
                for memory_id, task in known.items():
                    if memory_id not in seen and task.status == "pending":
                        self._cancel_record(task.id)
                        self._trees.cancel_node(task.id)
                        self._stats.total_cancelled += 1
            if added or prune:
                self._emit_queue_update()
            return added

    # ------------------------------------------------------------------
    # Tactical progress
    # ------------------------------------------------------------------

    def get_current_task(self) -> Optional[Task]:
        return self._queue.active

    def get_current_step(self) -> Optional[TaskStep]:
        return self._executor.get_current_step()

    def get_steps(self) -> List[TaskStep]:
        return self._executor.get_steps()

    def current_step_requires_confirmation(self) -> bool:
        step = self._executor.get_current_step()
        return bool(step and step.requires_confirmation and not self._executor.is_step_confirmed(step))

    async def confirm_current_step(self) -> bool:
        """Ask for the go-ahead on a flagged step.

        The planner lock is not held while waiting for the answer so other
        callers can keep mutating the planner in the meantime.
        """

        return await self._executor.confirm_current_step()

    async def complete_current_step(self, result: Any = None, *, conversation_id: Optional[str] = None) -> bool:
        async with self._lock:
            task = self._queue.active
            step = self._executor.get_current_step()
            if task is None or step is None:
                return False
            if not self._executor.complete_current_step(result):
                return False
            self._trees.update_node_progress(task.id, task.progress)
            await self._notify_memory("on_step_completed", task.id, step.title, step.order, conversation_id)
            return True

    async def update_progress(self, progress: float) -> bool:
        async with self._lock:
            task = self._queue.active
            if task is None or not self._executor.update_progress(task, progress):
                return False
            self._trees.update_node_progress(task.id, task.progress)
            return True

    async def check_and_complete_task_if_done(
        self,
        result_content: Any = None,
        has_tool_calls: bool = False,
        *,
        conversation_id: Optional[str] = None,
    ) -> bool:
        """Complete the active task once its steps are exhausted.

        A task with no steps (or no remaining step) also completes when the
        latest turn made no tool calls.
        """

        async with self._lock:
            if self._queue.active is None:
                return False
            steps = self._executor.get_steps()
            all_done = bool(steps) and self._executor.are_all_steps_completed()
            no_more = not steps or self._executor.get_current_step() is None
            if not (all_done or (no_more and not has_tool_calls)):
                return False
            await self._complete_current(result_content, conversation_id)
            return True

    # ------------------------------------------------------------------
    # Outcomes
    # ------------------------------------------------------------------

    def _record_completion(self, elapsed_ms: float) -> None:
        stats = self._stats
        stats.total_completed += 1
        stats.last_completed_at = self._clock()
        n = stats.total_completed
        stats.average_completion_time = (stats.average_completion_time * (n - 1) + elapsed_ms) / n

    async def _complete_current(self, result: Any, conversation_id: Optional[str]) -> Optional[Task]:
        task = self._queue.active
        if task is None:
            return None
        elapsed_ms = self._executor.get_execution_time() or 0.0
        self._executor.complete_execution(task, result)
        self._queue.complete_task(result)
        completed_goals = self._trees.complete_task(task.id, result)
        self._record_completion(elapsed_ms)
        self._switcher.clear_context(task.id)
        self._deferred.clear()
        await self._notify_memory("on_task_completed", task.id, task.title, result, elapsed_ms, conversation_id)
        for goal in completed_goals:
            await self._notify_memory("on_goal_completed", goal.id, goal.title)
        if task.prospective_memory_id:
            await self._notify_memory("complete_prospective_memory", task.prospective_memory_id)
        await self._clear_focus()
        logger.info("task_completed", task_id=task.id, elapsed_ms=elapsed_ms, goals_completed=len(completed_goals))
        self._emit_queue_update()
        outcome = await self._process_queue(conversation_id)
        return outcome.task if outcome.type == "task" else None

    async def complete_current_task(
        self,
        result: Any = None,
        *,
        conversation_id: Optional[str] = None,
    ) -> Optional[Task]:
        """Complete the active task and return the task that runs next, if any.

        Returns ``None`` without touching any state when nothing is active.
        """

        async with self._lock:
            return await self._complete_current(result, conversation_id)

    async def _apply_fallback(self, task: Task, error: str) -> Optional[Task]:
        plan = self._fallbacks.handle_failure(task, error)
        if plan is None:
            return None
        fallback = self._fallbacks.build_task(task, plan, now=self._clock())
        await self._add_task(fallback)
        focus = await self._focus()
        completed = self._queue.completed_ids()
        self._queue.set_pending_tasks(self._prioritizer.prioritize(self._queue.pending, focus, completed))
        await self._notify_memory("on_fallback_triggered", task.id, task.title, fallback.id, fallback.title, error)
        logger.info("fallback_enqueued", task_id=task.id, fallback_task_id=fallback.id)
        return fallback

    async def _fail_current(self, error: str, conversation_id: Optional[str]) -> bool:
        task = self._queue.active
        if task is None:
            return False
        self._executor.fail_execution(task, error)
        self._queue.fail_task(error)
        self._trees.fail_task(task.id, error)
        self._stats.total_failed += 1
        self._switcher.clear_context(task.id)
        self._deferred.clear()
        await self._notify_memory("on_task_failed", task.id, task.title, error)
        await self._apply_fallback(task, error)
        await self._clear_focus()
        logger.info("task_failed", task_id=task.id, error=error)
        self._emit_queue_update()
        await self._process_queue(conversation_id)
        return True

    async def fail_current_task(self, error: str, *, conversation_id: Optional[str] = None) -> bool:
        async with self._lock:
            return await self._fail_current(error, conversation_id)

    async def handle_step_failure(
        self,
        error: str,
        *,
        step: Optional[TaskStep] = None,
        conversation_id: Optional[str] = None,
    ) -> Optional[Task]:
        """Route a failed step through the fallback manager.

        With a registered fallback a replacement task is queued (the current
        task stays active) and returned. Otherwise the current task fails.
        """

        async with self._lock:
            task = self._queue.active
            if task is None:
                return None
            failed_step = step or self._executor.fail_current_step(error)
            step_payload = failed_step.to_dict() if failed_step is not None else {}
            await self._notify_memory(
                "on_step_failed",
                task.id,
                step_payload.get("title", ""),
                step_payload.get("order", 0),
                error,
                conversation_id,
            )
            fallback = await self._apply_fallback(task, error)
            self._events.step_failure(step_payload, error, fallback.to_dict() if fallback is not None else None)
            if fallback is not None:
                self._emit_queue_update()
                return fallback
            await self._fail_current(error, conversation_id)
            return None

    def register_fallback(self, task_id: UID, description: str, priority: float = 0.5) -> UID:
        return self._fallbacks.register_fallback(task_id, description, priority)

    def _cancel_record(self, task_id: UID) -> bool:
        active = self._queue.active
        was_active = active is not None and active.id == task_id
        cancelled = self._queue.cancel_task(task_id)
        if cancelled is None:
            return False
        if was_active:
            self._executor.clear()
            self._trees.set_active_node(None)
        self._switcher.clear_context(task_id)
        self._deferred.discard(task_id)
        pending = self._pending_interruption
        if pending is not None and task_id in (pending.current_task.id, pending.new_task.id):
            self._pending_interruption = None
        return True

    async def cancel_task(self, task_id: UID, *, conversation_id: Optional[str] = None) -> bool:
        """Cancel a pending, strategic or active task, or a whole goal.

        Cancelling the active task frees the executor and schedules the next
        ready task.
        """

        async with self._lock:
            active = self._queue.active
            node = self._trees.get_node(task_id)
            if node is not None and node.type == "goal":
                changed = self._trees.cancel_node(task_id)
                ids = [member.id for member in changed if member.type == "task"]
            else:
                changed = self._trees.cancel_node(task_id) if node is not None else []
                ids = [task_id]
            cancelled = [task for task in ids if self._cancel_record(task)]
            if not cancelled and not changed:
                return False
            self._stats.total_cancelled += len(cancelled)
            logger.info("task_cancelled", task_id=task_id, cancelled=len(cancelled))
            if active is not None and active.id in cancelled:
                await self._clear_focus()
                self._emit_queue_update()
                await self._process_queue(conversation_id)
            else:
                self._emit_queue_update()
            return True

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    def get_task_context(self, task_id: UID) -> Optional[TaskContext]:
        return self._switcher.get_task_context(task_id)

    def get_switch_history(self) -> List[Dict[str, Any]]:
        return self._switcher.get_switch_history()

    def get_queue_state(self) -> Dict[str, Any]:
        history = self._switcher.get_switch_history()
        step = self._executor.get_current_step()
        pending = self._pending_interruption
        return {
            "agent_id": self.agent_id,
            "state": self.get_interruption_state(),
            "queue": self._queue.to_dict(),
            "tree": self._trees.to_dict(),
            "current_task": self._queue.active.to_dict() if self._queue.active is not None else None,
            "current_step": step.to_dict() if step is not None else None,
            "ready": self._order.get_execution_path(),
            "pending_interruption": pending.to_dict() if pending is not None else None,
            "last_switched": history[-1]["timestamp"] if history else None,
            "stats": self._stats.to_dict(),
        }

    def snapshot(self) -> PlanningSnapshot:
        switcher_state = self._switcher.to_dict()
        pending = self._pending_interruption
        return PlanningSnapshot(
            agent_id=self.agent_id,
            created_at=self._clock(),
            tree=self._trees.to_dict(),
            queue=self._queue.to_dict(),
            stats=self._stats.to_dict(),
            contexts=switcher_state["contexts"],
            switch_history=switcher_state["history"],
            fallbacks=self._fallbacks.to_dict(),
            pending_interruption=pending.to_dict() if pending is not None else None,
        )

    @classmethod
    def restore(cls, snapshot: PlanningSnapshot | Mapping[str, Any], **kwargs: Any) -> "PlanningManager":
        """Rebuild a planner from a snapshot; collaborators come from ``kwargs``."""

        if not isinstance(snapshot, PlanningSnapshot):
            snapshot = PlanningSnapshot.model_validate(snapshot)
        clock = kwargs.get("clock")
        trees = TreeManager.from_dict(snapshot.tree.model_dump(), clock=clock)
        queue = TaskQueueManager.from_dict(snapshot.queue.model_dump(), clock=clock)
        manager = cls(snapshot.agent_id, trees=trees, queue=queue, **kwargs)
        manager._stats = PlanningStats(**snapshot.stats.model_dump())
        manager._switcher.load({"contexts": snapshot.contexts, "history": snapshot.switch_history})
        manager._fallbacks.load(snapshot.fallbacks)
        if queue.active is not None:
            manager._executor.resume_execution(queue.active)
        if snapshot.pending_interruption:
            manager._pending_interruption = manager._rebuild_interruption(snapshot.pending_interruption)
        return manager

    def _rebuild_interruption(self, payload: Mapping[str, Any]) -> Optional[PendingInterruption]:
        restored = PendingInterruption.from_dict(payload)
        current = self._queue.active
        candidate = self._queue.get_pending(restored.new_task.id)
        if current is None or candidate is None or current.id != restored.current_task.id:
            return None
        restored.current_task = current
        restored.new_task = candidate
        return restored


__all__ = ["InterruptionOutcome", "PlanningManager"]
