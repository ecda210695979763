from __future__ import annotations

import asyncio
from typing import Any, List

from plancore.src.core.events import EventChannel, InMemorySink
from plancore.src.core.manager import PlanningManager
from plancore.src.core.snapshot import PlanningSnapshot
from plancore.src.core.types import Task


class SwitchingContinuity:
    def __init__(self, should_switch: bool = True) -> None:
        self.should_switch = should_switch
        self.calls = 0

    def assess_switch(self, current, candidate, focus):
        self.calls += 1
        return {"should_switch": self.should_switch, "continuity_strength": 0.2, "reasoning": "unrelated work"}


class RecordingMemory:
    def __init__(self) -> None:
        self.calls: List[tuple[str, tuple[Any, ...]]] = []

    def get_relevant_memories(self, text, *, types=("semantic",), limit=5):
        return []

    def _record(self, name, *args):
        self.calls.append((name, args))

    def on_goal_created(self, goal_id, title, description, conversation_id=None):
        self._record("on_goal_created", goal_id)

    def on_goal_completed(self, goal_id, title):
        self._record("on_goal_completed", goal_id)

    def on_task_created(self, task_id, title, description, urgency, parent_id=None):
        self._record("on_task_created", task_id)

    async def on_task_completed(self, task_id, title, result, elapsed_ms, conversation_id=None):
        self._record("on_task_completed", task_id, elapsed_ms)

    def on_task_failed(self, task_id, title, error):
        self._record("on_task_failed", task_id, error)

    def on_fallback_triggered(self, task_id, title, fallback_id, fallback_title, error):
        raise RuntimeError("memory store is down")

    def complete_prospective_memory(self, memory_id):
        self._record("complete_prospective_memory", memory_id)

    def names(self) -> List[str]:
        return [name for name, _ in self.calls]


def _manager(clock, sink=None, **kwargs) -> PlanningManager:
    events = EventChannel(sinks=[sink] if sink is not None else [], context={"agent_id": "agent-1"}, clock=clock)
    return PlanningManager("agent-1", clock=clock, events=events, **kwargs)


def _active_count(manager: PlanningManager) -> int:
    state = manager.queue.to_dict()
    records = [*state["pending"], *state["completed"], *state["strategic"]]
    if state["active"] is not None:
        records.append(state["active"])
    return sum(1 for record in records if record["status"] == "active")


def _start_with_interruption(clock, sink=None, **kwargs):
    manager = _manager(clock, sink, continuity_oracle=SwitchingContinuity(), **kwargs)

    async def scenario():
        report = await manager.create_task("Write report", urgency="medium")
        await manager.process_queue()
        await manager.update_progress(40)
        build = await manager.create_task("Fix build", urgency="high")
        result = await manager.process_queue(conversation_id="conv-1", original_user_message="the build is red")
        return report, build, result

    report, build, result = asyncio.run(scenario())
    return manager, report, build, result


def test_first_task_is_started(clock):
    manager = _manager(clock)

    async def scenario():
        await manager.add_task(Task(title="Buy milk", urgency="low", source="user", type="immediate"))
        return await manager.process_queue()

    result = asyncio.run(scenario())

    assert result.type == "task"
    assert result.task.title == "Buy milk"
    assert manager.get_current_task().status == "active"
    assert manager.trees.get_node(result.task.id).task_status == "active"
    assert manager.get_interruption_state() == "RUNNING"


def test_empty_queue_yields_none(clock):
    manager = _manager(clock)
    assert asyncio.run(manager.process_queue()).type == "none"
    assert manager.get_interruption_state() == "IDLE"


def test_critical_task_selected_first_regardless_of_insertion_order(clock):
    for order in (("medium", "critical"), ("critical", "medium")):
        manager = _manager(clock)

        async def scenario():
            for urgency in order:
                await manager.create_task(f"{urgency} task", urgency=urgency)
            return await manager.process_queue()

        result = asyncio.run(scenario())
        assert result.task.urgency == "critical"


def test_higher_priority_ready_task_raises_interruption(clock):
    sink = InMemorySink()
    manager, report, build, result = _start_with_interruption(clock, sink)

    assert result.type == "pending_interruption"
    assert result.interruption.current_task.id == report.id
    assert result.interruption.new_task.id == build.id
    assert result.interruption.conversation_id == "conv-1"
    assert "the build is red" in result.interruption.message
    assert manager.get_current_task().id == report.id
    assert manager.queue.get_pending(build.id).status == "pending"
    assert manager.get_interruption_state() == "PENDING_CONFIRMATION"

    requests = sink.of_kind("interruption_request")
    assert len(requests) == 1
    assert requests[0]["new_task_id"] == build.id
    assert requests[0]["agent_id"] == "agent-1"


def test_proceed_switches_and_preserves_progress(clock):
    manager, report, build, _ = _start_with_interruption(clock)

    outcome = asyncio.run(manager.handle_interruption_confirmation("yes, switch"))

    assert outcome.action == "proceed"
    assert manager.get_current_task().id == build.id
    requeued = manager.queue.get_pending(report.id)
    assert requeued.status == "pending"
    assert requeued.progress == 40
    assert manager.get_task_context(report.id).context["progress"] == 40
    assert manager.trees.get_node(report.id).task_status == "pending"
    assert manager.get_switch_history()[-1]["reason"] == "confirmed"
    assert manager.get_pending_interruption() is None
    assert _active_count(manager) == 1


def test_add_to_queue_keeps_current_task_without_asking_again(clock):
    manager, report, build, _ = _start_with_interruption(clock)
    continuity = manager._switcher._continuity

    async def scenario():
        outcome = await manager.handle_interruption_confirmation("maybe later")
        again = await manager.process_queue()
        following = await manager.complete_current_task("report sent")
        return outcome, again, following

    outcome, again, following = asyncio.run(scenario())

    assert outcome.action == "add_to_queue"
    assert again.type == "task" and again.task.id == report.id
    assert continuity.calls == 1
    assert following.id == build.id


def test_discard_cancels_candidate(clock):
    manager, report, build, _ = _start_with_interruption(clock)

    outcome = asyncio.run(manager.handle_interruption_confirmation(decision="discard"))

    assert outcome.action == "discard"
    assert manager.get_current_task().id == report.id
    assert manager.queue.get_task(build.id).status == "cancelled"
    assert manager.trees.get_node(build.id).task_status == "cancelled"
    assert manager.stats.total_cancelled == 1


def test_second_interruption_is_rejected_while_one_is_outstanding(clock):
    manager, _, build, first = _start_with_interruption(clock)

    async def scenario():
        await manager.create_task("Answer the CEO", urgency="high")
        return await manager.process_queue()

    second = asyncio.run(scenario())

    assert second.type == "pending_interruption"
    assert second.interruption is first.interruption
    assert second.interruption.new_task.id == build.id


def test_interruption_dropped_when_candidate_cancelled(clock):
    manager, report, build, _ = _start_with_interruption(clock)

    assert asyncio.run(manager.cancel_task(build.id))

    assert manager.get_pending_interruption() is None
    assert asyncio.run(manager.handle_interruption_confirmation("yes")) is None
    assert manager.get_current_task().id == report.id


def test_declined_switch_keeps_running(clock):
    continuity = SwitchingContinuity(should_switch=False)
    manager = _manager(clock, continuity_oracle=continuity)

    async def scenario():
        await manager.create_task("Write report", urgency="medium")
        await manager.process_queue()
        await manager.create_task("Fix build", urgency="high")
        return await manager.process_queue()

    result = asyncio.run(scenario())

    assert result.type == "task" and result.task.title == "Write report"
    assert manager.get_pending_interruption() is None
    assert continuity.calls == 1


def test_critical_task_preempts_without_confirmation(clock):
    continuity = SwitchingContinuity()
    manager = _manager(clock, continuity_oracle=continuity)

    async def scenario():
        report = await manager.create_task("Write report", urgency="high")
        await manager.process_queue()
        outage = await manager.create_task("Site is down", urgency="critical")
        return report, outage, await manager.process_queue()

    report, outage, result = asyncio.run(scenario())

    assert result.task.id == outage.id
    assert manager.queue.get_pending(report.id).status == "pending"
    assert manager.get_switch_history()[-1] == {
        "from": report.id,
        "to": outage.id,
        "reason": "critical",
        "timestamp": clock.now,
    }
    assert continuity.calls == 0


def test_any_other_ready_task_is_put_to_the_continuity_oracle(clock):
    continuity = SwitchingContinuity()
    manager = _manager(clock, continuity_oracle=continuity)

    async def scenario():
        await manager.create_task("Write report", urgency="high")
        await manager.process_queue()
        desk = await manager.create_task("Tidy desk", urgency="low")
        return desk, await manager.process_queue()

    desk, result = asyncio.run(scenario())

    assert continuity.calls == 1
    assert result.type == "pending_interruption"
    assert result.interruption.new_task.id == desk.id
    assert manager.get_current_task().title == "Write report"


def test_critical_task_preempts_a_running_critical_task(clock):
    continuity = SwitchingContinuity()
    manager = _manager(clock, continuity_oracle=continuity)

    async def scenario():
        first = await manager.create_task("Outage one", urgency="critical")
        await manager.process_queue()
        second = await manager.create_task("Outage two", urgency="critical")
        return first, second, await manager.process_queue()

    first, second, result = asyncio.run(scenario())

    assert result.type == "task" and result.task.id == second.id
    assert manager.get_current_task().id == second.id
    assert manager.queue.get_pending(first.id).status == "pending"
    assert continuity.calls == 0


def test_deferred_candidate_does_not_hide_the_next_ready_task(clock):
    manager, report, build, _ = _start_with_interruption(clock)
    continuity = manager._switcher._continuity

    async def scenario():
        await manager.handle_interruption_confirmation(decision="add_to_queue")
        review = await manager.create_task("Review notes", urgency="high")
        return review, await manager.process_queue()

    review, result = asyncio.run(scenario())

    assert continuity.calls == 2
    assert result.type == "pending_interruption"
    assert result.interruption.new_task.id == review.id
    assert manager.queue.get_pending(build.id) is not None


def test_step_failure_with_fallback_enqueues_exactly_one_task(clock):
    sink = InMemorySink()
    manager = _manager(clock, sink)

    async def scenario():
        task = await manager.create_task("Fetch prices", urgency="medium")
        await manager.process_queue()
        manager.register_fallback(task.id, "Use yesterday's cached prices")
        before = len(manager.queue.pending)
        fallback = await manager.handle_step_failure("pricing API returned 500")
        return task, before, fallback

    task, before, fallback = asyncio.run(scenario())

    assert len(manager.queue.pending) == before + 1
    assert fallback.metadata["fallback_of"] == task.id
    assert fallback.source == "self-generated"
    assert manager.get_current_task().id == task.id
    failures = sink.of_kind("step_failure")
    assert failures[-1]["error"] == "pricing API returned 500"
    assert failures[-1]["fallback"]["id"] == fallback.id
    assert manager.trees.get_node(fallback.id) is not None


def test_step_failure_without_fallback_fails_task(clock):
    manager = _manager(clock)

    async def scenario():
        first = await manager.create_task("Fetch prices", urgency="high")
        second = await manager.create_task("Write summary", urgency="low")
        await manager.process_queue()
        result = await manager.handle_step_failure("pricing API returned 500")
        return first, second, result

    first, second, result = asyncio.run(scenario())

    assert result is None
    assert manager.stats.total_failed == 1
    assert manager.queue.get_task(first.id).status == "failed"
    assert manager.trees.get_node(first.id).task_status == "failed"
    assert manager.get_current_task().id == second.id


def test_fallback_chain_is_capped(clock):
    manager = _manager(clock)

    async def scenario():
        task = await manager.create_task("Scrape site", urgency="medium")
        await manager.process_queue()
        for _ in range(3):
            current = manager.get_current_task()
            manager.register_fallback(current.id, "try a different approach")
            await manager.fail_current_task("blocked by captcha")
        return task

    asyncio.run(scenario())

    assert manager.stats.total_failed == 3
    assert manager.get_current_task() is None
    assert manager.queue.pending == []
    depths = [task.metadata.get("fallback_depth", 0) for task in manager.queue.queue.completed]
    assert depths == [0, 1, 2]


def test_completion_updates_statistics_with_incremental_mean(clock):
    memory = RecordingMemory()
    manager = _manager(clock, memory=memory)

    async def scenario():
        await manager.create_task("First", urgency="high")
        await manager.create_task("Second", urgency="low")
        first = (await manager.process_queue()).task
        clock.advance(2.0)
        assert await manager.complete_current_step("done")
        second = await manager.complete_current_task("first result")
        clock.advance(4.0)
        assert await manager.complete_current_step()
        assert await manager.check_and_complete_task_if_done("second result")
        return first, second

    first, second = asyncio.run(scenario())

    assert first.title == "First" and second.title == "Second"
    assert manager.stats.total_completed == 2
    assert manager.stats.average_completion_time == (2000.0 * 1 + 4000.0) / 2
    assert manager.stats.last_completed_at == clock.now
    assert ("on_task_completed", (first.id, 2000.0)) in memory.calls
    assert manager.get_current_task() is None


def test_complete_without_active_task_is_a_no_op(clock):
    manager = _manager(clock)
    asyncio.run(manager.create_task("Queued", urgency="low"))
    before = manager.get_queue_state()

    assert asyncio.run(manager.complete_current_task()) is None
    assert not asyncio.run(manager.fail_current_task("nothing running"))
    assert asyncio.run(manager.handle_step_failure("nothing running")) is None
    assert not asyncio.run(manager.complete_current_step())
    assert manager.get_queue_state() == before


def test_check_and_complete_waits_for_tool_calls(clock):
    manager = _manager(clock)

    async def scenario():
        await manager.create_task("Research", description="search -> read -> summarise")
        await manager.process_queue()
        assert not await manager.check_and_complete_task_if_done("partial", has_tool_calls=True)
        assert not await manager.check_and_complete_task_if_done("partial", has_tool_calls=False)
        for _ in range(3):
            await manager.complete_current_step()
        return await manager.check_and_complete_task_if_done("summary", has_tool_calls=True)

    assert asyncio.run(scenario())
    assert manager.stats.total_completed == 1


def test_tasks_under_an_active_goal_are_not_ready(clock):
    manager = _manager(clock)

    async def scenario():
        goal = await manager.create_goal("Move house")
        child = await manager.create_task("Pack boxes", parent_id=goal.id)
        loose = await manager.create_task("Pay rent", urgency="low")
        return goal, child, loose, await manager.process_queue()

    goal, child, loose, result = asyncio.run(scenario())

    assert child.parent_id == goal.id
    assert manager.trees.get_node(child.id).parent_id == goal.id
    assert result.task.id == loose.id
    assert child.id not in manager.get_queue_state()["ready"]


def test_decompose_goal_queues_child_tasks(clock):
    class PartyOracle:
        async def decompose(self, node, urgency, focus, *, memories):
            return {"children": [{"title": "Book venue"}, {"title": "Order cake", "urgency": "low"}]}

    memory = RecordingMemory()
    manager = _manager(clock, decomposition_oracle=PartyOracle(), memory=memory)

    async def scenario():
        goal = await manager.create_goal("Birthday party")
        result = await manager.decompose_goal(goal.id, "high")
        again = await manager.decompose_goal(goal.id, "high")
        return goal, result, again

    goal, result, again = asyncio.run(scenario())

    assert [task.title for task in result.tasks] == ["Book venue", "Order cake"]
    queued = {task.title: task for task in manager.queue.pending}
    assert queued["Book venue"].urgency == "high"
    assert queued["Order cake"].urgency == "low"
    assert queued["Book venue"].parent_id == goal.id
    assert again is None
    assert memory.names().count("on_task_created") == 2


def test_redecompose_goals_replaces_stale_plans(clock):
    class Oracle:
        def __init__(self):
            self.round = 0

        def decompose(self, node, urgency, focus, *, memories):
            self.round += 1
            return {"children": [{"title": f"Plan v{self.round}"}]}

    manager = _manager(clock, decomposition_oracle=Oracle())

    async def scenario():
        goal = await manager.create_goal("Trip")
        await manager.decompose_goal(goal.id, "medium")
        unchanged = await manager.redecompose_goals()
        changed = await manager.redecompose_goals("critical")
        return unchanged, changed

    unchanged, changed = asyncio.run(scenario())

    assert unchanged == []
    assert len(changed) == 1
    titles = {task.title: task.status for task in manager.queue.queue.completed}
    assert titles == {"Plan v1": "cancelled"}
    assert [task.title for task in manager.queue.pending] == ["Plan v2"]
    assert manager.stats.total_cancelled == 1


def test_cancel_active_task_starts_next(clock):
    manager = _manager(clock)

    async def scenario():
        first = await manager.create_task("First", urgency="high")
        second = await manager.create_task("Second", urgency="low")
        await manager.process_queue()
        cancelled = await manager.cancel_task(first.id)
        missing = await manager.cancel_task("does-not-exist")
        return first, second, cancelled, missing

    first, second, cancelled, missing = asyncio.run(scenario())

    assert cancelled and not missing
    assert manager.get_current_task().id == second.id
    assert manager.stats.total_cancelled == 1
    assert manager.trees.get_node(first.id).task_status == "cancelled"


def test_cancel_goal_cancels_its_tasks(clock):
    manager = _manager(clock)

    async def scenario():
        goal = await manager.create_goal("Renovate")
        paint = await manager.create_task("Paint walls", parent_id=goal.id)
        floor = await manager.create_task("Sand floor", parent_id=goal.id)
        return goal, paint, floor, await manager.cancel_task(goal.id)

    goal, paint, floor, cancelled = asyncio.run(scenario())

    assert cancelled
    assert manager.trees.get_node(goal.id).goal_status == "cancelled"
    assert manager.queue.get_task(paint.id).status == "cancelled"
    assert manager.queue.get_task(floor.id).status == "cancelled"
    assert manager.stats.total_cancelled == 2


def test_prospective_intentions_become_tasks(clock):
    memory = RecordingMemory()
    manager = _manager(clock, memory=memory)
    intentions = [
        {"id": "pm-1", "content": "Call the dentist", "trigger_time": clock.now + 60},
        {"id": "pm-2", "title": "Water the plants", "urgency": "high"},
        {"id": "", "title": "ignored"},
    ]

    async def scenario():
        added = await manager.sync_prospective_tasks(intentions)
        again = await manager.sync_prospective_tasks(intentions)
        started = await manager.process_queue()
        return added, again, started

    added, again, started = asyncio.run(scenario())

    assert [task.prospective_memory_id for task in added] == ["pm-1", "pm-2"]
    assert added[0].type == "scheduled" and added[0].scheduled_for == clock.now + 60
    assert again == []
    assert started.task.prospective_memory_id == "pm-2"

    asyncio.run(manager.sync_prospective_tasks([intentions[1]], prune=True))
    assert manager.queue.get_task(added[0].id).status == "cancelled"

    asyncio.run(manager.complete_current_task())
    assert ("complete_prospective_memory", ("pm-2",)) in memory.calls


def test_scheduled_task_waits_for_trigger_time(clock):
    manager = _manager(clock)

    async def scenario():
        await manager.create_task("Standup", type="scheduled", scheduled_for=clock.now + 30)
        early = await manager.process_queue()
        clock.advance(31)
        late = await manager.process_queue()
        return early, late

    early, late = asyncio.run(scenario())

    assert early.type == "none"
    assert late.task.title == "Standup"


def test_strategic_tasks_need_promotion(clock):
    manager = _manager(clock)

    async def scenario():
        task = await manager.create_task("Learn Rust", type="strategic")
        idle = await manager.process_queue()
        promoted = await manager.promote_strategic(task.id)
        started = await manager.process_queue()
        return idle, promoted, started

    idle, promoted, started = asyncio.run(scenario())

    assert idle.type == "none"
    assert promoted
    assert started.task.title == "Learn Rust"


def test_memory_hook_failures_are_swallowed(clock):
    memory = RecordingMemory()
    manager = _manager(clock, memory=memory)

    async def scenario():
        task = await manager.create_task("Fetch prices")
        await manager.process_queue()
        manager.register_fallback(task.id, "use the cache")
        return await manager.handle_step_failure("timeout")

    assert asyncio.run(scenario()) is not None
    assert "on_task_created" in memory.names()


def test_failing_event_sink_does_not_break_scheduling(clock):
    class BrokenSink:
        def write(self, event):
            raise OSError("disk full")

    manager = _manager(clock, BrokenSink())

    async def scenario():
        await manager.create_task("Buy milk")
        return await manager.process_queue()

    result = asyncio.run(scenario())

    assert result.type == "task" and result.task.title == "Buy milk"


def test_queue_update_events_carry_state(clock):
    sink = InMemorySink()
    manager = _manager(clock, sink)

    async def scenario():
        await manager.create_task("Buy milk")
        await manager.process_queue()

    asyncio.run(scenario())

    updates = sink.of_kind("queue_update")
    assert updates
    assert updates[-1]["state"]["current_task"]["title"] == "Buy milk"
    assert updates[-1]["state"]["state"] == "RUNNING"


def test_snapshot_round_trip_restores_pending_interruption(clock):
    manager, report, build, _ = _start_with_interruption(clock)

    payload = manager.snapshot().model_dump_json()
    restored = PlanningManager.restore(PlanningSnapshot.model_validate_json(payload), clock=clock)

    assert restored.get_current_task().id == report.id
    assert restored.get_pending_interruption().new_task.id == build.id
    assert restored.get_current_step().title == manager.get_current_step().title
    assert restored.trees.to_dict() == manager.trees.to_dict()
    assert restored.get_task_context(report.id) is None

    outcome = asyncio.run(restored.handle_interruption_confirmation(decision="proceed"))
    assert outcome.action == "proceed"
    assert restored.get_current_task().id == build.id


def test_snapshot_round_trip_keeps_stats_and_fallbacks(clock):
    manager = _manager(clock)

    async def scenario():
        await manager.create_task("Done soon")
        await manager.process_queue()
        clock.advance(1)
        await manager.complete_current_task()
        task = await manager.create_task("Later")
        manager.register_fallback(task.id, "ask for help")

    asyncio.run(scenario())
    restored = PlanningManager.restore(manager.snapshot().model_dump(), clock=clock)

    assert restored.stats == manager.stats
    assert restored.snapshot().fallbacks == manager.snapshot().fallbacks
