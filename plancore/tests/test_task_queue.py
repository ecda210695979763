from __future__ import annotations

import pytest

from plancore.src.core.task_queue import TaskQueueManager
from plancore.src.core.types import Task


def _active_count(manager: TaskQueueManager) -> int:
    queue = manager.queue
    tasks = [*queue.pending, *queue.completed, *queue.strategic]
    if queue.active is not None:
        tasks.append(queue.active)
    return sum(1 for task in tasks if task.status == "active")


def test_add_task_fills_defaults_and_skips_duplicates():
    manager = TaskQueueManager(clock=lambda: 42.0)
    task = manager.add_task(Task(title="Write notes"))

    assert task.id
    assert task.created_at == 42.0 and task.updated_at == 42.0
    assert manager.add_task(task) is task
    assert len(manager.pending) == 1


def test_strategic_tasks_wait_for_promotion():
    manager = TaskQueueManager()
    task = manager.add_task(Task(title="Plan the quarter", id="s1", type="strategic"))

    assert manager.pending == []
    assert manager.start_task("s1") is None
    assert manager.promote_strategic("s1") is task
    assert [item.id for item in manager.pending] == ["s1"]
    assert manager.promote_strategic("s1") is None


def test_single_active_task():
    manager = TaskQueueManager()
    manager.add_task(Task(title="A", id="a"))
    manager.add_task(Task(title="B", id="b"))

    assert manager.start_task("a").id == "a"
    assert manager.start_task("b") is None
    assert manager.active.id == "a"
    assert _active_count(manager) == 1


def test_complete_and_fail_without_active_return_none():
    manager = TaskQueueManager()
    manager.add_task(Task(title="A", id="a"))

    assert manager.complete_task("result") is None
    assert manager.fail_task("boom") is None
    assert manager.pending[0].status == "pending"


def test_complete_moves_active_to_completed():
    manager = TaskQueueManager()
    manager.add_task(Task(title="A", id="a"))
    manager.start_task("a")

    done = manager.complete_task({"answer": 42})

    assert done.status == "completed" and done.progress == 100
    assert manager.active is None
    assert manager.completed_ids() == {"a"}


def test_cancel_pending_and_active():
    manager = TaskQueueManager()
    manager.add_task(Task(title="A", id="a"))
    manager.add_task(Task(title="B", id="b"))
    manager.start_task("a")

    assert manager.cancel_task("b").status == "cancelled"
    assert manager.cancel_task("a").status == "cancelled"
    assert manager.cancel_task("a") is None
    assert manager.active is None
    assert manager.completed_ids() == set()


def test_requeue_active_goes_to_front():
    manager = TaskQueueManager()
    for ident in ("a", "b"):
        manager.add_task(Task(title=ident, id=ident))
    manager.start_task("b")

    requeued = manager.requeue_active()

    assert requeued.status == "pending"
    assert [task.id for task in manager.pending] == ["b", "a"]


def test_remove_pending_leaves_no_trace():
    manager = TaskQueueManager()
    manager.add_task(Task(title="A", id="a"))

    assert manager.remove_pending("a").id == "a"
    assert manager.remove_pending("a") is None
    assert manager.get_task("a") is None


def test_set_pending_tasks_requires_permutation():
    manager = TaskQueueManager()
    a = manager.add_task(Task(title="A", id="a"))
    b = manager.add_task(Task(title="B", id="b"))

    manager.set_pending_tasks([b, a])
    assert [task.id for task in manager.pending] == ["b", "a"]
    with pytest.raises(ValueError):
        manager.set_pending_tasks([a])


def test_priority_is_clamped_on_assignment():
    task = Task(title="Clamp", priority=4.2)
    assert task.priority == 1.0
    task.priority = -3
    assert task.priority == 0.0


def test_queue_round_trip():
    manager = TaskQueueManager()
    manager.add_task(Task(title="A", id="a", urgency="high"))
    manager.add_task(Task(title="B", id="b", type="strategic"))
    manager.add_task(Task(title="C", id="c", type="scheduled", scheduled_for=99.0))
    manager.start_task("a")

    payload = manager.to_dict()
    restored = TaskQueueManager.from_dict(payload)

    assert restored.to_dict() == payload
    assert restored.active.id == "a"
