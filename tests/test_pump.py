from __future__ import annotations

import asyncio

import allure
import pytest

from task_relay.execution.executor.base import ExecutionOutcome
from task_relay.execution.executor.mock import MockExecutor
from task_relay.execution.pump import ExecutionPump
from task_relay.execution.selector import AgentStrategy
from task_relay.tasks.errors import InvalidTransitionError, StorageIOError
from task_relay.tasks.models import (
    AgentType,
    IssueCategory,
    Priority,
    Task,
    TaskCreate,
    TaskEvent,
    TaskStatus,
    TaskUpdate,
)
from task_relay.tasks.store import TaskStore
from tests.fakes import ScriptedExecutor

pytestmark = [
    allure.epic("Execution"),
    allure.feature("Sequential Execution Pump"),
]


def _create(store: TaskStore, *titles: str) -> list[Task]:
    return [store.create(TaskCreate(title=title)) for title in titles]


@pytest.mark.asyncio
async def test_batch_continues_past_failure(store: TaskStore) -> None:
    first, second, third = _create(store, "Task A", "Task B", "Task C")
    executor = ScriptedExecutor(failing_titles={"Task B"})

    summary = await ExecutionPump(store, executor).run_batch()

    assert [store.get(task.id).status for task in (first, second, third)] == [
        TaskStatus.COMPLETED,
        TaskStatus.NEEDS_REVIEW,
        TaskStatus.COMPLETED,
    ]
    assert (summary.processed, summary.successful, summary.failed) == (3, 2, 1)
    assert [run.task_id for run in summary.results] == [first.id, second.id, third.id]
    assert store.get(first.id).result == "done: Task A"
    assert store.get(second.id).result == "Failed: tests failed"
    assert all(store.get(task.id).human_approved for task in (first, second, third))


@pytest.mark.asyncio
async def test_executions_never_overlap(store: TaskStore) -> None:
    _create(store, "One", "Two", "Three", "Four")
    executor = ScriptedExecutor(delay_seconds=0.02)

    await ExecutionPump(store, executor).run_batch()

    assert executor.max_active == 1
    ordered = sorted(executor.intervals)
    for (_, previous_end), (next_start, _) in zip(ordered, ordered[1:], strict=False):
        assert previous_end <= next_start


@pytest.mark.asyncio
async def test_concurrent_batches_on_one_pump_are_serialized(store: TaskStore) -> None:
    _create(store, "One", "Two")
    executor = ScriptedExecutor(delay_seconds=0.02)
    pump = ExecutionPump(store, executor)

    first, second = await asyncio.gather(pump.run_batch(), pump.run_batch())

    assert executor.max_active == 1
    assert first.processed == 2
    assert second.processed == 0
    assert len(executor.calls) == 2


@pytest.mark.asyncio
async def test_raised_executor_error_marks_task_for_review(store: TaskStore) -> None:
    (task,) = _create(store, "Crashy")
    executor = ScriptedExecutor(raising_titles={"Crashy"})

    summary = await ExecutionPump(store, executor).run_batch()

    stored = store.get(task.id)
    assert stored.status == TaskStatus.NEEDS_REVIEW
    assert stored.result == "Error: agent crashed on Crashy"
    assert stored.assigned_agent is not None
    assert summary.failed == 1


@pytest.mark.asyncio
async def test_snapshot_excludes_non_pending_and_archived(store: TaskStore) -> None:
    pending, done, archived = _create(store, "Pending", "Done", "Archived")
    store.transition(done.id, TaskEvent.EXECUTION_SUCCEEDED)
    store.archive(archived.id)
    executor = ScriptedExecutor()

    summary = await ExecutionPump(store, executor).run_batch()

    assert [task_id for task_id, _ in executor.calls] == [pending.id]
    assert summary.processed == 1


@pytest.mark.asyncio
async def test_tasks_changed_mid_batch_are_skipped(store: TaskStore) -> None:
    first, second, third = _create(store, "First", "Second", "Third")

    class _MutatingExecutor(ScriptedExecutor):
        async def execute(self, task: Task, agent: AgentType) -> ExecutionOutcome:
            if task.id == first.id:
                store.delete(second.id)
                store.update(third.id, TaskUpdate(status=TaskStatus.COMPLETED))
            return await super().execute(task, agent)

    executor = _MutatingExecutor()
    summary = await ExecutionPump(store, executor).run_batch()

    assert [task_id for task_id, _ in executor.calls] == [first.id]
    assert summary.processed == 1
    assert summary.skipped == 2


@pytest.mark.asyncio
async def test_status_set_by_agent_is_kept(store: TaskStore) -> None:
    (task,) = _create(store, "Self reporting")

    class _ReportingExecutor(ScriptedExecutor):
        async def execute(self, task: Task, agent: AgentType) -> ExecutionOutcome:
            store.update(task.id, TaskUpdate(status=TaskStatus.NEEDS_REVIEW))
            return await super().execute(task, agent)

    summary = await ExecutionPump(store, _ReportingExecutor()).run_batch()

    stored = store.get(task.id)
    assert stored.status == TaskStatus.NEEDS_REVIEW
    assert stored.result == "done: Self reporting"
    assert summary.failed == 1


@pytest.mark.asyncio
async def test_strategy_pins_agent(store: TaskStore) -> None:
    store.create(
        TaskCreate(title="fix typo", category=IssueCategory.CONFIG, priority=Priority.LOW),
    )
    store.create(TaskCreate(title="Redesign schema", category=IssueCategory.DATABASE))

    smart = MockExecutor()
    await ExecutionPump(store, smart).run_batch(AgentStrategy.SMART)
    assert [agent for _, agent in smart.calls] == [AgentType.GEMINI, AgentType.CLAUDE]

    for task in store.get_all():
        store.transition(task.id, TaskEvent.REOPEN)
    pinned = MockExecutor()
    await ExecutionPump(store, pinned).run_batch(AgentStrategy.GEMINI)
    assert [agent for _, agent in pinned.calls] == [AgentType.GEMINI, AgentType.GEMINI]
    assert {task.assigned_agent for task in store.get_all()} == {AgentType.GEMINI}


@pytest.mark.asyncio
async def test_storage_failure_aborts_batch(store: TaskStore, monkeypatch) -> None:
    _create(store, "One", "Two")
    executor = ScriptedExecutor()

    def _fail(*_args, **_kwargs):
        raise StorageIOError("read-only file system")

    monkeypatch.setattr("task_relay.tasks.store.write_store_file", _fail)

    with pytest.raises(StorageIOError):
        await ExecutionPump(store, executor).run_batch()
    assert executor.calls == []


@pytest.mark.asyncio
async def test_run_one_uses_selector_or_override(store: TaskStore) -> None:
    simple = store.create(TaskCreate(title="fix typo", category=IssueCategory.CONFIG))
    (other,) = _create(store, "Another")
    pump = ExecutionPump(store, MockExecutor())

    chosen = await pump.run_one(simple)
    forced = await pump.run_one(other, AgentType.GEMINI)

    assert chosen.status == TaskStatus.COMPLETED
    assert chosen.agent == AgentType.GEMINI
    assert forced.agent == AgentType.GEMINI
    assert store.get(other.id).result == "[mock:gemini] Another"


@pytest.mark.asyncio
async def test_run_one_rejects_non_pending_task(store: TaskStore) -> None:
    (task,) = _create(store, "Finished")
    store.transition(task.id, TaskEvent.EXECUTION_SUCCEEDED)

    with pytest.raises(InvalidTransitionError):
        await ExecutionPump(store, MockExecutor()).run_one(task)


@pytest.mark.asyncio
async def test_run_one_rejects_archived_task(store: TaskStore) -> None:
    (task,) = _create(store, "Shelved")
    store.archive(task.id)
    executor = ScriptedExecutor()

    with pytest.raises(InvalidTransitionError, match="archived"):
        await ExecutionPump(store, executor).run_one(task)

    assert executor.calls == []
    assert store.get(task.id).status == TaskStatus.PENDING
