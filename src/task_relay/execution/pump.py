"""Sequential execution pump: drain pending tasks one agent run at a time."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field

from task_relay.execution.executor.base import ExecutionOutcome, Executor
from task_relay.execution.selector import AgentStrategy, resolve_agent
from task_relay.tasks.errors import InvalidTransitionError, NotFoundError
from task_relay.tasks.models import AgentType, Task, TaskEvent, TaskStatus, TaskUpdate
from task_relay.tasks.store import TaskStore

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class TaskRunResult:
    """Outcome of dispatching one task."""

    task_id: str
    agent: AgentType
    status: TaskStatus
    result: str
    duration_seconds: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.status == TaskStatus.COMPLETED


@dataclass(slots=True)
class BatchSummary:
    """Aggregate batch counters for CLI reporting."""

    processed: int = 0
    successful: int = 0
    failed: int = 0
    skipped: int = 0
    results: list[TaskRunResult] = field(default_factory=list)

    def record(self, run: TaskRunResult) -> None:
        self.processed += 1
        if run.succeeded:
            self.successful += 1
        else:
            self.failed += 1
        self.results.append(run)


class ExecutionPump:
    """Dispatch tasks to the executor strictly one at a time.

    Agent runs share a working tree, so the pump never overlaps them: the
    next task starts only after the previous outcome is written to the
    store. A failing task ends up in NEEDS_REVIEW and the batch goes on;
    a store write failure propagates and ends the batch.

    Store reads and writes are synchronous and run on the event loop thread;
    they are short local file operations and the pump is driven by its own
    ``asyncio.run`` per CLI command, so nothing else shares the loop.
    """

    def __init__(
        self,
        store: TaskStore,
        executor: Executor,
        *,
        pause_seconds: float = 0.0,
    ) -> None:
        self.store = store
        self.executor = executor
        self.pause_seconds = max(0.0, pause_seconds)
        self._lock = asyncio.Lock()

    @property
    def is_running(self) -> bool:
        return self._lock.locked()

    async def run_batch(self, strategy: AgentStrategy = AgentStrategy.SMART) -> BatchSummary:
        """Run every task that is PENDING and not archived when the batch starts."""

        async with self._lock:
            snapshot = [
                task.id
                for task in self.store.get_all()
                if task.status == TaskStatus.PENDING and not task.is_archived
            ]
            summary = BatchSummary()
            logger.info(
                "Batch started: %d pending tasks, strategy=%s",
                len(snapshot),
                strategy.value,
            )

            for index, task_id in enumerate(snapshot):
                task = self.store.get(task_id)
                if task is None or task.status != TaskStatus.PENDING:
                    logger.info("Skipping task %s: no longer pending", task_id)
                    summary.skipped += 1
                    continue

                if index and self.pause_seconds:
                    await asyncio.sleep(self.pause_seconds)
                try:
                    run = await self._run(task, resolve_agent(task, strategy))
                except NotFoundError:
                    logger.warning("Task %s was deleted while it ran; outcome dropped", task_id)
                    summary.skipped += 1
                    continue
                summary.record(run)

            logger.info(
                "Batch finished: processed=%d successful=%d failed=%d skipped=%d",
                summary.processed,
                summary.successful,
                summary.failed,
                summary.skipped,
            )
            return summary

    async def run_one(self, task: Task, agent: AgentType | None = None) -> TaskRunResult:
        """Run a single PENDING, unarchived task; ``agent`` defaults to the selector's choice."""

        async with self._lock:
            current = self.store.get(task.id) or task
            if current.status != TaskStatus.PENDING:
                raise InvalidTransitionError(current.id, current.status.value, "execution")
            if current.is_archived:
                raise InvalidTransitionError(current.id, "archived", "execution")
            return await self._run(current, agent or resolve_agent(current))

    async def _run(self, task: Task, agent: AgentType) -> TaskRunResult:
        approved = self.store.update(
            task.id,
            TaskUpdate(human_approved=True, assigned_agent=agent),
        )
        logger.info("Executing task %s (%s) with %s", task.id, task.title, agent.value)

        started = time.monotonic()
        try:
            outcome = await self.executor.execute(approved, agent)
        except Exception as error:  # noqa: BLE001
            logger.warning("Executor raised for task %s: %s", task.id, error)
            outcome = None
            result = f"Error: {error}"
        else:
            result = _result_text(outcome)
        duration = time.monotonic() - started

        current = self.store.get(task.id)
        if current is not None and current.status != TaskStatus.PENDING:
            # The agent (or a person) already moved the task; record the output only.
            updated = self.store.update(task.id, TaskUpdate(result=result, assigned_agent=agent))
            logger.info("Task %s status set externally to %s", task.id, updated.status.value)
            return TaskRunResult(
                task_id=task.id,
                agent=agent,
                status=updated.status,
                result=result,
                duration_seconds=duration,
            )

        event = (
            TaskEvent.EXECUTION_SUCCEEDED
            if outcome is not None and outcome.success
            else TaskEvent.EXECUTION_FAILED
        )
        updated = self.store.transition(task.id, event, result=result, assigned_agent=agent)
        logger.info("Task %s -> %s in %.1fs", task.id, updated.status.value, duration)
        return TaskRunResult(
            task_id=task.id,
            agent=agent,
            status=updated.status,
            result=result,
            duration_seconds=duration,
        )


def _result_text(outcome: ExecutionOutcome) -> str:
    if outcome.success:
        return outcome.output.strip()
    return f"Failed: {outcome.failure_reason}"
