"""Deterministic executor for dry runs."""

from __future__ import annotations

import asyncio

from task_relay.execution.executor.base import ExecutionOutcome
from task_relay.tasks.models import AgentType, Task


class MockExecutor:
    """Pretend to run every task successfully."""

    def __init__(self, *, delay_seconds: float = 0.0) -> None:
        self.delay_seconds = delay_seconds
        self.calls: list[tuple[str, AgentType]] = []

    async def execute(self, task: Task, agent: AgentType) -> ExecutionOutcome:
        self.calls.append((task.id, agent))
        if self.delay_seconds > 0:
            await asyncio.sleep(self.delay_seconds)
        return ExecutionOutcome(
            success=True,
            output=f"[mock:{agent.value}] {task.title}",
            exit_code=0,
            duration_seconds=self.delay_seconds,
        )

    def is_available(self, agent: AgentType) -> bool:  # noqa: ARG002
        return True
