"""Executor interface for dispatching one task to one agent."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from task_relay.tasks.models import AgentType, Task


@dataclass(slots=True)
class ExecutionOutcome:
    """What an agent run produced."""

    success: bool
    output: str = ""
    error: str | None = None
    exit_code: int | None = None
    duration_seconds: float = 0.0
    files_modified: tuple[str, ...] = ()

    @property
    def failure_reason(self) -> str:
        if self.error:
            return self.error
        if self.exit_code is not None:
            return f"exit code {self.exit_code}"
        return "unknown error"


class Executor(Protocol):
    """Protocol implemented by agent executors."""

    async def execute(self, task: Task, agent: AgentType) -> ExecutionOutcome:
        """Run ``task`` with ``agent``; failures are reported, not raised."""
