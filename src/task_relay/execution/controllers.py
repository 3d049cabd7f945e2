"""Controllers for execution CLI commands."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from task_relay.config import Settings
from task_relay.execution.executor import CliAgentExecutor, Executor, MockExecutor
from task_relay.execution.pump import BatchSummary, ExecutionPump, TaskRunResult
from task_relay.execution.selector import AgentStrategy, explain_selection
from task_relay.tasks.errors import NotFoundError
from task_relay.tasks.models import AgentType
from task_relay.tasks.store import open_store


class ExecutorKind(str, Enum):
    """Which executor adapter a command uses."""

    CLI = "cli"
    MOCK = "mock"


@dataclass(slots=True)
class RunTaskCommand:
    """CLI input for running one task."""

    project_root: Path | None
    task_id: str
    agent: AgentType | None = None
    executor: ExecutorKind = ExecutorKind.CLI


@dataclass(slots=True)
class AutoRunCommand:
    """CLI input for a batch over every pending task."""

    project_root: Path | None
    strategy: AgentStrategy | None = None
    executor: ExecutorKind = ExecutorKind.CLI
    pause_seconds: float | None = None


@dataclass(slots=True)
class AgentsCommand:
    """CLI input for agent availability and selection preview."""

    project_root: Path | None
    task_id: str | None = None


@dataclass(slots=True)
class ExecutionResult:
    """Execution report to render in CLI."""

    lines: list[str]
    success: bool


class ExecutionCliController:
    """Coordinates single-task and batch agent runs."""

    def run_task(self, command: RunTaskCommand) -> ExecutionResult:
        settings = _settings(command.project_root)
        with open_store(settings) as store:
            task = store.get(command.task_id)
            if task is None:
                raise NotFoundError(command.task_id)
            pump = ExecutionPump(store, _executor(settings, command.executor))
            run = asyncio.run(pump.run_one(task, command.agent))

        return ExecutionResult(lines=_run_lines(run), success=run.succeeded)

    def run_batch(self, command: AutoRunCommand) -> ExecutionResult:
        settings = _settings(command.project_root)
        strategy = command.strategy or settings.pump.strategy
        pause_seconds = (
            settings.pump.pause_seconds if command.pause_seconds is None else command.pause_seconds
        )
        with open_store(settings) as store:
            pump = ExecutionPump(
                store,
                _executor(settings, command.executor),
                pause_seconds=pause_seconds,
            )
            summary = asyncio.run(pump.run_batch(strategy))

        return ExecutionResult(lines=_batch_lines(summary), success=summary.failed == 0)

    def agents(self, command: AgentsCommand) -> list[str]:
        settings = _settings(command.project_root)
        executor = CliAgentExecutor.from_settings(settings)
        lines = ["Agents:"]
        for agent in AgentType:
            status = "available" if executor.is_available(agent) else "not found"
            lines.append(
                f"  {agent.value}: {status} command={settings.executor.command_templates[agent]}",
            )
        if command.task_id is None:
            return lines

        with open_store(settings) as store:
            task = store.get(command.task_id)
        if task is None:
            raise NotFoundError(command.task_id)
        explanation = explain_selection(task)
        lines += [
            f"Task {task.id}: {explanation.agent.value}",
            f"  needs_complex={explanation.needs_complex} needs_simple={explanation.needs_simple}",
        ]
        lines.extend(f"  {reason}" for reason in explanation.reasons)
        return lines


def _settings(project_root: Path | None) -> Settings:
    settings = Settings.from_env(project_root=project_root)
    settings.validate()
    return settings


def _executor(settings: Settings, kind: ExecutorKind) -> Executor:
    if kind == ExecutorKind.MOCK:
        return MockExecutor()
    return CliAgentExecutor.from_settings(settings)


def _run_lines(run: TaskRunResult) -> list[str]:
    lines = [
        f"Task {run.task_id}: agent={run.agent.value} status={run.status.value} "
        f"duration={run.duration_seconds:.1f}s",
    ]
    if run.result:
        lines.extend(f"  {line}" for line in run.result.splitlines())
    return lines


def _batch_lines(summary: BatchSummary) -> list[str]:
    lines = [
        "Batch summary: "
        f"processed={summary.processed} successful={summary.successful} "
        f"failed={summary.failed} skipped={summary.skipped}",
    ]
    for run in summary.results:
        lines.append(
            f"  {run.task_id} agent={run.agent.value} status={run.status.value} "
            f"duration={run.duration_seconds:.1f}s",
        )
    return lines
