"""Executor contract and bundled adapters."""

from task_relay.execution.executor.base import ExecutionOutcome, Executor
from task_relay.execution.executor.cli_executor import CliAgentExecutor, build_task_prompt
from task_relay.execution.executor.mock import MockExecutor

__all__ = [
    "CliAgentExecutor",
    "ExecutionOutcome",
    "Executor",
    "MockExecutor",
    "build_task_prompt",
]
