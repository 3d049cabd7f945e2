"""Subprocess-based executor for CLI coding agents."""

from __future__ import annotations

import asyncio
import logging
import os
import re
import shlex
import shutil
import tempfile
import time
from collections.abc import Mapping
from pathlib import Path
from typing import TYPE_CHECKING

from task_relay.execution.executor.base import ExecutionOutcome
from task_relay.tasks.errors import ExecutionFailure
from task_relay.tasks.models import AgentType, Task

if TYPE_CHECKING:
    from task_relay.config import Settings

logger = logging.getLogger(__name__)

TIMEOUT_EXIT_CODE = 124
NOT_FOUND_EXIT_CODE = 127
_FILES_MODIFIED_RE = re.compile(r"^Files modified: (.+)$", re.MULTILINE)


class CliAgentExecutor:
    """Run the per-agent command template as a subprocess in the project root.

    Templates are shell-like strings; ``{prompt}``, ``{prompt_file}`` and
    ``{task_id}`` are substituted (quoted) before splitting. The prompt is
    always written to the process stdin as well, so agents that read stdin
    need no placeholder at all. Exit code 0 means success.
    """

    def __init__(
        self,
        command_templates: Mapping[AgentType, str],
        *,
        cwd: Path,
        timeout_seconds: float,
    ) -> None:
        self.command_templates = dict(command_templates)
        self.cwd = Path(cwd)
        self.timeout_seconds = timeout_seconds

    @classmethod
    def from_settings(cls, settings: Settings) -> CliAgentExecutor:
        return cls(
            settings.executor.command_templates,
            cwd=settings.project_root,
            timeout_seconds=settings.executor.timeout_seconds,
        )

    def is_available(self, agent: AgentType) -> bool:
        """True if the agent's command resolves to an executable."""

        template = self.command_templates.get(agent, "").strip()
        if not template:
            return False
        try:
            head = shlex.split(template)[0]
        except (ValueError, IndexError):
            return False
        return shutil.which(head) is not None

    async def execute(self, task: Task, agent: AgentType) -> ExecutionOutcome:
        template = self.command_templates.get(agent)
        if not template:
            raise ExecutionFailure(task.id, f"no command template configured for {agent.value}")

        prompt = build_task_prompt(task, project_root=self.cwd)
        with tempfile.TemporaryDirectory(prefix="task-relay-") as workdir:
            prompt_file = Path(workdir) / "task_prompt.txt"
            prompt_file.write_text(prompt, "utf-8")
            run_args = _build_run_args(
                command_template=template,
                prompt=prompt,
                prompt_file=prompt_file,
                task_id=task.id,
            )
            env = os.environ.copy()
            env["TASK_RELAY_TASK_ID"] = task.id
            env["TASK_RELAY_AGENT"] = agent.value

            logger.info("Running %s for task %s: %s", agent.value, task.id, run_args[0])
            return await self._run(run_args, prompt=prompt, env=env)

    async def _run(
        self,
        run_args: list[str],
        *,
        prompt: str,
        env: dict[str, str],
    ) -> ExecutionOutcome:
        started = time.monotonic()
        try:
            process = await asyncio.create_subprocess_exec(
                *run_args,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=self.cwd,
                env=env,
            )
        except FileNotFoundError:
            return ExecutionOutcome(
                success=False,
                error=f"Agent command not found: {run_args[0]}",
                exit_code=NOT_FOUND_EXIT_CODE,
                duration_seconds=time.monotonic() - started,
            )
        except OSError as error:
            return ExecutionOutcome(
                success=False,
                error=f"Agent failed to start: {error}",
                duration_seconds=time.monotonic() - started,
            )

        try:
            stdout, stderr = await asyncio.wait_for(
                process.communicate(prompt.encode("utf-8")),
                timeout=self.timeout_seconds,
            )
        except TimeoutError:
            await _terminate_process(process)
            logger.warning("Agent %s timed out after %.1fs", run_args[0], self.timeout_seconds)
            return ExecutionOutcome(
                success=False,
                error=f"timed out after {self.timeout_seconds:g}s",
                exit_code=TIMEOUT_EXIT_CODE,
                duration_seconds=time.monotonic() - started,
            )

        output = stdout.decode("utf-8", errors="replace")
        error_text = stderr.decode("utf-8", errors="replace").strip()
        exit_code = process.returncode
        duration = time.monotonic() - started
        if exit_code == 0:
            return ExecutionOutcome(
                success=True,
                output=output,
                exit_code=exit_code,
                duration_seconds=duration,
                files_modified=_parse_files_modified(output),
            )
        return ExecutionOutcome(
            success=False,
            output=output,
            error=error_text or f"exit code {exit_code}",
            exit_code=exit_code,
            duration_seconds=duration,
        )


def build_task_prompt(task: Task, *, project_root: Path | None = None) -> str:
    """Render the instructions handed to the agent for one task."""

    lines = [f"Task: {task.title}"]
    if task.description:
        lines += ["", f"Description: {task.description}"]
    lines += [
        "",
        f"Category: {task.category.value}",
        f"Priority: {task.priority.name}",
        f"Task ID: {task.id}",
    ]
    if task.affected_files:
        lines += ["", "Affected Files:", *task.affected_files]
    if project_root is not None:
        lines += ["", f"Repository Location: {project_root}"]
    return "\n".join(lines) + "\n"


def _build_run_args(
    *,
    command_template: str,
    prompt: str,
    prompt_file: Path,
    task_id: str,
) -> list[str]:
    stripped = command_template.strip()
    if not stripped:
        raise ExecutionFailure(task_id, "agent command template is empty")
    try:
        rendered = stripped.format(
            prompt=shlex.quote(prompt),
            prompt_file=shlex.quote(str(prompt_file)),
            task_id=shlex.quote(task_id),
        )
    except (KeyError, IndexError) as error:
        raise ExecutionFailure(
            task_id,
            f"unsupported command template placeholder: {error}",
        ) from error

    argv = shlex.split(rendered)
    if not argv:
        raise ExecutionFailure(task_id, "agent command template rendered an empty command")
    return argv


def _parse_files_modified(output: str) -> tuple[str, ...]:
    match = _FILES_MODIFIED_RE.search(output)
    if match is None:
        return ()
    return tuple(name.strip() for name in match.group(1).split(",") if name.strip())


async def _terminate_process(process: asyncio.subprocess.Process) -> None:
    try:
        process.terminate()
    except ProcessLookupError:
        return
    try:
        await asyncio.wait_for(process.wait(), timeout=2)
    except TimeoutError:
        try:
            process.kill()
        except ProcessLookupError:
            return
        await process.wait()
