"""CLI entrypoint for task-relay."""

import logging
import os
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

import rich_click as click

from task_relay import __version__
from task_relay.execution.controllers import (
    AgentsCommand,
    AutoRunCommand,
    ExecutionCliController,
    ExecutorKind,
    RunTaskCommand,
)
from task_relay.execution.selector import AgentStrategy
from task_relay.tasks.controllers import (
    TaskAddCommand,
    TaskCliController,
    TaskCloneCommand,
    TaskExportCommand,
    TaskImportCommand,
    TaskListCommand,
    TaskRefCommand,
    TaskReviewCommand,
    TaskStatsCommand,
    TaskUpdateCommand,
)
from task_relay.tasks.errors import TaskRelayError
from task_relay.tasks.models import (
    AgentType,
    IssueCategory,
    Priority,
    SortField,
    SortOrder,
    TaskEvent,
    TaskStatus,
)

click.rich_click.USE_MARKDOWN = True
TASK_CONTROLLER = TaskCliController()
EXECUTION_CONTROLLER = ExecutionCliController()

_project_root_option = click.option(
    "--project-root",
    type=click.Path(path_type=Path, file_okay=False),
    default=None,
    help="Project directory holding `tasks/tasks.json` (default: TASK_RELAY_PROJECT_ROOT or cwd).",
)
_CATEGORY_CHOICE = click.Choice([category.value for category in IssueCategory])
_PRIORITY_CHOICE = click.Choice([priority.name for priority in Priority], case_sensitive=False)
_STATUS_CHOICE = click.Choice([status.value for status in TaskStatus], case_sensitive=False)
_AGENT_CHOICE = click.Choice([agent.value for agent in AgentType])
_STRATEGY_CHOICE = click.Choice([strategy.value for strategy in AgentStrategy])
_EXECUTOR_CHOICE = click.Choice([kind.value for kind in ExecutorKind])


@click.group()
@click.version_option(version=__version__, prog_name="task-relay")
@click.option("--verbose", "-v", is_flag=True, help="Log progress at INFO level.")
def task_relay(verbose: bool) -> None:
    """Queue coding tasks and dispatch them to CLI agents one at a time."""

    level = "INFO" if verbose else os.getenv("TASK_RELAY_LOG_LEVEL", "WARNING").strip().upper()
    logging.basicConfig(
        level=level if isinstance(logging.getLevelName(level), int) else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@task_relay.group()
def tasks() -> None:
    """Task store commands."""


@tasks.command("add")
@_project_root_option
@click.argument("title")
@click.option("--description", "-d", default="", help="Longer task description.")
@click.option(
    "--category",
    type=_CATEGORY_CHOICE,
    default=IssueCategory.BACKEND.value,
    show_default=True,
)
@click.option(
    "--priority",
    type=_PRIORITY_CHOICE,
    default=Priority.MEDIUM.name,
    show_default=True,
)
@click.option(
    "--file",
    "affected_files",
    multiple=True,
    help="Affected file path. Can be repeated.",
)
def tasks_add(  # noqa: PLR0913
    project_root: Path | None,
    title: str,
    description: str,
    category: str,
    priority: str,
    affected_files: tuple[str, ...],
) -> None:
    """Create a PENDING task."""

    with _domain_errors():
        _emit_lines(
            TASK_CONTROLLER.add(
                TaskAddCommand(
                    project_root=project_root,
                    title=title,
                    description=description,
                    category=IssueCategory(category),
                    priority=Priority[priority.upper()],
                    affected_files=affected_files,
                ),
            ),
        )


@tasks.command("list")
@_project_root_option
@click.option("--status", multiple=True, type=_STATUS_CHOICE, help="Status filter. Repeatable.")
@click.option(
    "--priority",
    multiple=True,
    type=_PRIORITY_CHOICE,
    help="Priority filter. Repeatable.",
)
@click.option(
    "--category",
    multiple=True,
    type=_CATEGORY_CHOICE,
    help="Category filter. Repeatable.",
)
@click.option("--search", default=None, help="Case-insensitive text in title or description.")
@click.option(
    "--archived",
    type=click.Choice(["no", "yes", "all"]),
    default="no",
    show_default=True,
    help="Include archived tasks.",
)
@click.option(
    "--sort-by",
    type=click.Choice([field.value for field in SortField]),
    default=None,
    help="Sort field (default: store order).",
)
@click.option(
    "--order",
    type=click.Choice([order.value for order in SortOrder]),
    default=SortOrder.DESC.value,
    show_default=True,
)
@click.option("--offset", type=click.IntRange(min=0), default=0, show_default=True)
@click.option("--limit", type=click.IntRange(min=1), default=None)
def tasks_list(  # noqa: PLR0913
    project_root: Path | None,
    status: tuple[str, ...],
    priority: tuple[str, ...],
    category: tuple[str, ...],
    search: str | None,
    archived: str,
    sort_by: str | None,
    order: str,
    offset: int,
    limit: int | None,
) -> None:
    """List tasks with filters, sorting and pagination."""

    with _domain_errors():
        _emit_lines(
            TASK_CONTROLLER.list_tasks(
                TaskListCommand(
                    project_root=project_root,
                    status=tuple(TaskStatus(value.upper()) for value in status),
                    priority=tuple(Priority[value.upper()] for value in priority),
                    category=tuple(IssueCategory(value) for value in category),
                    search=search,
                    archived={"no": False, "yes": True, "all": None}[archived],
                    sort_by=SortField(sort_by) if sort_by else None,
                    sort_order=SortOrder(order),
                    offset=offset,
                    limit=limit,
                ),
            ),
        )


@tasks.command("show")
@_project_root_option
@click.argument("task_id")
def tasks_show(project_root: Path | None, task_id: str) -> None:
    """Show one task with its result."""

    with _domain_errors():
        _emit_lines(
            TASK_CONTROLLER.show(TaskRefCommand(project_root=project_root, task_id=task_id)),
        )


@tasks.command("update")
@_project_root_option
@click.argument("task_id")
@click.option("--title", default=None)
@click.option("--description", "-d", default=None)
@click.option("--category", type=_CATEGORY_CHOICE, default=None)
@click.option("--priority", type=_PRIORITY_CHOICE, default=None)
@click.option(
    "--file",
    "affected_files",
    multiple=True,
    help="Replace affected files. Can be repeated.",
)
@click.option("--notes", default=None, help="Reviewer notes.")
def tasks_update(  # noqa: PLR0913
    project_root: Path | None,
    task_id: str,
    title: str | None,
    description: str | None,
    category: str | None,
    priority: str | None,
    affected_files: tuple[str, ...],
    notes: str | None,
) -> None:
    """Edit task fields; status changes go through approve/reject/reopen."""

    with _domain_errors():
        _emit_lines(
            TASK_CONTROLLER.update(
                TaskUpdateCommand(
                    project_root=project_root,
                    task_id=task_id,
                    title=title,
                    description=description,
                    category=IssueCategory(category) if category else None,
                    priority=Priority[priority.upper()] if priority else None,
                    affected_files=affected_files or None,
                    notes=notes,
                ),
            ),
        )


def _review_command(name: str, event: TaskEvent, help_text: str) -> None:
    @tasks.command(name, help=help_text)
    @_project_root_option
    @click.argument("task_id")
    @click.option("--notes", default=None, help="Reviewer notes.")
    def command(project_root: Path | None, task_id: str, notes: str | None) -> None:
        with _domain_errors():
            _emit_lines(
                TASK_CONTROLLER.review(
                    TaskReviewCommand(
                        project_root=project_root,
                        task_id=task_id,
                        event=event,
                        notes=notes,
                    ),
                ),
            )


_review_command("approve", TaskEvent.APPROVE_REVIEW, "Accept a NEEDS_REVIEW task as COMPLETED.")
_review_command("reject", TaskEvent.REJECT_REVIEW, "Send a NEEDS_REVIEW task back to PENDING.")
_review_command("reopen", TaskEvent.REOPEN, "Move a COMPLETED task back to PENDING.")


@tasks.command("archive")
@_project_root_option
@click.argument("task_id")
def tasks_archive(project_root: Path | None, task_id: str) -> None:
    """Soft-delete a task (kept in the file, hidden from default listings)."""

    with _domain_errors():
        _emit_lines(
            TASK_CONTROLLER.archive(TaskRefCommand(project_root=project_root, task_id=task_id)),
        )


@tasks.command("delete")
@_project_root_option
@click.argument("task_id")
def tasks_delete(project_root: Path | None, task_id: str) -> None:
    """Remove a task from the store."""

    with _domain_errors():
        _emit_lines(
            TASK_CONTROLLER.delete(TaskRefCommand(project_root=project_root, task_id=task_id)),
        )


@tasks.command("clone")
@_project_root_option
@click.argument("task_id")
@click.option("--title", default=None, help="Title for the copy (default: `Copy of <title>`).")
def tasks_clone(project_root: Path | None, task_id: str, title: str | None) -> None:
    """Create a fresh PENDING copy of a task."""

    with _domain_errors():
        _emit_lines(
            TASK_CONTROLLER.clone(
                TaskCloneCommand(project_root=project_root, task_id=task_id, title=title),
            ),
        )


@tasks.command("stats")
@_project_root_option
def tasks_stats(project_root: Path | None) -> None:
    """Show counts by status, priority and category."""

    with _domain_errors():
        _emit_lines(TASK_CONTROLLER.stats(TaskStatsCommand(project_root=project_root)))


@tasks.command("export")
@_project_root_option
@click.option("--task-id", "task_ids", multiple=True, help="Export only these ids. Repeatable.")
@click.option(
    "--output",
    "output_path",
    type=click.Path(path_type=Path, dir_okay=False),
    default=None,
    help="Write to a file instead of stdout.",
)
def tasks_export(
    project_root: Path | None,
    task_ids: tuple[str, ...],
    output_path: Path | None,
) -> None:
    """Export tasks as an importable JSON document."""

    with _domain_errors():
        _emit_lines(
            TASK_CONTROLLER.export(
                TaskExportCommand(
                    project_root=project_root,
                    task_ids=task_ids,
                    output_path=output_path,
                ),
            ),
        )


@tasks.command("import")
@_project_root_option
@click.argument("input_path", type=click.Path(path_type=Path, dir_okay=False))
@click.option("--overwrite", is_flag=True, help="Replace tasks whose ids already exist.")
def tasks_import(project_root: Path | None, input_path: Path, overwrite: bool) -> None:
    """Import tasks from an exported JSON document."""

    with _domain_errors():
        _emit_lines(
            TASK_CONTROLLER.import_tasks(
                TaskImportCommand(
                    project_root=project_root,
                    input_path=input_path,
                    overwrite=overwrite,
                ),
            ),
        )


@task_relay.command("run")
@_project_root_option
@click.option("--task-id", required=True, help="Task to run.")
@click.option("--agent", type=_AGENT_CHOICE, default=None, help="Override the selector.")
@click.option(
    "--executor",
    type=_EXECUTOR_CHOICE,
    default=ExecutorKind.CLI.value,
    show_default=True,
)
def run(project_root: Path | None, task_id: str, agent: str | None, executor: str) -> None:
    """Run one PENDING task with the selected agent."""

    with _domain_errors():
        result = EXECUTION_CONTROLLER.run_task(
            RunTaskCommand(
                project_root=project_root,
                task_id=task_id,
                agent=AgentType(agent) if agent else None,
                executor=ExecutorKind(executor),
            ),
        )
    _emit_lines(result.lines)
    if not result.success:
        raise click.ClickException("Task execution failed; it now needs review.")


@task_relay.command("auto")
@_project_root_option
@click.option(
    "--strategy",
    type=_STRATEGY_CHOICE,
    default=None,
    help="Agent strategy (default: TASK_RELAY_AGENT_STRATEGY or smart).",
)
@click.option(
    "--executor",
    type=_EXECUTOR_CHOICE,
    default=ExecutorKind.CLI.value,
    show_default=True,
)
@click.option(
    "--pause",
    "pause_seconds",
    type=click.FloatRange(min=0),
    default=None,
    help="Seconds between tasks (default: TASK_RELAY_PAUSE_SECONDS).",
)
def auto(
    project_root: Path | None,
    strategy: str | None,
    executor: str,
    pause_seconds: float | None,
) -> None:
    """Approve and run every PENDING task, one at a time."""

    with _domain_errors():
        result = EXECUTION_CONTROLLER.run_batch(
            AutoRunCommand(
                project_root=project_root,
                strategy=AgentStrategy(strategy) if strategy else None,
                executor=ExecutorKind(executor),
                pause_seconds=pause_seconds,
            ),
        )
    _emit_lines(result.lines)


@task_relay.command("agents")
@_project_root_option
@click.option("--task-id", default=None, help="Explain which agent this task would get.")
def agents(project_root: Path | None, task_id: str | None) -> None:
    """Show agent availability and preview selection."""

    with _domain_errors():
        _emit_lines(
            EXECUTION_CONTROLLER.agents(AgentsCommand(project_root=project_root, task_id=task_id)),
        )


@contextmanager
def _domain_errors() -> Iterator[None]:
    try:
        yield
    except (TaskRelayError, ValueError) as error:
        raise click.ClickException(str(error)) from error


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    task_relay()
