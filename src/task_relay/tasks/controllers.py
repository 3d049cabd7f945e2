"""Controllers for task CRUD CLI commands."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from task_relay.config import Settings
from task_relay.tasks.codec import to_iso
from task_relay.tasks.errors import StorageIOError
from task_relay.tasks.models import (
    IssueCategory,
    Priority,
    SortField,
    SortOrder,
    Task,
    TaskCreate,
    TaskEvent,
    TaskQuery,
    TaskStatus,
    TaskUpdate,
)
from task_relay.tasks.store import open_store


@dataclass(slots=True)
class TaskAddCommand:
    """CLI input for task creation."""

    project_root: Path | None
    title: str
    description: str = ""
    category: IssueCategory = IssueCategory.BACKEND
    priority: Priority = Priority.MEDIUM
    affected_files: tuple[str, ...] = ()


@dataclass(slots=True)
class TaskListCommand:
    """CLI input for task listing."""

    project_root: Path | None
    status: tuple[TaskStatus, ...] = ()
    priority: tuple[Priority, ...] = ()
    category: tuple[IssueCategory, ...] = ()
    search: str | None = None
    archived: bool | None = False
    sort_by: SortField | None = None
    sort_order: SortOrder = SortOrder.DESC
    offset: int = 0
    limit: int | None = None


@dataclass(slots=True)
class TaskRefCommand:
    """CLI input for commands addressing one task."""

    project_root: Path | None
    task_id: str


@dataclass(slots=True)
class TaskUpdateCommand:
    """CLI input for editing task fields."""

    project_root: Path | None
    task_id: str
    title: str | None = None
    description: str | None = None
    category: IssueCategory | None = None
    priority: Priority | None = None
    affected_files: tuple[str, ...] | None = None
    notes: str | None = None


@dataclass(slots=True)
class TaskReviewCommand:
    """CLI input for review decisions and reopen."""

    project_root: Path | None
    task_id: str
    event: TaskEvent
    notes: str | None = None


@dataclass(slots=True)
class TaskCloneCommand:
    """CLI input for cloning a task."""

    project_root: Path | None
    task_id: str
    title: str | None = None


@dataclass(slots=True)
class TaskStatsCommand:
    """CLI input for aggregate counts."""

    project_root: Path | None


@dataclass(slots=True)
class TaskExportCommand:
    """CLI input for export."""

    project_root: Path | None
    task_ids: tuple[str, ...] = ()
    output_path: Path | None = None


@dataclass(slots=True)
class TaskImportCommand:
    """CLI input for import."""

    project_root: Path | None
    input_path: Path
    overwrite: bool = False


class TaskCliController:
    """Coordinates task store CLI operations."""

    def add(self, command: TaskAddCommand) -> list[str]:
        with open_store(_settings(command.project_root)) as store:
            task = store.create(
                TaskCreate(
                    title=command.title,
                    description=command.description,
                    category=command.category,
                    priority=command.priority,
                    affected_files=command.affected_files,
                ),
            )
        return [f"Task created: {task.id}", *_task_summary(task)]

    def list_tasks(self, command: TaskListCommand) -> list[str]:
        with open_store(_settings(command.project_root)) as store:
            tasks = store.query(
                TaskQuery(
                    status=command.status,
                    priority=command.priority,
                    category=command.category,
                    search=command.search,
                    archived=command.archived,
                    sort_by=command.sort_by,
                    sort_order=command.sort_order,
                    offset=command.offset,
                    limit=command.limit,
                ),
            )

        lines = [f"Tasks: {len(tasks)}"]
        for task in tasks:
            agent = task.assigned_agent.value if task.assigned_agent else "-"
            archived = " archived" if task.is_archived else ""
            lines.append(
                f"  {task.id} status={task.status.value} priority={task.priority.name} "
                f"category={task.category.value} agent={agent}{archived} title={task.title}",
            )
        return lines

    def show(self, command: TaskRefCommand) -> list[str]:
        with open_store(_settings(command.project_root)) as store:
            task = store.get(command.task_id)
        if task is None:
            return [f"Task not found: {command.task_id}"]

        lines = [f"Task: {task.id}", *_task_summary(task)]
        lines += [
            f"Description: {task.description or '-'}",
            f"Approved: {'yes' if task.human_approved else 'no'}",
            f"Agent: {task.assigned_agent.value if task.assigned_agent else '-'}",
            f"Created: {to_iso(task.created_at)} by {task.metadata.created_by}",
            f"Modified: {to_iso(task.metadata.last_modified)} (v{task.metadata.version})",
        ]
        if task.metadata.archived_at is not None:
            lines.append(f"Archived: {to_iso(task.metadata.archived_at)}")
        if task.affected_files:
            lines.append("Affected files:")
            lines.extend(f"  {path}" for path in task.affected_files)
        if task.notes:
            lines.append(f"Notes: {task.notes}")
        if task.result:
            lines.append("Result:")
            lines.extend(f"  {line}" for line in task.result.splitlines())
        return lines

    def update(self, command: TaskUpdateCommand) -> list[str]:
        with open_store(_settings(command.project_root)) as store:
            task = store.update(
                command.task_id,
                TaskUpdate(
                    title=command.title,
                    description=command.description,
                    category=command.category,
                    priority=command.priority,
                    affected_files=command.affected_files,
                    notes=command.notes,
                ),
            )
        return [f"Task updated: {task.id} (v{task.metadata.version})"]

    def review(self, command: TaskReviewCommand) -> list[str]:
        with open_store(_settings(command.project_root)) as store:
            task = store.transition(command.task_id, command.event, notes=command.notes)
        return [f"Task {task.id}: {command.event.value} -> {task.status.value}"]

    def archive(self, command: TaskRefCommand) -> list[str]:
        with open_store(_settings(command.project_root)) as store:
            task = store.archive(command.task_id)
        return [f"Task archived: {task.id}"]

    def delete(self, command: TaskRefCommand) -> list[str]:
        with open_store(_settings(command.project_root)) as store:
            store.delete(command.task_id)
        return [f"Task deleted: {command.task_id}"]

    def clone(self, command: TaskCloneCommand) -> list[str]:
        with open_store(_settings(command.project_root)) as store:
            task = store.clone(command.task_id, title=command.title)
        return [f"Task cloned: {command.task_id} -> {task.id}", *_task_summary(task)]

    def stats(self, command: TaskStatsCommand) -> list[str]:
        with open_store(_settings(command.project_root)) as store:
            stats = store.get_statistics()

        lines = [
            f"Total: {stats.total}",
            f"Completion: {stats.completion_rate:.1f}%",
            "By status:",
        ]
        lines.extend(f"  {status.value}: {count}" for status, count in stats.by_status.items())
        lines.append("By priority:")
        lines.extend(
            f"  {priority.name}: {count}"
            for priority, count in sorted(stats.by_priority.items(), reverse=True)
        )
        lines.append("By category:")
        lines.extend(
            f"  {category.value}: {count}"
            for category, count in sorted(stats.by_category.items(), key=lambda item: item[0].value)
        )
        return lines

    def export(self, command: TaskExportCommand) -> list[str]:
        with open_store(_settings(command.project_root)) as store:
            document = store.export(command.task_ids or None)

        if command.output_path is None:
            return document.rstrip("\n").splitlines()
        command.output_path.parent.mkdir(parents=True, exist_ok=True)
        command.output_path.write_text(document, "utf-8")
        return [f"Exported to {command.output_path}"]

    def import_tasks(self, command: TaskImportCommand) -> list[str]:
        try:
            document = command.input_path.read_text("utf-8")
        except OSError as error:
            raise StorageIOError(
                f"Failed to read import file {command.input_path}: {error}",
                path=command.input_path,
            ) from error
        with open_store(_settings(command.project_root)) as store:
            imported = store.import_tasks(document, overwrite=command.overwrite)
        return [f"Imported tasks: {imported}"]


def _settings(project_root: Path | None) -> Settings:
    settings = Settings.from_env(project_root=project_root)
    settings.validate()
    return settings


def _task_summary(task: Task) -> list[str]:
    return [
        f"Title: {task.title}",
        f"Status: {task.status.value}",
        f"Priority: {task.priority.name}",
        f"Category: {task.category.value}",
    ]
