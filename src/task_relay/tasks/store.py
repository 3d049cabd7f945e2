"""JSON-file backed task store with external-edit reconciliation."""

from __future__ import annotations

import logging
import os
from collections.abc import Callable, Iterable, Iterator
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime
from enum import Enum
from pathlib import Path
from types import TracebackType
from typing import TYPE_CHECKING
from uuid import uuid4

from task_relay.tasks.codec import (
    decode_document,
    encode_document,
    file_mtime_ns,
    read_store_file,
    write_store_file,
)
from task_relay.tasks.errors import (
    ImportFormatError,
    InvalidTransitionError,
    NotFoundError,
    StorageIOError,
    StoreFormatError,
)
from task_relay.tasks.merge import merge_tasks
from task_relay.tasks.models import (
    AgentType,
    IssueCategory,
    Priority,
    SortField,
    SortOrder,
    Task,
    TaskCreate,
    TaskEvent,
    TaskMetadata,
    TaskQuery,
    TaskStatistics,
    TaskStatus,
    TaskUpdate,
    is_allowed_transition,
    next_status,
    utc_now,
)
from task_relay.tasks.watcher import DEFAULT_DEBOUNCE_SECONDS, StoreFileWatcher

if TYPE_CHECKING:
    from task_relay.config import Settings

logger = logging.getLogger(__name__)

_UPDATABLE_FIELDS = (
    "title",
    "description",
    "status",
    "priority",
    "category",
    "affected_files",
    "assigned_agent",
    "human_approved",
    "result",
    "notes",
)


class StoreState(str, Enum):
    """What the store is doing with its file right now.

    Watcher callbacks are accepted only in ``IDLE``.
    """

    IDLE = "idle"
    RELOADING = "reloading"
    SAVING = "saving"


class TaskStore:
    """Authoritative in-memory task map mirrored into one JSON document.

    Every mutation builds a candidate map, persists it through the single
    write path, and only then swaps it in; a failed write leaves memory as
    it was. The write path merges edits another process made to the file
    since this instance last read or wrote it (last-write-wins on
    ``metadata.last_modified``).

    Not thread-safe for concurrent mutations; the only other entry point is
    the file watcher, which is gated by ``state``.
    """

    def __init__(
        self,
        path: str | Path,
        *,
        clock: Callable[[], datetime] = utc_now,
        created_by: str | None = None,
        debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS,
        watch: bool = False,
    ) -> None:
        self.path = Path(path)
        self.debounce_seconds = debounce_seconds
        self._clock = clock
        self._created_by = created_by or _current_user()
        self._tasks: dict[str, Task] = {}
        self._deleted: set[str] = set()
        self._last_mtime_ns: int | None = None
        self._state = StoreState.IDLE
        self._watcher: StoreFileWatcher | None = None

        self._load()
        logger.info("TaskStore ready path=%s total=%d", self.path, len(self._tasks))
        if watch:
            self.start_watching()

    @classmethod
    def from_settings(cls, settings: Settings) -> TaskStore:
        """Open the project store described by ``settings``."""

        return cls(
            settings.store.path,
            debounce_seconds=settings.watch.debounce_seconds,
            watch=settings.watch.enabled,
        )

    def __enter__(self) -> TaskStore:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        traceback: TracebackType | None,
    ) -> None:
        self.close()

    def close(self) -> None:
        """Stop the watcher; the file is always up to date after each mutation."""

        self.stop_watching()

    @property
    def state(self) -> StoreState:
        return self._state

    # ---- reads ----

    def get(self, task_id: str) -> Task | None:
        return self._tasks.get(task_id)

    def get_all(self) -> list[Task]:
        return list(self._tasks.values())

    def __len__(self) -> int:
        return len(self._tasks)

    def __contains__(self, task_id: object) -> bool:
        return task_id in self._tasks

    def query(self, query: TaskQuery | None = None) -> list[Task]:  # noqa: C901
        """Filter, sort, and paginate tasks."""

        query = query or TaskQuery()
        results = list(self._tasks.values())

        if query.status:
            results = [task for task in results if task.status in query.status]
        if query.priority:
            results = [task for task in results if task.priority in query.priority]
        if query.category:
            results = [task for task in results if task.category in query.category]
        if query.assigned_agent:
            results = [task for task in results if task.assigned_agent in query.assigned_agent]
        if query.human_approved is not None:
            results = [task for task in results if task.human_approved == query.human_approved]
        if query.archived is not None:
            results = [task for task in results if task.is_archived == query.archived]
        if query.search:
            needle = query.search.lower()
            results = [
                task
                for task in results
                if needle in task.title.lower() or needle in task.description.lower()
            ]

        if query.sort_by is not None:
            results.sort(
                key=_sort_key(query.sort_by),
                reverse=query.sort_order == SortOrder.DESC,
            )

        offset = max(0, query.offset)
        if query.limit is not None:
            return results[offset : offset + max(0, query.limit)]
        return results[offset:]

    def get_statistics(self) -> TaskStatistics:
        tasks = list(self._tasks.values())
        by_status = {status: 0 for status in TaskStatus}
        by_priority: dict[Priority, int] = {}
        by_category: dict[IssueCategory, int] = {}
        for task in tasks:
            by_status[task.status] += 1
            by_priority[task.priority] = by_priority.get(task.priority, 0) + 1
            by_category[task.category] = by_category.get(task.category, 0) + 1

        completed = by_status[TaskStatus.COMPLETED]
        return TaskStatistics(
            total=len(tasks),
            by_status=by_status,
            by_priority=by_priority,
            by_category=by_category,
            completion_rate=(completed / len(tasks) * 100.0) if tasks else 0.0,
        )

    def export(self, task_ids: Iterable[str] | None = None) -> str:
        """Render the selected tasks (default: all) as an import-compatible document."""

        if task_ids is None:
            selected = list(self._tasks.values())
        else:
            selected = [self._tasks[task_id] for task_id in task_ids if task_id in self._tasks]
        return encode_document(selected, stamp_key="exportedAt", stamped_at=self._clock())

    # ---- mutations ----

    def create(self, schema: TaskCreate) -> Task:
        title = schema.title.strip()
        if not title:
            raise ValueError("Task title is required")
        task_id = schema.task_id.strip() if schema.task_id else self._new_task_id()
        if not task_id:
            raise ValueError("Task id must not be blank")
        if task_id in self._tasks:
            raise ValueError(f"Task id already exists: {task_id}")

        now = self._clock()
        task = Task(
            id=task_id,
            title=title,
            description=schema.description or "",
            category=schema.category,
            priority=schema.priority,
            created_at=schema.created_at or now,
            affected_files=tuple(schema.affected_files),
            metadata=TaskMetadata(version=1, created_by=self._created_by, last_modified=now),
        )
        self._persist({**self._tasks, task_id: task}, deleted=self._deleted - {task_id})
        logger.info("Task created id=%s title=%r", task_id, title)
        return self._tasks.get(task_id, task)

    def update(self, task_id: str, changes: TaskUpdate) -> Task:
        current = self._require(task_id)
        fields = {
            name: getattr(changes, name)
            for name in _UPDATABLE_FIELDS
            if getattr(changes, name) is not None
        }
        if "title" in fields:
            fields["title"] = fields["title"].strip()
            if not fields["title"]:
                raise ValueError("Task title is required")
        if "affected_files" in fields:
            fields["affected_files"] = tuple(fields["affected_files"])
        new_status = fields.get("status")
        if new_status is not None and not is_allowed_transition(current.status, new_status):
            raise InvalidTransitionError(task_id, current.status.value, new_status.value)

        updated = replace(current, **fields, metadata=self._bump(current.metadata))
        self._persist({**self._tasks, task_id: updated}, deleted=self._deleted)
        if new_status is not None and new_status != current.status:
            logger.info("Task %s %s -> %s", task_id, current.status.value, new_status.value)
        return self._tasks.get(task_id, updated)

    def transition(
        self,
        task_id: str,
        event: TaskEvent,
        *,
        result: str | None = None,
        notes: str | None = None,
        assigned_agent: AgentType | None = None,
    ) -> Task:
        """Fire one named state-machine event."""

        current = self._require(task_id)
        target = next_status(current.status, event)
        if target is None:
            raise InvalidTransitionError(task_id, current.status.value, event.value)
        return self.update(
            task_id,
            TaskUpdate(
                status=target,
                result=result,
                notes=notes,
                assigned_agent=assigned_agent,
            ),
        )

    def archive(self, task_id: str) -> Task:
        """Soft-delete: mark ``archived_at`` and keep the record."""

        current = self._require(task_id)
        if current.is_archived:
            return current
        now = self._clock()
        archived = replace(current, metadata=self._bump(current.metadata, archived_at=now))
        self._persist({**self._tasks, task_id: archived}, deleted=self._deleted)
        logger.info("Task archived id=%s", task_id)
        return self._tasks.get(task_id, archived)

    def delete(self, task_id: str) -> None:
        self._require(task_id)
        candidate = {key: task for key, task in self._tasks.items() if key != task_id}
        self._persist(candidate, deleted=self._deleted | {task_id})
        logger.info("Task deleted id=%s", task_id)

    def clone(
        self,
        task_id: str,
        *,
        title: str | None = None,
        description: str | None = None,
        category: IssueCategory | None = None,
        priority: Priority | None = None,
        affected_files: tuple[str, ...] | None = None,
    ) -> Task:
        """Create a fresh PENDING copy of an existing task."""

        original = self._require(task_id)
        return self.create(
            TaskCreate(
                title=title or f"Copy of {original.title}",
                description=original.description if description is None else description,
                category=category or original.category,
                priority=priority or original.priority,
                affected_files=(
                    original.affected_files if affected_files is None else affected_files
                ),
            ),
        )

    def clear(self) -> None:
        """Remove every task."""

        self._persist({}, deleted=self._deleted | set(self._tasks))

    def import_tasks(self, document: str, *, overwrite: bool = False) -> int:
        """Import tasks from an export document; returns how many were written.

        The whole document is validated before anything changes. Existing ids
        are skipped unless ``overwrite``; overwritten records get a version
        above the one they replace.
        """

        try:
            incoming = decode_document(document)
        except (ValueError, TypeError) as error:
            raise ImportFormatError(f"Invalid import format: {error}") from error

        now = self._clock()
        candidate = dict(self._tasks)
        imported = 0
        for task_id, task in incoming.items():
            existing = candidate.get(task_id)
            if existing is not None:
                if not overwrite:
                    continue
                task = replace(
                    task,
                    metadata=replace(
                        task.metadata,
                        version=max(existing.metadata.version, task.metadata.version) + 1,
                        last_modified=now,
                    ),
                )
            candidate[task_id] = task
            imported += 1

        if imported:
            self._persist(candidate, deleted=self._deleted - set(incoming))
        logger.info("Imported %d of %d tasks (overwrite=%s)", imported, len(incoming), overwrite)
        return imported

    # ---- synchronization ----

    def save(self) -> None:
        """Persist the current map, merging unseen external edits first."""

        self._persist(dict(self._tasks), deleted=self._deleted)

    def reload(self) -> bool:
        """Replace the in-memory map with the file if it changed since we last saw it.

        Returns True when a reload happened.
        """

        mtime_ns = file_mtime_ns(self.path)
        if mtime_ns is None:
            return False
        if self._last_mtime_ns is not None and mtime_ns <= self._last_mtime_ns:
            return False

        self._state = StoreState.RELOADING
        try:
            tasks, read_mtime_ns = read_store_file(self.path)
        finally:
            self._state = StoreState.IDLE

        previous = len(self._tasks)
        self._tasks = tasks
        self._deleted = set()
        self._last_mtime_ns = read_mtime_ns
        logger.info("Tasks reloaded from %s: %d tasks (was %d)", self.path, len(tasks), previous)
        return True

    def refresh(self) -> int:
        """Reload if needed and return the absolute change in task count."""

        before = len(self._tasks)
        self.reload()
        return abs(len(self._tasks) - before)

    @property
    def is_watching(self) -> bool:
        return self._watcher is not None and self._watcher.is_running

    def start_watching(self) -> None:
        if self._watcher is None:
            self._watcher = StoreFileWatcher(
                self.path,
                self._on_store_file_settled,
                debounce_seconds=self.debounce_seconds,
                is_guarded=self._ignores_file_events,
            )
        self._watcher.start()

    def stop_watching(self) -> None:
        if self._watcher is not None:
            self._watcher.stop()
            self._watcher = None

    def _ignores_file_events(self) -> bool:
        """True while saving or reloading, or when the file is exactly what we last wrote."""

        if self._state is not StoreState.IDLE:
            return True
        try:
            mtime_ns = file_mtime_ns(self.path)
        except StorageIOError:
            return False
        return mtime_ns is not None and mtime_ns == self._last_mtime_ns

    def _on_store_file_settled(self) -> None:
        if self._ignores_file_events():
            return
        logger.info("Task store changed externally, reloading %s", self.path)
        self.reload()

    # ---- internals ----

    def _load(self) -> None:
        if file_mtime_ns(self.path) is None:
            return
        self._tasks, self._last_mtime_ns = read_store_file(self.path)

    def _persist(self, candidate: dict[str, Task], *, deleted: set[str]) -> None:
        tasks = candidate
        if self._state is StoreState.IDLE and self._changed_externally():
            tasks = self._merge_external(candidate, deleted)

        self._state = StoreState.SAVING
        try:
            mtime_ns = write_store_file(self.path, tasks.values(), saved_at=self._clock())
            # Committed before leaving SAVING so the watcher recognizes our own write.
            self._tasks = tasks
            self._deleted = set()
            self._last_mtime_ns = mtime_ns
        except StorageIOError:
            logger.exception("Failed to save tasks to %s", self.path)
            raise
        finally:
            self._state = StoreState.IDLE

    def _changed_externally(self) -> bool:
        mtime_ns = file_mtime_ns(self.path)
        if mtime_ns is None:
            return False
        return self._last_mtime_ns is None or mtime_ns > self._last_mtime_ns

    def _merge_external(self, candidate: dict[str, Task], deleted: set[str]) -> dict[str, Task]:
        try:
            external, _ = read_store_file(self.path)
        except StoreFormatError as error:
            logger.warning("Ignoring unreadable external edit, overwriting: %s", error)
            return candidate

        merged = merge_tasks(candidate, external, deleted=deleted)
        if merged.changed:
            logger.warning(
                "Tasks file was modified externally; merged %d added, %d updated",
                len(merged.adopted),
                len(merged.replaced),
            )
        else:
            logger.info("Tasks file was modified externally; in-memory records are newer")
        if merged.rebased:
            logger.info("Rebased versions above external copies: %s", ", ".join(merged.rebased))
        return merged.tasks

    def _require(self, task_id: str) -> Task:
        task = self._tasks.get(task_id)
        if task is None:
            raise NotFoundError(task_id)
        return task

    def _bump(
        self,
        metadata: TaskMetadata,
        *,
        archived_at: datetime | None = None,
    ) -> TaskMetadata:
        return TaskMetadata(
            version=metadata.version + 1,
            created_by=metadata.created_by,
            last_modified=self._clock(),
            archived_at=archived_at or metadata.archived_at,
        )

    def _new_task_id(self) -> str:
        while True:
            millis = int(self._clock().timestamp() * 1000)
            task_id = f"task_{millis}_{uuid4().hex[:9]}"
            if task_id not in self._tasks:
                return task_id


@contextmanager
def open_store(settings: Settings) -> Iterator[TaskStore]:
    """Open the project store for the duration of one command."""

    store = TaskStore.from_settings(settings)
    try:
        yield store
    finally:
        store.close()


def _sort_key(sort_by: SortField) -> Callable[[Task], object]:
    if sort_by == SortField.PRIORITY:
        return lambda task: int(task.priority)
    if sort_by == SortField.TITLE:
        return lambda task: task.title.lower()
    return lambda task: task.created_at


def _current_user() -> str:
    return os.getenv("USER") or os.getenv("USERNAME") or "unknown"
