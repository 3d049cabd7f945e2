"""Store file codec: task records <-> versioned JSON document."""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Iterable
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from task_relay.tasks.errors import StorageIOError, StoreFormatError
from task_relay.tasks.models import (
    AgentType,
    IssueCategory,
    Priority,
    Task,
    TaskMetadata,
    TaskStatus,
    utc_now,
)

logger = logging.getLogger(__name__)

STORE_DOCUMENT_VERSION = "1.0"


def to_iso(value: datetime) -> str:
    """Serialize timestamp as sortable ISO-8601 text in UTC."""

    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat()


def from_iso(value: str) -> datetime:
    """Parse ISO datetime and ensure timezone-aware UTC fallback."""

    # JavaScript-style "Z" suffix is what older store files carry.
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed


def task_to_dict(task: Task) -> dict[str, Any]:
    """Serialize one task into its document entry."""

    return {
        "schema": {
            "id": task.id,
            "title": task.title,
            "description": task.description,
            "category": task.category.value,
            "priority": int(task.priority),
            "createdAt": to_iso(task.created_at),
            "affectedFiles": list(task.affected_files),
        },
        "status": task.status.value,
        "humanApproved": task.human_approved,
        "assignedAgent": task.assigned_agent.value if task.assigned_agent else None,
        "result": task.result,
        "notes": task.notes,
        "metadata": {
            "version": task.metadata.version,
            "createdBy": task.metadata.created_by,
            "lastModified": to_iso(task.metadata.last_modified),
            "archivedAt": (
                to_iso(task.metadata.archived_at)
                if task.metadata.archived_at is not None
                else None
            ),
        },
    }


def task_from_dict(raw: Any) -> Task:  # noqa: C901, PLR0912
    """Deserialize and validate one document entry."""

    if not isinstance(raw, dict):
        raise TypeError("task entry must be an object")
    schema = raw.get("schema")
    if not isinstance(schema, dict):
        raise TypeError("task.schema must be an object")

    task_id = schema.get("id")
    title = schema.get("title")
    if not isinstance(task_id, str) or not task_id.strip():
        raise ValueError("task.schema.id must be a non-empty string")
    if not isinstance(title, str):
        raise TypeError(f"task {task_id}: schema.title must be a string")
    description = schema.get("description") or ""
    if not isinstance(description, str):
        raise TypeError(f"task {task_id}: schema.description must be a string")

    affected_files = schema.get("affectedFiles") or []
    if not isinstance(affected_files, list) or not all(
        isinstance(item, str) for item in affected_files
    ):
        raise TypeError(f"task {task_id}: schema.affectedFiles must be an array of strings")

    raw_metadata = raw.get("metadata") or {}
    if not isinstance(raw_metadata, dict):
        raise TypeError(f"task {task_id}: metadata must be an object")
    version = raw_metadata.get("version", 1)
    if not isinstance(version, int) or isinstance(version, bool) or version < 1:
        raise ValueError(f"task {task_id}: metadata.version must be an integer >= 1")

    human_approved = raw.get("humanApproved", False)
    if not isinstance(human_approved, bool):
        raise TypeError(f"task {task_id}: humanApproved must be a boolean")

    result = raw.get("result")
    notes = raw.get("notes")
    if result is not None and not isinstance(result, str):
        raise TypeError(f"task {task_id}: result must be a string when provided")
    if notes is not None and not isinstance(notes, str):
        raise TypeError(f"task {task_id}: notes must be a string when provided")

    created_at = _parse_optional_datetime(schema.get("createdAt"), field=f"{task_id}.createdAt")
    last_modified = _parse_optional_datetime(
        raw_metadata.get("lastModified"),
        field=f"{task_id}.lastModified",
    )
    archived_at = _parse_optional_datetime(
        raw_metadata.get("archivedAt"),
        field=f"{task_id}.archivedAt",
    )
    assigned_agent_raw = raw.get("assignedAgent")

    try:
        return Task(
            id=task_id,
            title=title,
            description=description,
            category=IssueCategory(str(schema.get("category") or "backend").lower()),
            priority=_parse_priority(schema.get("priority", int(Priority.MEDIUM))),
            created_at=created_at or utc_now(),
            affected_files=tuple(affected_files),
            status=TaskStatus(str(raw.get("status") or "PENDING").upper()),
            human_approved=human_approved,
            assigned_agent=(
                AgentType(str(assigned_agent_raw).lower()) if assigned_agent_raw else None
            ),
            result=result,
            notes=notes,
            metadata=TaskMetadata(
                version=version,
                created_by=str(raw_metadata.get("createdBy") or "unknown"),
                last_modified=last_modified or datetime.fromtimestamp(0, tz=UTC),
                archived_at=archived_at,
            ),
        )
    except ValueError as error:
        raise ValueError(f"task {task_id}: {error}") from error


def encode_document(
    tasks: Iterable[Task],
    *,
    stamp_key: str = "lastSaved",
    stamped_at: datetime | None = None,
) -> str:
    """Render the full task collection as a versioned JSON document."""

    payload = {
        "version": STORE_DOCUMENT_VERSION,
        stamp_key: to_iso(stamped_at or utc_now()),
        "tasks": [task_to_dict(task) for task in tasks],
    }
    return json.dumps(payload, ensure_ascii=False, indent=2, sort_keys=True) + "\n"


def decode_document(text: str) -> dict[str, Task]:
    """Parse a store or export document into an ordered id -> task mapping.

    Raises ``ValueError``/``TypeError`` describing the first problem found.
    """

    payload = json.loads(text)
    if not isinstance(payload, dict):
        raise TypeError("Expected a JSON object at the top level")
    version = payload.get("version", STORE_DOCUMENT_VERSION)
    if not isinstance(version, str) or version.split(".", 1)[0] != "1":
        raise ValueError(f"Unsupported document version: {version!r}")
    raw_tasks = payload.get("tasks")
    if not isinstance(raw_tasks, list):
        raise TypeError("document.tasks must be an array")

    tasks: dict[str, Task] = {}
    for raw in raw_tasks:
        task = task_from_dict(raw)
        if task.id in tasks:
            logger.warning("Duplicate task id %s in document; keeping the later entry", task.id)
        tasks[task.id] = task
    return tasks


def read_store_file(path: Path) -> tuple[dict[str, Task], int]:
    """Load the store file and return its tasks with the mtime they were read at."""

    try:
        mtime_ns = path.stat().st_mtime_ns
        text = path.read_text("utf-8")
    except OSError as error:
        raise StorageIOError(f"Failed to read task store {path}: {error}", path=path) from error
    try:
        tasks = decode_document(text)
    except (ValueError, TypeError) as error:
        raise StoreFormatError(f"Malformed task store {path}: {error}", path=path) from error
    return tasks, mtime_ns


def write_store_file(path: Path, tasks: Iterable[Task], *, saved_at: datetime | None = None) -> int:
    """Atomically replace the store file and return the mtime of the written file."""

    document = encode_document(tasks, stamped_at=saved_at)
    tmp_path = path.with_name(f".{path.name}.tmp")
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path.write_text(document, "utf-8")
        os.replace(tmp_path, path)
        return path.stat().st_mtime_ns
    except OSError as error:
        tmp_path.unlink(missing_ok=True)
        raise StorageIOError(f"Failed to write task store {path}: {error}", path=path) from error


def file_mtime_ns(path: Path) -> int | None:
    """Modification time of ``path`` in nanoseconds, or None when it does not exist."""

    try:
        return path.stat().st_mtime_ns
    except FileNotFoundError:
        return None
    except OSError as error:
        raise StorageIOError(f"Failed to stat task store {path}: {error}", path=path) from error


def _parse_priority(value: Any) -> Priority:
    if isinstance(value, bool):
        raise ValueError(f"invalid priority {value!r}")
    try:
        if isinstance(value, int):
            return Priority(value)
        if isinstance(value, str):
            token = value.strip()
            if token.isdigit():
                return Priority(int(token))
            return Priority[token.upper()]
    except (KeyError, ValueError) as error:
        raise ValueError(f"invalid priority {value!r}") from error
    raise ValueError(f"invalid priority {value!r}")


def _parse_optional_datetime(value: Any, *, field: str) -> datetime | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise TypeError(f"{field} must be an ISO-8601 string")
    try:
        return from_iso(value)
    except ValueError as error:
        raise ValueError(f"{field} is not a valid ISO-8601 timestamp: {value!r}") from error
