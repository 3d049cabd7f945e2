from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from pathlib import Path

import allure
import pytest

from task_relay.tasks.codec import read_store_file, task_to_dict
from task_relay.tasks.errors import (
    ImportFormatError,
    InvalidTransitionError,
    NotFoundError,
    StorageIOError,
    StoreFormatError,
)
from task_relay.tasks.models import (
    IssueCategory,
    Priority,
    SortField,
    SortOrder,
    Task,
    TaskCreate,
    TaskEvent,
    TaskMetadata,
    TaskQuery,
    TaskStatus,
    TaskUpdate,
)
from task_relay.tasks.store import StoreState, TaskStore
from tests.fakes import FakeClock, bump_mtime, write_external

pytestmark = [
    allure.epic("Task Store"),
    allure.feature("Persistence & Sync"),
]


def _seed(store: TaskStore) -> dict[str, Task]:
    specs = [
        ("Refactor billing", "Split invoices module", IssueCategory.BACKEND, Priority.HIGH),
        ("Fix header colour", "CSS only", IssueCategory.FRONTEND, Priority.LOW),
        ("Add index", "Slow customer LOOKUP", IssueCategory.DATABASE, Priority.CRITICAL),
        ("Bump timeout", "", IssueCategory.CONFIG, Priority.MEDIUM),
    ]
    return {
        title: store.create(
            TaskCreate(title=title, description=description, category=category, priority=priority),
        )
        for title, description, category, priority in specs
    }


def test_create_assigns_unique_ids_and_initial_state(store: TaskStore) -> None:
    created = [store.create(TaskCreate(title=f"Task {index}")) for index in range(25)]

    ids = [task.id for task in created]
    assert len(set(ids)) == len(ids)
    assert all(task_id.startswith("task_") for task_id in ids)
    first = created[0]
    assert first.status == TaskStatus.PENDING
    assert first.human_approved is False
    assert first.metadata.version == 1
    assert first.metadata.created_by == "tester"
    assert [task.id for task in store.get_all()] == ids


def test_create_rejects_blank_title_and_duplicate_id(store: TaskStore) -> None:
    store.create(TaskCreate(title="Given id", task_id="task_fixed"))

    with pytest.raises(ValueError, match="title is required"):
        store.create(TaskCreate(title="   "))
    with pytest.raises(ValueError, match="already exists"):
        store.create(TaskCreate(title="Again", task_id="task_fixed"))
    assert len(store) == 1


def test_every_mutation_increments_version_and_last_modified(store: TaskStore) -> None:
    task = store.create(TaskCreate(title="Versioned"))
    versions = [task.metadata.version]
    stamps = [task.metadata.last_modified]

    for change in (
        TaskUpdate(title="Renamed"),
        TaskUpdate(priority=Priority.CRITICAL),
        TaskUpdate(notes="checked"),
    ):
        task = store.update(task.id, change)
        versions.append(task.metadata.version)
        stamps.append(task.metadata.last_modified)
    task = store.archive(task.id)
    versions.append(task.metadata.version)
    stamps.append(task.metadata.last_modified)

    assert versions == [1, 2, 3, 4, 5]
    assert stamps == sorted(stamps)
    assert len(set(stamps)) == len(stamps)


def test_update_and_delete_unknown_id_raise_not_found(store: TaskStore) -> None:
    with pytest.raises(NotFoundError, match="task_missing"):
        store.update("task_missing", TaskUpdate(title="x"))
    with pytest.raises(NotFoundError):
        store.delete("task_missing")
    with pytest.raises(NotFoundError):
        store.archive("task_missing")
    assert store.get("task_missing") is None


def test_update_enforces_transition_table(store: TaskStore) -> None:
    task = store.create(TaskCreate(title="Lifecycle"))
    done = store.transition(task.id, TaskEvent.EXECUTION_SUCCEEDED, result="ok")

    with pytest.raises(InvalidTransitionError, match="COMPLETED -> NEEDS_REVIEW"):
        store.update(task.id, TaskUpdate(status=TaskStatus.NEEDS_REVIEW))
    with pytest.raises(InvalidTransitionError):
        store.transition(task.id, TaskEvent.APPROVE_REVIEW)

    assert store.get(task.id) == done
    reopened = store.transition(task.id, TaskEvent.REOPEN)
    assert reopened.status == TaskStatus.PENDING
    assert reopened.result == "ok"


def test_archive_is_soft_and_preserved_by_updates(store: TaskStore) -> None:
    task = store.create(TaskCreate(title="Old idea"))

    archived = store.archive(task.id)
    again = store.archive(task.id)
    updated = store.update(task.id, TaskUpdate(notes="still archived"))

    assert archived.is_archived
    assert again == archived
    assert updated.metadata.archived_at == archived.metadata.archived_at
    assert store.get(task.id) is not None


def test_round_trip_through_file(store: TaskStore, store_path: Path) -> None:
    _seed(store)
    store.transition(store.get_all()[0].id, TaskEvent.EXECUTION_FAILED, result="Failed: boom")
    store.archive(store.get_all()[1].id)

    with TaskStore(store_path) as reopened:
        assert reopened.get_all() == store.get_all()


def test_load_rejects_malformed_store_file(store_path: Path) -> None:
    store_path.parent.mkdir(parents=True)
    store_path.write_text('{"version": "1.0", "tasks": [{"schema": {}}]}', "utf-8")

    with pytest.raises(StoreFormatError):
        TaskStore(store_path)


def test_failed_write_leaves_memory_unchanged(store: TaskStore, monkeypatch) -> None:
    task = store.create(TaskCreate(title="Stable"))

    def _fail(*_args, **_kwargs):
        raise StorageIOError("disk full")

    monkeypatch.setattr("task_relay.tasks.store.write_store_file", _fail)

    with pytest.raises(StorageIOError, match="disk full"):
        store.create(TaskCreate(title="Lost"))
    with pytest.raises(StorageIOError):
        store.update(task.id, TaskUpdate(title="Lost too"))
    with pytest.raises(StorageIOError):
        store.delete(task.id)

    assert store.get_all() == [task]
    assert store.state is StoreState.IDLE


def test_save_merges_external_edits_last_write_wins(store_path: Path) -> None:
    local = TaskStore(store_path, clock=FakeClock(), created_by="local")
    shared = local.create(TaskCreate(title="Shared"))

    remote = TaskStore(
        store_path,
        clock=FakeClock(start=datetime(2026, 2, 1, tzinfo=UTC)),
        created_by="remote",
    )
    remote.update(shared.id, TaskUpdate(title="Edited elsewhere"))
    remote_only = remote.create(TaskCreate(title="From remote"))
    bump_mtime(store_path)

    local_only = local.create(TaskCreate(title="From local"))

    titles = {task.id: task.title for task in local.get_all()}
    assert titles == {
        shared.id: "Edited elsewhere",
        local_only.id: "From local",
        remote_only.id: "From remote",
    }
    on_disk, _ = read_store_file(store_path)
    assert {task_id: task.title for task_id, task in on_disk.items()} == titles


def test_save_keeps_newer_memory_record_over_older_external(
    store: TaskStore,
    store_path: Path,
) -> None:
    task = store.create(TaskCreate(title="Mine"))
    stale = Task(
        id=task.id,
        title="Stale external",
        metadata=TaskMetadata(
            version=7,
            created_by="other",
            last_modified=datetime(2020, 1, 1, tzinfo=UTC),
        ),
    )
    write_external(store_path, [stale])

    store.save()

    on_disk, _ = read_store_file(store_path)
    assert on_disk[task.id].title == "Mine"
    assert on_disk[task.id].metadata.version == 8


def test_version_on_disk_never_goes_backwards_across_stores(store_path: Path) -> None:
    local = TaskStore(store_path, clock=FakeClock(), created_by="local")
    shared = local.create(TaskCreate(title="Shared"))

    remote = TaskStore(
        store_path,
        clock=FakeClock(start=datetime(2025, 6, 1, tzinfo=UTC)),
        created_by="remote",
    )
    for round_number in range(4):
        remote.update(shared.id, TaskUpdate(notes=f"remote edit {round_number}"))
    bump_mtime(store_path)
    before, _ = read_store_file(store_path)
    assert before[shared.id].metadata.version == 5

    updated = local.update(shared.id, TaskUpdate(title="Local wins on timestamp"))

    after, _ = read_store_file(store_path)
    assert after[shared.id].title == "Local wins on timestamp"
    assert after[shared.id].metadata.version == 6
    assert updated.metadata.version == 6


def test_locally_deleted_task_is_not_resurrected_by_merge(
    store: TaskStore,
    store_path: Path,
) -> None:
    keep = store.create(TaskCreate(title="Keep"))
    doomed = store.create(TaskCreate(title="Doomed"))
    external = Task(
        id="task_external",
        title="External",
        metadata=TaskMetadata(
            version=1,
            created_by="other",
            last_modified=datetime(2026, 1, 1, tzinfo=UTC),
        ),
    )
    write_external(store_path, [*store.get_all(), external])

    store.delete(doomed.id)

    assert [task.id for task in store.get_all()] == [keep.id, "task_external"]
    on_disk, _ = read_store_file(store_path)
    assert set(on_disk) == {keep.id, "task_external"}


def test_save_overwrites_unparseable_external_edit(
    store: TaskStore,
    store_path: Path,
    caplog,
) -> None:
    task = store.create(TaskCreate(title="Survivor"))
    store_path.write_text("{ half written", "utf-8")
    bump_mtime(store_path)

    with caplog.at_level(logging.WARNING, logger="task_relay.tasks.store"):
        store.create(TaskCreate(title="Next"))

    assert "Ignoring unreadable external edit" in caplog.text
    on_disk, _ = read_store_file(store_path)
    assert task.id in on_disk
    assert len(on_disk) == 2


def test_reload_is_noop_until_file_changes(store: TaskStore, store_path: Path) -> None:
    original = store.create(TaskCreate(title="Original"))
    assert store.reload() is False

    replacement = Task(
        id="task_replacement",
        title="Replacement",
        metadata=TaskMetadata(
            version=1,
            created_by="other",
            last_modified=datetime(2026, 1, 1, tzinfo=UTC),
        ),
    )
    write_external(store_path, [replacement])

    assert store.reload() is True
    assert store.get(original.id) is None
    assert [task.id for task in store.get_all()] == ["task_replacement"]
    assert store.reload() is False


def test_reload_and_refresh_on_missing_file(tmp_path: Path) -> None:
    store = TaskStore(tmp_path / "absent" / "tasks.json")

    assert store.reload() is False
    assert store.refresh() == 0
    assert store.get_all() == []


def test_refresh_reports_task_count_delta(store: TaskStore, store_path: Path) -> None:
    tasks = _seed(store)
    write_external(store_path, list(tasks.values())[:1])

    assert store.refresh() == 3
    assert len(store) == 1


def test_query_filters_sorts_and_paginates(store: TaskStore) -> None:
    tasks = _seed(store)
    store.archive(tasks["Bump timeout"].id)

    live = store.query(TaskQuery(archived=False))
    assert [task.title for task in live] == ["Refactor billing", "Fix header colour", "Add index"]

    by_priority = store.query(TaskQuery(sort_by=SortField.PRIORITY))
    assert [task.priority for task in by_priority] == [
        Priority.CRITICAL,
        Priority.HIGH,
        Priority.MEDIUM,
        Priority.LOW,
    ]

    by_title = store.query(TaskQuery(sort_by=SortField.TITLE, sort_order=SortOrder.ASC))
    assert by_title[0].title == "Add index"

    newest_first = store.query(TaskQuery(sort_by=SortField.CREATED_AT, limit=2))
    assert [task.title for task in newest_first] == ["Bump timeout", "Add index"]

    page = store.query(TaskQuery(sort_by=SortField.CREATED_AT, offset=1, limit=2))
    assert [task.title for task in page] == ["Add index", "Fix header colour"]

    assert [task.title for task in store.query(TaskQuery(search="lookup"))] == ["Add index"]
    assert [
        task.title
        for task in store.query(
            TaskQuery(category=(IssueCategory.FRONTEND, IssueCategory.CONFIG), archived=False),
        )
    ] == ["Fix header colour"]
    assert store.query(TaskQuery(status=(TaskStatus.COMPLETED,))) == []


def test_statistics_are_zero_filled(store: TaskStore) -> None:
    empty = store.get_statistics()
    assert empty.total == 0
    assert empty.completion_rate == 0.0
    assert empty.by_status == {status: 0 for status in TaskStatus}

    tasks = _seed(store)
    store.transition(tasks["Add index"].id, TaskEvent.EXECUTION_SUCCEEDED)

    stats = store.get_statistics()
    assert stats.total == 4
    assert stats.by_status[TaskStatus.COMPLETED] == 1
    assert stats.by_status[TaskStatus.NEEDS_REVIEW] == 0
    assert stats.by_priority[Priority.LOW] == 1
    assert stats.by_category[IssueCategory.DATABASE] == 1
    assert stats.completion_rate == 25.0


def test_export_selected_ids_ignores_unknown(store: TaskStore) -> None:
    tasks = _seed(store)
    wanted = tasks["Add index"].id

    payload = json.loads(store.export(["task_unknown", wanted]))

    assert payload["version"] == "1.0"
    assert "exportedAt" in payload
    assert [entry["schema"]["id"] for entry in payload["tasks"]] == [wanted]


def test_import_skips_existing_unless_overwrite(store: TaskStore) -> None:
    task = store.create(TaskCreate(title="Original"))
    exported = store.export()
    store.update(task.id, TaskUpdate(title="Changed"))

    assert store.import_tasks(exported) == 0
    assert store.get(task.id).title == "Changed"

    assert store.import_tasks(exported, overwrite=True) == 1
    restored = store.get(task.id)
    assert restored.title == "Original"
    assert restored.metadata.version == 3


def test_import_adds_new_tasks_from_another_store(store: TaskStore, tmp_path: Path) -> None:
    other = TaskStore(tmp_path / "other.json", clock=FakeClock())
    first = other.create(TaskCreate(title="Imported one"))
    other.create(TaskCreate(title="Imported two"))

    assert store.import_tasks(other.export()) == 2
    assert store.get(first.id).title == "Imported one"


def test_import_is_all_or_nothing(store: TaskStore) -> None:
    existing = store.create(TaskCreate(title="Existing"))
    valid = Task(
        id="task_new",
        title="Valid",
        metadata=TaskMetadata(
            version=1,
            created_by="other",
            last_modified=datetime(2026, 1, 1, tzinfo=UTC),
        ),
    )
    document = json.dumps(
        {
            "version": "1.0",
            "tasks": [task_to_dict(valid), {"schema": {"id": "task_bad"}}],
        },
    )

    with pytest.raises(ImportFormatError, match="Invalid import format"):
        store.import_tasks(document)
    with pytest.raises(ImportFormatError):
        store.import_tasks("not json at all")

    assert store.get_all() == [existing]


def test_clone_creates_fresh_pending_copy(store: TaskStore) -> None:
    source = store.create(
        TaskCreate(
            title="Template",
            description="Same steps",
            category=IssueCategory.API,
            affected_files=("api/routes.py",),
        ),
    )
    store.transition(source.id, TaskEvent.EXECUTION_SUCCEEDED, result="done")

    copy = store.clone(source.id)
    named = store.clone(source.id, title="Second run")

    assert copy.id != source.id
    assert copy.title == "Copy of Template"
    assert copy.status == TaskStatus.PENDING
    assert copy.result is None
    assert copy.metadata.version == 1
    assert copy.affected_files == ("api/routes.py",)
    assert copy.category == IssueCategory.API
    assert named.title == "Second run"


def test_clear_removes_everything(store: TaskStore, store_path: Path) -> None:
    _seed(store)

    store.clear()

    assert store.get_all() == []
    on_disk, _ = read_store_file(store_path)
    assert on_disk == {}
