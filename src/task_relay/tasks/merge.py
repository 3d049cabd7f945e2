"""Last-write-wins reconciliation of in-memory and on-disk task collections."""

from __future__ import annotations

from collections.abc import Collection, Mapping
from dataclasses import dataclass, field, replace

from task_relay.tasks.models import Task


@dataclass(slots=True)
class MergeResult:
    """Merged collection plus which external records made it in."""

    tasks: dict[str, Task]
    adopted: list[str] = field(default_factory=list)
    replaced: list[str] = field(default_factory=list)
    rebased: list[str] = field(default_factory=list)
    dropped_deleted: list[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.adopted or self.replaced)


def merge_tasks(
    memory: Mapping[str, Task],
    external: Mapping[str, Task],
    *,
    deleted: Collection[str] = (),
) -> MergeResult:
    """Merge an externally written collection into the in-memory one.

    - id only external: adopt the external record, unless it is listed in
      ``deleted`` (removed locally since the last sync);
    - id only in memory: keep it;
    - id on both sides: keep the record with the later
      ``metadata.last_modified``; memory wins ties. A kept memory record
      that differs from an external one at the same or a higher version is
      rebased to ``external.version + 1`` (listed in ``rebased``), so the
      version written to disk never goes backwards.

    Memory order is preserved; adopted records follow in external order.
    Inputs are not modified.
    """

    merged = dict(memory)
    result = MergeResult(tasks=merged)
    for task_id, external_task in external.items():
        memory_task = memory.get(task_id)
        if memory_task is None:
            if task_id in deleted:
                result.dropped_deleted.append(task_id)
                continue
            merged[task_id] = external_task
            result.adopted.append(task_id)
            continue
        if external_task.metadata.last_modified > memory_task.metadata.last_modified:
            merged[task_id] = external_task
            result.replaced.append(task_id)
            continue
        if (
            memory_task != external_task
            and external_task.metadata.version >= memory_task.metadata.version
        ):
            merged[task_id] = replace(
                memory_task,
                metadata=replace(
                    memory_task.metadata,
                    version=external_task.metadata.version + 1,
                ),
            )
            result.rebased.append(task_id)
    return result
