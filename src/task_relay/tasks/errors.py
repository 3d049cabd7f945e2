"""Error taxonomy for task store and execution."""

from __future__ import annotations


class TaskRelayError(Exception):
    """Base class for all domain errors raised by task-relay."""


class NotFoundError(TaskRelayError, LookupError):
    """Operation referenced a task id that is not in the store."""

    def __init__(self, task_id: str) -> None:
        super().__init__(f"Task not found: {task_id}")
        self.task_id = task_id


class StorageIOError(TaskRelayError):
    """Store file could not be read or written."""

    def __init__(self, message: str, *, path: object = None) -> None:
        super().__init__(message)
        self.path = path


class StoreFormatError(StorageIOError):
    """Store file exists but does not hold a valid task document."""


class ImportFormatError(TaskRelayError, ValueError):
    """Import document is malformed; nothing was imported."""


class InvalidTransitionError(TaskRelayError, ValueError):
    """Requested status change is not an edge of the task state machine."""

    def __init__(self, task_id: str, status_from: str, status_to: str) -> None:
        super().__init__(
            f"Task {task_id}: transition {status_from} -> {status_to} is not allowed",
        )
        self.task_id = task_id
        self.status_from = status_from
        self.status_to = status_to


class ExecutionFailure(TaskRelayError, RuntimeError):
    """Executor reported or raised a failure for one task."""

    def __init__(self, task_id: str, reason: str) -> None:
        super().__init__(f"Execution failed for task {task_id}: {reason}")
        self.task_id = task_id
        self.reason = reason
