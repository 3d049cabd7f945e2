"""Domain models for the task collection."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum, IntEnum


def utc_now() -> datetime:
    """Current UTC timestamp."""

    return datetime.now(tz=UTC)


class TaskStatus(str, Enum):
    """Task lifecycle states."""

    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    NEEDS_REVIEW = "NEEDS_REVIEW"


class TaskEvent(str, Enum):
    """Named edges of the task state machine."""

    EXECUTION_SUCCEEDED = "execution_succeeded"
    EXECUTION_FAILED = "execution_failed"
    REOPEN = "reopen"
    APPROVE_REVIEW = "approve_review"
    REJECT_REVIEW = "reject_review"


TRANSITIONS: dict[tuple[TaskStatus, TaskEvent], TaskStatus] = {
    (TaskStatus.PENDING, TaskEvent.EXECUTION_SUCCEEDED): TaskStatus.COMPLETED,
    (TaskStatus.PENDING, TaskEvent.EXECUTION_FAILED): TaskStatus.NEEDS_REVIEW,
    (TaskStatus.COMPLETED, TaskEvent.REOPEN): TaskStatus.PENDING,
    (TaskStatus.NEEDS_REVIEW, TaskEvent.APPROVE_REVIEW): TaskStatus.COMPLETED,
    (TaskStatus.NEEDS_REVIEW, TaskEvent.REJECT_REVIEW): TaskStatus.PENDING,
}


def is_allowed_transition(status_from: TaskStatus, status_to: TaskStatus) -> bool:
    """Return True if some state-machine edge leads from one status to the other."""

    if status_from == status_to:
        return True
    return any(
        source == status_from and target == status_to
        for (source, _event), target in TRANSITIONS.items()
    )


def next_status(status: TaskStatus, event: TaskEvent) -> TaskStatus | None:
    """Target status for ``event`` fired in ``status``, or None if the edge does not exist."""

    return TRANSITIONS.get((status, event))


class IssueCategory(str, Enum):
    """Area of the codebase a task touches."""

    FRONTEND = "frontend"
    BACKEND = "backend"
    DATABASE = "database"
    API = "api"
    CONFIG = "config"


class Priority(IntEnum):
    """Task priority; persisted as its integer value."""

    LOW = 1
    MEDIUM = 2
    HIGH = 3
    CRITICAL = 4


class AgentType(str, Enum):
    """CLI agents a task can be dispatched to."""

    CLAUDE = "claude"
    GEMINI = "gemini"


COMPLEX_AGENT = AgentType.CLAUDE
SIMPLE_AGENT = AgentType.GEMINI


@dataclass(slots=True, frozen=True)
class TaskMetadata:
    """Bookkeeping updated on every mutation."""

    version: int
    created_by: str
    last_modified: datetime
    archived_at: datetime | None = None


@dataclass(slots=True, frozen=True)
class Task:
    """One persisted unit of work.

    Records are immutable; the store replaces them with updated copies so a
    failed write can never leave a half-mutated task behind.
    """

    id: str
    title: str
    metadata: TaskMetadata
    description: str = ""
    category: IssueCategory = IssueCategory.BACKEND
    priority: Priority = Priority.MEDIUM
    created_at: datetime = field(default_factory=utc_now)
    affected_files: tuple[str, ...] = ()
    status: TaskStatus = TaskStatus.PENDING
    human_approved: bool = False
    assigned_agent: AgentType | None = None
    result: str | None = None
    notes: str | None = None

    @property
    def is_archived(self) -> bool:
        return self.metadata.archived_at is not None


@dataclass(slots=True)
class TaskCreate:
    """Input payload for creating a task."""

    title: str
    description: str = ""
    category: IssueCategory = IssueCategory.BACKEND
    priority: Priority = Priority.MEDIUM
    affected_files: tuple[str, ...] = ()
    task_id: str | None = None
    created_at: datetime | None = None


@dataclass(slots=True)
class TaskUpdate:
    """Partial update; fields left as None are not touched."""

    title: str | None = None
    description: str | None = None
    status: TaskStatus | None = None
    priority: Priority | None = None
    category: IssueCategory | None = None
    affected_files: tuple[str, ...] | None = None
    assigned_agent: AgentType | None = None
    human_approved: bool | None = None
    result: str | None = None
    notes: str | None = None


class SortField(str, Enum):
    CREATED_AT = "created_at"
    PRIORITY = "priority"
    TITLE = "title"


class SortOrder(str, Enum):
    ASC = "asc"
    DESC = "desc"


@dataclass(slots=True)
class TaskQuery:
    """Filter, sort, and pagination for ``TaskStore.query``.

    Empty filter collections mean "no filter". ``archived`` selects archived
    (True), live (False), or both (None).
    """

    status: tuple[TaskStatus, ...] = ()
    priority: tuple[Priority, ...] = ()
    category: tuple[IssueCategory, ...] = ()
    assigned_agent: tuple[AgentType, ...] = ()
    human_approved: bool | None = None
    archived: bool | None = None
    search: str | None = None
    sort_by: SortField | None = None
    sort_order: SortOrder = SortOrder.DESC
    offset: int = 0
    limit: int | None = None


@dataclass(slots=True)
class TaskStatistics:
    """Aggregate counts for status displays."""

    total: int
    by_status: dict[TaskStatus, int]
    by_priority: dict[Priority, int]
    by_category: dict[IssueCategory, int]
    completion_rate: float
