"""Deterministic agent selection from task attributes."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from task_relay.tasks.models import (
    COMPLEX_AGENT,
    SIMPLE_AGENT,
    AgentType,
    IssueCategory,
    Priority,
    Task,
)

COMPLEX_PRIORITIES = frozenset({Priority.CRITICAL, Priority.HIGH})
COMPLEX_CATEGORIES = frozenset({IssueCategory.BACKEND, IssueCategory.DATABASE})
SIMPLE_CATEGORIES = frozenset({IssueCategory.CONFIG, IssueCategory.FRONTEND})
COMPLEX_KEYWORDS = ("refactor", "architecture", "complex", "analyze", "multiple files")
SIMPLE_KEYWORDS = ("fix", "update", "simple", "quick", "minor")
MANY_FILES_THRESHOLD = 5
FEW_FILES_THRESHOLD = 2


class AgentStrategy(str, Enum):
    """How a batch picks the agent for each task."""

    SMART = "smart"
    CLAUDE = "claude"
    GEMINI = "gemini"


@dataclass(slots=True, frozen=True)
class SelectionExplanation:
    """Intermediate signals behind one selection."""

    agent: AgentType
    needs_complex: bool
    needs_simple: bool
    reasons: tuple[str, ...]


def explain_selection(task: Task) -> SelectionExplanation:
    """Evaluate both signal sets and the precedence rule for ``task``."""

    title = task.title.lower()
    text = f"{title}\n{task.description.lower()}"
    file_count = len(task.affected_files)
    reasons: list[str] = []

    complex_signals = {
        f"priority {task.priority.name}": task.priority in COMPLEX_PRIORITIES,
        f"category {task.category.value}": task.category in COMPLEX_CATEGORIES,
        f"{file_count} affected files > {MANY_FILES_THRESHOLD}": (
            file_count > MANY_FILES_THRESHOLD
        ),
        "complex keyword": any(keyword in text for keyword in COMPLEX_KEYWORDS),
    }
    simple_signals = {
        f"category {task.category.value}": task.category in SIMPLE_CATEGORIES,
        "simple keyword in title": any(keyword in title for keyword in SIMPLE_KEYWORDS),
        f"{file_count} affected files <= {FEW_FILES_THRESHOLD}": (
            file_count <= FEW_FILES_THRESHOLD
        ),
    }
    reasons.extend(f"complex: {name}" for name, hit in complex_signals.items() if hit)
    reasons.extend(f"simple: {name}" for name, hit in simple_signals.items() if hit)

    needs_complex = any(complex_signals.values())
    needs_simple = any(simple_signals.values())
    if needs_simple and not needs_complex:
        agent = SIMPLE_AGENT
    else:
        # Both or neither: the higher-capability agent.
        agent = COMPLEX_AGENT
    return SelectionExplanation(
        agent=agent,
        needs_complex=needs_complex,
        needs_simple=needs_simple,
        reasons=tuple(reasons),
    )


def select_agent(task: Task) -> AgentType:
    """Pick the agent for ``task``; pure and deterministic."""

    return explain_selection(task).agent


def resolve_agent(task: Task, strategy: AgentStrategy = AgentStrategy.SMART) -> AgentType:
    """Honour a pinned strategy, otherwise defer to ``select_agent``."""

    if strategy == AgentStrategy.CLAUDE:
        return AgentType.CLAUDE
    if strategy == AgentStrategy.GEMINI:
        return AgentType.GEMINI
    return select_agent(task)
