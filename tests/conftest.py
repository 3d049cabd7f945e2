"""Shared test fixtures."""

from __future__ import annotations

from pathlib import Path

import pytest

from task_relay.tasks.store import TaskStore
from tests.fakes import ECHO_AGENT_COMMAND_TEMPLATE, FakeClock


@pytest.fixture()
def store_path(tmp_path: Path) -> Path:
    return tmp_path / "tasks" / "tasks.json"


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def store(store_path: Path, clock: FakeClock):
    task_store = TaskStore(store_path, clock=clock, created_by="tester")
    yield task_store
    task_store.close()


@pytest.fixture()
def project_root(tmp_path: Path, monkeypatch) -> Path:
    """Isolated project directory with deterministic CLI environment."""

    root = tmp_path / "project"
    root.mkdir()
    monkeypatch.setenv("TASK_RELAY_PROJECT_ROOT", str(root))
    monkeypatch.setenv("TASK_RELAY_PAUSE_SECONDS", "0")
    monkeypatch.setenv("TASK_RELAY_CLAUDE_COMMAND_TEMPLATE", ECHO_AGENT_COMMAND_TEMPLATE)
    monkeypatch.setenv("TASK_RELAY_GEMINI_COMMAND_TEMPLATE", ECHO_AGENT_COMMAND_TEMPLATE)
    for name in ("TASK_RELAY_WATCH", "TASK_RELAY_AGENT_STRATEGY", "TASK_RELAY_LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)
    return root
