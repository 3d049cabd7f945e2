"""Runtime configuration for the task store and the execution pump."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

from task_relay.execution.selector import AgentStrategy
from task_relay.tasks.models import AgentType
from task_relay.tasks.watcher import DEFAULT_DEBOUNCE_SECONDS

STORE_RELATIVE_PATH = Path("tasks") / "tasks.json"

DEFAULT_COMMAND_TEMPLATES: dict[AgentType, str] = {
    AgentType.CLAUDE: "claude --dangerously-skip-permissions",
    AgentType.GEMINI: "gemini --yolo",
}


@dataclass(slots=True)
class StoreSettings:
    """Where the task document lives."""

    path: Path = STORE_RELATIVE_PATH


@dataclass(slots=True)
class WatchSettings:
    """External-edit watcher settings."""

    enabled: bool = False
    debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS


@dataclass(slots=True)
class ExecutorSettings:
    """CLI agent invocation settings."""

    command_templates: dict[AgentType, str] = field(
        default_factory=lambda: dict(DEFAULT_COMMAND_TEMPLATES),
    )
    timeout_seconds: float = 1_800.0


@dataclass(slots=True)
class PumpSettings:
    """Batch execution settings."""

    strategy: AgentStrategy = AgentStrategy.SMART
    pause_seconds: float = 1.0


@dataclass(slots=True)
class Settings:
    """Application settings grouped by domain concerns."""

    project_root: Path = Path()
    store: StoreSettings = field(default_factory=StoreSettings)
    watch: WatchSettings = field(default_factory=WatchSettings)
    executor: ExecutorSettings = field(default_factory=ExecutorSettings)
    pump: PumpSettings = field(default_factory=PumpSettings)
    log_level: str = "WARNING"

    @classmethod
    def from_env(cls, project_root: Path | None = None) -> Settings:
        """Load settings from environment with defaults for a local checkout."""

        root = (project_root or Path(os.getenv("TASK_RELAY_PROJECT_ROOT", "."))).resolve()
        return cls(
            project_root=root,
            store=StoreSettings(path=root / STORE_RELATIVE_PATH),
            watch=WatchSettings(
                enabled=_env_bool("TASK_RELAY_WATCH", default=False),
                debounce_seconds=float(
                    os.getenv("TASK_RELAY_DEBOUNCE_SECONDS", str(DEFAULT_DEBOUNCE_SECONDS)),
                ),
            ),
            executor=ExecutorSettings(
                command_templates={
                    AgentType.CLAUDE: os.getenv(
                        "TASK_RELAY_CLAUDE_COMMAND_TEMPLATE",
                        DEFAULT_COMMAND_TEMPLATES[AgentType.CLAUDE],
                    ),
                    AgentType.GEMINI: os.getenv(
                        "TASK_RELAY_GEMINI_COMMAND_TEMPLATE",
                        DEFAULT_COMMAND_TEMPLATES[AgentType.GEMINI],
                    ),
                },
                timeout_seconds=float(os.getenv("TASK_RELAY_EXECUTOR_TIMEOUT_SECONDS", "1800")),
            ),
            pump=PumpSettings(
                strategy=_env_strategy("TASK_RELAY_AGENT_STRATEGY"),
                pause_seconds=float(os.getenv("TASK_RELAY_PAUSE_SECONDS", "1.0")),
            ),
            log_level=os.getenv("TASK_RELAY_LOG_LEVEL", "WARNING").strip().upper(),
        )

    def validate(self) -> None:
        """Raise configuration error on values the store or pump cannot use."""

        if self.watch.debounce_seconds < 0:
            raise ValueError("TASK_RELAY_DEBOUNCE_SECONDS must be >= 0.")
        if self.executor.timeout_seconds <= 0:
            raise ValueError("TASK_RELAY_EXECUTOR_TIMEOUT_SECONDS must be > 0.")
        if self.pump.pause_seconds < 0:
            raise ValueError("TASK_RELAY_PAUSE_SECONDS must be >= 0.")
        for agent, template in self.executor.command_templates.items():
            if not template.strip():
                raise ValueError(
                    f"TASK_RELAY_{agent.name}_COMMAND_TEMPLATE must not be empty.",
                )
        if not isinstance(logging.getLevelName(self.log_level), int):
            raise ValueError(f"Invalid TASK_RELAY_LOG_LEVEL: {self.log_level!r}")


def _env_strategy(name: str) -> AgentStrategy:
    value = os.getenv(name)
    if value is None:
        return AgentStrategy.SMART
    try:
        return AgentStrategy(value.strip().lower())
    except ValueError as error:
        choices = ", ".join(strategy.value for strategy in AgentStrategy)
        raise ValueError(f"Invalid {name}: {value!r} (expected one of {choices})") from error


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"Invalid boolean value for {name}: {value!r}")
