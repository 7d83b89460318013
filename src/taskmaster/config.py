"""Load optional project configuration from `.taskmaster/config.yaml`."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping, Optional

from .constants import (
    ACTIVITY_LOG_FILE,
    AGENTS_FILE,
    ASSIGNMENT_HISTORY_FILE,
    CONFIG_FILE,
    DEFAULT_AUTO_PLAN_LIMIT,
    SPRINTS_FILE,
    STATE_DIR_NAME,
    TASKS_FILE,
)
from .io_utils import _load_data_with_error

VALID_LOG_LEVELS = {"TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL"}

# Environment variable -> config key
ENV_OVERRIDES = {
    "TASKS_FILE": "tasks_file",
    "AGENTS_FILE": "agents_file",
    "SPRINTS_FILE": "sprints_file",
    "ASSIGNMENT_HISTORY_FILE": "history_file",
    "ACTIVITY_LOG_FILE": "activity_log",
}


def _truthy(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in {"1", "true", "yes", "on"}


@dataclass
class TaskmasterConfig:
    """Resolved file locations and engine switches for one project."""

    project_dir: Path
    tasks_file: Path
    agents_file: Path
    sprints_file: Path
    history_file: Path
    activity_log: Path
    strict_transitions: bool = False
    strict_load: bool = False
    auto_plan_limit: int = DEFAULT_AUTO_PLAN_LIMIT
    debug: bool = False
    log_level: str = "INFO"
    raw: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def defaults(cls, project_dir: Path) -> "TaskmasterConfig":
        state_dir = project_dir / STATE_DIR_NAME
        return cls(
            project_dir=project_dir,
            tasks_file=state_dir / TASKS_FILE,
            agents_file=state_dir / AGENTS_FILE,
            sprints_file=state_dir / SPRINTS_FILE,
            history_file=state_dir / ASSIGNMENT_HISTORY_FILE,
            activity_log=state_dir / ACTIVITY_LOG_FILE,
        )

    def resolve(self, value: Any) -> Path:
        path = Path(str(value)).expanduser()
        return path if path.is_absolute() else self.project_dir / path

    def to_dict(self) -> dict[str, Any]:
        return {
            "project_dir": str(self.project_dir),
            "tasks_file": str(self.tasks_file),
            "agents_file": str(self.agents_file),
            "sprints_file": str(self.sprints_file),
            "history_file": str(self.history_file),
            "activity_log": str(self.activity_log),
            "strict_transitions": self.strict_transitions,
            "strict_load": self.strict_load,
            "auto_plan_limit": self.auto_plan_limit,
            "debug": self.debug,
            "log_level": self.log_level,
        }


def _apply(config: TaskmasterConfig, data: Mapping[str, Any]) -> None:
    for key in ("tasks_file", "agents_file", "sprints_file", "history_file", "activity_log"):
        value = data.get(key)
        if isinstance(value, str) and value.strip():
            setattr(config, key, config.resolve(value.strip()))
    for key in ("strict_transitions", "strict_load", "debug"):
        if key in data and data[key] is not None:
            setattr(config, key, _truthy(data[key]))
    limit = data.get("auto_plan_limit")
    if isinstance(limit, int) and not isinstance(limit, bool) and limit >= 0:
        config.auto_plan_limit = limit
    level = data.get("log_level")
    if isinstance(level, str) and level.upper() in VALID_LOG_LEVELS:
        config.log_level = level.upper()


def load_config(
    project_dir: Path,
    environ: Optional[Mapping[str, str]] = None,
) -> tuple[TaskmasterConfig, str | None]:
    """Load the optional config file and apply environment overrides.

    Args:
        project_dir: Project root directory.
        environ: Environment mapping; defaults to ``os.environ``.

    Returns:
        A tuple of `(config, error_message)`. A missing or broken file still
        yields usable defaults; the error message reports what was wrong.
    """
    project_dir = Path(project_dir).resolve()
    config = TaskmasterConfig.defaults(project_dir)
    path = project_dir / STATE_DIR_NAME / CONFIG_FILE
    data, err = _load_data_with_error(path, {})
    if not err:
        config.raw = dict(data)
        _apply(config, data)

    env = os.environ if environ is None else environ
    overrides = {key: env[var] for var, key in ENV_OVERRIDES.items() if env.get(var)}
    if env.get("TASKMASTER_DEBUG"):
        overrides["debug"] = env["TASKMASTER_DEBUG"]
    _apply(config, overrides)
    if config.debug and "log_level" not in data:
        config.log_level = "DEBUG"
    return config, err
