"""JSON and path helpers shared by the test modules."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any


def write_json(path: Path, data: Any) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data, indent=2), encoding="utf-8")
    return path


def read_json(path: Path) -> Any:
    return json.loads(path.read_text(encoding="utf-8"))


def tasks_path(project_dir: Path) -> Path:
    return project_dir / ".taskmaster" / "tasks" / "tasks.json"


def agents_path(project_dir: Path) -> Path:
    return project_dir / ".taskmaster" / "agents.json"


def sprints_path(project_dir: Path) -> Path:
    return project_dir / ".taskmaster" / "sprints.json"
