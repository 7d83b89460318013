"""Provide the public `taskmaster` package exports."""

from __future__ import annotations

from .config import TaskmasterConfig, load_config
from .errors import TaskmasterError
from .task_engine.engine import TaskEngine

__all__ = ["TaskEngine", "TaskmasterConfig", "TaskmasterError", "load_config"]
