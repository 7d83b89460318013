"""Task model, file-backed store and status transitions.

:class:`TaskStore` owns ``tasks.json``; :func:`set_status` applies status
changes to tasks and subtasks.  The :class:`~.engine.TaskEngine` facade that
ties tasks to agents, sprints and the activity log lives in ``engine``.
"""

from .model import Subtask, Task, TaskPriority, TaskStatus
from .status import SetStatusResult, StatusChange, TransitionPolicy, set_status
from .store import DependencyIssue, TaskStore, format_ref, parse_ref

__all__ = [
    "DependencyIssue",
    "SetStatusResult",
    "StatusChange",
    "Subtask",
    "Task",
    "TaskPriority",
    "TaskStatus",
    "TaskStore",
    "TransitionPolicy",
    "format_ref",
    "parse_ref",
    "set_status",
]
