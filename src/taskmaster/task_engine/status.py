"""Status transitions for tasks and subtasks.

:func:`set_status` is the single entry point used by the CLI, the HTTP API
and library callers.  It works on an already-loaded :class:`TaskStore` and
never persists; the caller saves the store and forwards the returned change
records to the activity log or a broadcast channel.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional, Union

from loguru import logger

from ..constants import STRICT_TRANSITIONS, TASK_CASCADE_STATUSES
from ..errors import InvalidInputError, InvalidStatusError, TransitionNotAllowedError
from ..utils import _now_iso
from .model import Subtask, Task, TaskStatus
from .store import DependencyIssue, TaskStore, format_ref, parse_ref

ResponseId = Union[int, str]


# ---------------------------------------------------------------------------
# Transition policy
# ---------------------------------------------------------------------------

class TransitionPolicy:
    """Adjacency table deciding whether ``old -> new`` is allowed.

    ``allowed=None`` means a flat state set: every status may move to every
    other status.
    """

    def __init__(self, allowed: Optional[dict[str, set[str]]] = None) -> None:
        self.allowed = allowed

    @classmethod
    def flat(cls) -> "TransitionPolicy":
        return cls(None)

    @classmethod
    def strict(cls) -> "TransitionPolicy":
        return cls({k: set(v) for k, v in STRICT_TRANSITIONS.items()})

    def is_allowed(self, old: str, new: str) -> bool:
        if self.allowed is None or old == new:
            return True
        return new in self.allowed.get(old, set())

    def targets(self, old: str) -> list[str]:
        if self.allowed is None:
            return [s for s in TaskStatus.values() if s != old]
        return sorted(self.allowed.get(old, set()))


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------

@dataclass
class StatusChange:
    """One entity whose status actually changed."""

    task: Union[Task, Subtask]
    old_status: str
    new_status: str
    task_id: str
    parent_id: Optional[int] = None

    @property
    def is_subtask(self) -> bool:
        return self.parent_id is not None

    def to_dict(self) -> dict[str, Any]:
        return {
            "taskId": self.task_id,
            "oldStatus": self.old_status,
            "newStatus": self.new_status,
            "task": self.task.to_dict(),
        }


@dataclass
class SetStatusResult:
    status: str
    updated_ids: list[str] = field(default_factory=list)
    changes: list[StatusChange] = field(default_factory=list)
    notes: list[str] = field(default_factory=list)
    dependency_issues: list[DependencyIssue] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.changes)

    def to_response(self) -> dict[str, Any]:
        """The ``{success, updatedTasks}`` shape CLI and MCP callers expect."""
        updated: list[dict[str, Any]] = []
        for ref in self.updated_ids:
            ident: ResponseId = int(ref) if "." not in ref else ref
            updated.append({"id": ident, "status": self.status})
        return {"success": True, "updatedTasks": updated}

    def to_dict(self) -> dict[str, Any]:
        data = self.to_response()
        data["changes"] = [
            {"taskId": c.task_id, "oldStatus": c.old_status, "newStatus": c.new_status}
            for c in self.changes
        ]
        if self.notes:
            data["notes"] = list(self.notes)
        if self.dependency_issues:
            data["dependencyIssues"] = [i.to_dict() for i in self.dependency_issues]
        return data


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

def validate_status(value: Any) -> TaskStatus:
    if not TaskStatus.is_valid(value):
        raise InvalidStatusError(
            f"Invalid status value: {value}. Use one of: {', '.join(TaskStatus.values())}",
            details={"status": value, "allowed": TaskStatus.values()},
        )
    return TaskStatus(value)


def split_id_spec(id_spec: Union[str, int]) -> list[str]:
    parts = [p.strip() for p in str(id_spec).split(",")]
    refs = [p for p in parts if p]
    if not refs:
        raise InvalidInputError("At least one task id is required")
    for ref in refs:
        parse_ref(ref)
    return refs


def _apply(
    target: Union[Task, Subtask],
    new_status: TaskStatus,
    ref: str,
    parent_id: Optional[int],
    result: SetStatusResult,
) -> None:
    old = target.status.value if target.status else TaskStatus.PENDING.value
    if old == new_status.value:
        return
    target.set_status(new_status)
    result.changes.append(StatusChange(target, old, new_status.value, ref, parent_id))


def set_status(
    store: TaskStore,
    id_spec: Union[str, int],
    new_status: str,
    *,
    policy: Optional[TransitionPolicy] = None,
) -> SetStatusResult:
    """Set *new_status* on every task or subtask named in *id_spec*.

    All ids are resolved before anything is mutated, so an unknown id leaves
    the store untouched.  Setting an entity to the status it already has is
    a no-op.  A task moving to ``done`` or ``cancelled`` carries its
    unfinished subtasks along.  Dependency problems found afterwards are
    logged and returned but never undo the change.
    """
    status = validate_status(new_status)
    refs = split_id_spec(id_spec)
    policy = policy or TransitionPolicy.flat()

    resolved: list[tuple[str, Union[Task, Subtask], Optional[int]]] = []
    for ref in refs:
        target = store.resolve(ref)
        task_id, sub_id = parse_ref(ref)
        canonical = format_ref(task_id, sub_id)
        old = target.status.value
        if not policy.is_allowed(old, status.value):
            raise TransitionNotAllowedError(
                f"Cannot move {canonical} from {old} to {status.value}. "
                f"Valid targets: {policy.targets(old)}",
                details={"id": canonical, "from": old, "to": status.value},
            )
        resolved.append((canonical, target, task_id if sub_id is not None else None))

    result = SetStatusResult(status=status.value)
    for ref, target, parent_id in resolved:
        result.updated_ids.append(ref)
        _apply(target, status, ref, parent_id, result)

        if isinstance(target, Task) and status.value in TASK_CASCADE_STATUSES:
            for sub in target.subtasks:
                if sub.status.value in TASK_CASCADE_STATUSES:
                    continue
                _apply(sub, status, format_ref(target.id, sub.id), target.id, result)
        elif isinstance(target, Subtask) and status == TaskStatus.DONE and parent_id is not None:
            parent = store.require(parent_id)
            if not parent.is_done and all(s.is_done for s in parent.subtasks):
                note = f"All subtasks of task {parent_id} are done; consider setting it to done"
                if note not in result.notes:
                    result.notes.append(note)
                    logger.info(note)

    if result.changes:
        store.mark_dirty()

    result.dependency_issues = store.validate_dependencies()
    for issue in result.dependency_issues:
        logger.warning(
            "Dependency check after status update: {} -> {} ({})",
            issue.ref, issue.dependency, issue.reason,
        )
    return result


# ---------------------------------------------------------------------------
# Progress and feedback
# ---------------------------------------------------------------------------

def update_progress(task: Task, value: Any) -> Optional[StatusChange]:
    """Record progress (0-100) on *task*.

    100 completes the task; any other value moves a ``pending`` task to
    ``in-progress``.  Returns the status change, if there was one.
    """
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not 0 <= value <= 100:
        raise InvalidInputError(
            f"Progress must be a number between 0 and 100, got {value!r}",
            details={"progress": value},
        )
    task.progress = int(value)
    old = task.status.value
    if task.progress == 100:
        target = TaskStatus.DONE
    elif task.status == TaskStatus.PENDING:
        target = TaskStatus.IN_PROGRESS
    else:
        task.touch()
        return None
    if old == target.value:
        task.touch()
        return None
    task.set_status(target)
    return StatusChange(task, old, target.value, format_ref(task.id))


def add_feedback(task: Task, agent: Any, message: Any) -> dict[str, Any]:
    if not isinstance(agent, str) or not agent.strip():
        raise InvalidInputError("Feedback requires an agent name")
    if not isinstance(message, str) or not message.strip():
        raise InvalidInputError("Feedback message must not be empty")
    entry = {"agent": agent.strip(), "message": message.strip(), "timestamp": _now_iso()}
    task.feedback.append(entry)
    task.touch()
    return entry
