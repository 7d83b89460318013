"""Task and subtask records for the JSON task database.

Tasks are read from ``tasks.json`` as loosely-typed dicts and converted once,
at load time, into the dataclasses below.  Serialization goes back to the
camelCase keys the JSON file uses, and keys this module does not know about
are carried in ``extra`` so a load/save cycle never drops data.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from ..constants import TASK_STATUS_COMPLETED_ALIAS
from ..utils import _coerce_int, _now_iso


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class TaskStatus(str, Enum):
    """The canonical status set shared by tasks and subtasks."""

    PENDING = "pending"
    IN_PROGRESS = "in-progress"
    REVIEW = "review"
    DONE = "done"
    BLOCKED = "blocked"
    DEFERRED = "deferred"
    CANCELLED = "cancelled"

    @classmethod
    def values(cls) -> list[str]:
        return [s.value for s in cls]

    @classmethod
    def is_valid(cls, value: Any) -> bool:
        return isinstance(value, str) and value in cls._value2member_map_


class TaskPriority(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def sort_key(self) -> int:
        return {"high": 0, "medium": 1, "low": 2}[self.value]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

_SUBTASK_KEYS = (
    "id", "title", "description", "status", "dependencies",
    "createdAt", "updatedAt", "completedAt",
)

_TASK_KEYS = (
    "id", "title", "description", "status", "priority", "dependencies",
    "subtasks", "agent", "assignee", "sprint", "progress", "details",
    "testStrategy", "feedback", "createdAt", "updatedAt", "completedAt",
)


def _extra(data: dict[str, Any], known: tuple[str, ...]) -> dict[str, Any]:
    return {k: v for k, v in data.items() if k not in known}


def _int_list(raw: Any) -> list[int]:
    if not isinstance(raw, list):
        return []
    out: list[int] = []
    for item in raw:
        value = _coerce_int(item)
        if value is not None:
            out.append(value)
    return out


def _status(raw: Any) -> TaskStatus:
    if isinstance(raw, TaskStatus):
        return raw
    if TaskStatus.is_valid(raw):
        return TaskStatus(raw)
    if raw == TASK_STATUS_COMPLETED_ALIAS:
        return TaskStatus.DONE
    return TaskStatus.PENDING


def _priority(raw: Any) -> TaskPriority:
    if isinstance(raw, TaskPriority):
        return raw
    try:
        return TaskPriority(str(raw))
    except ValueError:
        return TaskPriority.MEDIUM


def _validate_common(data: dict[str, Any], errors: list[str], label: str) -> None:
    if _coerce_int(data.get("id")) is None:
        errors.append(f"{label}: 'id' must be an integer")
    status = data.get("status")
    if status is not None and not TaskStatus.is_valid(status) and status != TASK_STATUS_COMPLETED_ALIAS:
        errors.append(
            f"{label}: 'status' must be one of {TaskStatus.values()}, got '{status}'"
        )
    deps = data.get("dependencies")
    if deps is not None:
        if not isinstance(deps, list):
            errors.append(f"{label}: 'dependencies' must be an array")
        elif any(_coerce_int(d) is None for d in deps):
            errors.append(f"{label}: 'dependencies' must contain integer ids")


# ---------------------------------------------------------------------------
# Subtask
# ---------------------------------------------------------------------------

@dataclass
class Subtask:
    """A child work item, owned by exactly one parent :class:`Task`."""

    id: int
    title: str = ""
    description: str = ""
    status: TaskStatus = TaskStatus.PENDING
    dependencies: list[int] = field(default_factory=list)
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    completed_at: Optional[str] = None
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def validate_dict(cls, data: Any, label: str = "subtask") -> list[str]:
        if not isinstance(data, dict):
            return [f"{label}: expected an object"]
        errors: list[str] = []
        _validate_common(data, errors, label)
        return errors

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Subtask":
        return cls(
            id=int(_coerce_int(data.get("id")) or 0),
            title=str(data.get("title") or ""),
            description=str(data.get("description") or ""),
            status=_status(data.get("status")),
            dependencies=_int_list(data.get("dependencies")),
            created_at=data.get("createdAt"),
            updated_at=data.get("updatedAt"),
            completed_at=data.get("completedAt"),
            extra=_extra(data, _SUBTASK_KEYS),
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "status": self.status.value,
            "dependencies": list(self.dependencies),
        }
        for key, value in (
            ("createdAt", self.created_at),
            ("updatedAt", self.updated_at),
            ("completedAt", self.completed_at),
        ):
            if value is not None:
                data[key] = value
        data.update(self.extra)
        return data

    def touch(self) -> None:
        self.updated_at = _now_iso()

    def set_status(self, status: TaskStatus) -> None:
        self.status = status
        if status == TaskStatus.DONE:
            self.completed_at = _now_iso()
        self.touch()

    @property
    def is_done(self) -> bool:
        return self.status == TaskStatus.DONE


# ---------------------------------------------------------------------------
# Task
# ---------------------------------------------------------------------------

@dataclass
class Task:
    """The primary unit of tracked work."""

    id: int
    title: str = ""
    description: str = ""
    status: TaskStatus = TaskStatus.PENDING
    priority: TaskPriority = TaskPriority.MEDIUM
    dependencies: list[int] = field(default_factory=list)
    subtasks: list[Subtask] = field(default_factory=list)

    # Weak references to an agent and a sprint
    agent: Optional[str] = None
    assignee: Optional[str] = None
    sprint: Optional[int] = None

    progress: Optional[int] = None
    details: Optional[str] = None
    test_strategy: Optional[str] = None
    feedback: list[dict[str, Any]] = field(default_factory=list)

    created_at: Optional[str] = field(default_factory=_now_iso)
    updated_at: Optional[str] = field(default_factory=_now_iso)
    completed_at: Optional[str] = None

    extra: dict[str, Any] = field(default_factory=dict)

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    @classmethod
    def validate_dict(cls, data: Any) -> list[str]:
        """Check a raw task dict, returning error strings (empty = valid)."""
        if not isinstance(data, dict):
            return ["Expected a task object"]
        label = f"task {data.get('id')!r}"
        errors: list[str] = []
        _validate_common(data, errors, label)
        task_id = _coerce_int(data.get("id"))
        if task_id is not None and task_id <= 0:
            errors.append(f"{label}: 'id' must be a positive integer")
        priority = data.get("priority")
        if priority is not None and priority not in {p.value for p in TaskPriority}:
            errors.append(
                f"{label}: 'priority' must be one of {[p.value for p in TaskPriority]}, got '{priority}'"
            )
        progress = data.get("progress")
        if progress is not None:
            if isinstance(progress, bool) or not isinstance(progress, (int, float)) or not 0 <= progress <= 100:
                errors.append(f"{label}: 'progress' must be a number between 0 and 100")
        subtasks = data.get("subtasks")
        if subtasks is not None:
            if not isinstance(subtasks, list):
                errors.append(f"{label}: 'subtasks' must be an array")
            else:
                seen: set[int] = set()
                for raw in subtasks:
                    errors.extend(Subtask.validate_dict(raw, f"{label} subtask"))
                    sub_id = _coerce_int(raw.get("id")) if isinstance(raw, dict) else None
                    if sub_id is not None:
                        if sub_id in seen:
                            errors.append(f"{label}: duplicate subtask id {sub_id}")
                        seen.add(sub_id)
        feedback = data.get("feedback")
        if feedback is not None and not isinstance(feedback, list):
            errors.append(f"{label}: 'feedback' must be an array")
        return errors

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Task":
        """Deserialize from a raw JSON dict, coercing enums gracefully."""
        progress_raw = data.get("progress")
        progress: Optional[int] = None
        if isinstance(progress_raw, (int, float)) and not isinstance(progress_raw, bool):
            progress = int(progress_raw)
        agent = data.get("agent")
        assignee = data.get("assignee")
        return cls(
            id=int(_coerce_int(data.get("id")) or 0),
            title=str(data.get("title") or ""),
            description=str(data.get("description") or ""),
            status=_status(data.get("status")),
            priority=_priority(data.get("priority")),
            dependencies=_int_list(data.get("dependencies")),
            subtasks=[
                Subtask.from_dict(s) for s in (data.get("subtasks") or []) if isinstance(s, dict)
            ],
            agent=str(agent) if agent is not None else None,
            assignee=str(assignee) if assignee is not None else None,
            sprint=_coerce_int(data.get("sprint")),
            progress=progress,
            details=data.get("details"),
            test_strategy=data.get("testStrategy"),
            feedback=[f for f in (data.get("feedback") or []) if isinstance(f, dict)],
            created_at=data.get("createdAt"),
            updated_at=data.get("updatedAt"),
            completed_at=data.get("completedAt"),
            extra=_extra(data, _TASK_KEYS),
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the camelCase shape stored in ``tasks.json``."""
        data: dict[str, Any] = {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "status": self.status.value,
            "priority": self.priority.value,
            "dependencies": list(self.dependencies),
            "subtasks": [s.to_dict() for s in self.subtasks],
        }
        optional = (
            ("agent", self.agent),
            ("assignee", self.assignee),
            ("sprint", self.sprint),
            ("progress", self.progress),
            ("details", self.details),
            ("testStrategy", self.test_strategy),
            ("createdAt", self.created_at),
            ("updatedAt", self.updated_at),
            ("completedAt", self.completed_at),
        )
        for key, value in optional:
            if value is not None:
                data[key] = value
        if self.feedback:
            data["feedback"] = [dict(f) for f in self.feedback]
        data.update(self.extra)
        return data

    # ------------------------------------------------------------------
    # Status helpers
    # ------------------------------------------------------------------

    def touch(self) -> None:
        """Bump ``updated_at`` to now."""
        self.updated_at = _now_iso()

    def set_status(self, status: TaskStatus) -> None:
        """Move to *status* with timestamp bookkeeping."""
        self.status = status
        if status == TaskStatus.DONE:
            self.completed_at = _now_iso()
        self.touch()

    @property
    def is_done(self) -> bool:
        return self.status == TaskStatus.DONE

    def get_subtask(self, subtask_id: int) -> Optional[Subtask]:
        for sub in self.subtasks:
            if sub.id == subtask_id:
                return sub
        return None
