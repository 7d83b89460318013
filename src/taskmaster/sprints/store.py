"""Sprint records and the ``sprints.json`` store."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from loguru import logger

from ..errors import InvalidInputError, NotFoundError
from ..io_utils import _atomic_write_json, _load_document
from ..task_engine.model import _int_list
from ..utils import _coerce_int, _now_iso

_SPRINT_KEYS = (
    "id", "name", "goal", "status", "startDate", "endDate", "tasks", "createdAt", "completedAt",
)

SPRINT_STATUS_PLANNED = "planned"
SPRINT_STATUS_COMPLETED = "completed"


@dataclass
class Sprint:
    """A named, time-boxed grouping of task ids."""

    id: int
    name: str = ""
    goal: str = ""
    status: str = SPRINT_STATUS_PLANNED
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    tasks: list[int] = field(default_factory=list)
    created_at: Optional[str] = None
    completed_at: Optional[str] = None
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def validate_dict(cls, data: Any) -> list[str]:
        if not isinstance(data, dict):
            return ["Expected a sprint object"]
        errors: list[str] = []
        sprint_id = _coerce_int(data.get("id"))
        if sprint_id is None or sprint_id <= 0:
            errors.append(f"sprint {data.get('id')!r}: 'id' must be a positive integer")
        tasks = data.get("tasks")
        if tasks is not None and not isinstance(tasks, list):
            errors.append(f"sprint {data.get('id')!r}: 'tasks' must be an array")
        return errors

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Sprint":
        return cls(
            id=int(_coerce_int(data.get("id")) or 0),
            name=str(data.get("name") or ""),
            goal=str(data.get("goal") or ""),
            status=str(data.get("status") or SPRINT_STATUS_PLANNED),
            start_date=data.get("startDate"),
            end_date=data.get("endDate"),
            tasks=_int_list(data.get("tasks")),
            created_at=data.get("createdAt"),
            completed_at=data.get("completedAt"),
            extra={k: v for k, v in data.items() if k not in _SPRINT_KEYS},
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "goal": self.goal,
            "status": self.status,
            "startDate": self.start_date,
            "endDate": self.end_date,
            "tasks": list(self.tasks),
        }
        if self.created_at is not None:
            data["createdAt"] = self.created_at
        if self.completed_at is not None:
            data["completedAt"] = self.completed_at
        data.update(self.extra)
        return data


class SprintStore:
    """The sprint list from ``sprints.json`` (``{"sprints": [...]}``)."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self.sprints: list[Sprint] = []
        self.extra: dict[str, Any] = {}
        # Entries that failed validation; written back verbatim.
        self.unparsed: list[Any] = []

    @classmethod
    def open(cls, path: Path) -> "SprintStore":
        store = cls(path)
        store.load()
        return store

    def load(self) -> None:
        data = _load_document(self.path, {})
        raw_sprints = data.get("sprints", [])
        if not isinstance(raw_sprints, list):
            raise InvalidInputError(f"{self.path.name}: 'sprints' must be an array")
        self.extra = {k: v for k, v in data.items() if k != "sprints"}
        self.sprints = []
        self.unparsed = []
        for raw in raw_sprints:
            errors = Sprint.validate_dict(raw)
            if errors:
                for err in errors:
                    logger.warning("Skipping malformed sprint in {}: {}", self.path.name, err)
                self.unparsed.append(raw)
                continue
            self.sprints.append(Sprint.from_dict(raw))

    def save(self) -> None:
        doc = dict(self.extra)
        doc["sprints"] = [s.to_dict() for s in self.sprints] + list(self.unparsed)
        _atomic_write_json(self.path, doc)

    def get(self, sprint_id: int) -> Optional[Sprint]:
        for sprint in self.sprints:
            if sprint.id == sprint_id:
                return sprint
        return None

    def require(self, sprint_id: Any) -> Sprint:
        ident = _coerce_int(sprint_id)
        sprint = self.get(ident) if ident is not None else None
        if sprint is None:
            raise NotFoundError(f"Sprint {sprint_id} not found", details={"id": sprint_id})
        return sprint

    def next_id(self) -> int:
        taken = [s.id for s in self.sprints]
        taken += [
            ident for ident in (_coerce_int(raw.get("id")) for raw in self.unparsed if isinstance(raw, dict))
            if ident is not None
        ]
        return max(taken, default=0) + 1

    def create(
        self,
        name: str,
        *,
        goal: str = "",
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
        tasks: Optional[list[int]] = None,
    ) -> Sprint:
        if not name or not name.strip():
            raise InvalidInputError("Sprint name is required")
        sprint = Sprint(
            id=self.next_id(),
            name=name.strip(),
            goal=goal,
            start_date=start_date,
            end_date=end_date,
            tasks=list(tasks or []),
            created_at=_now_iso(),
        )
        self.sprints.append(sprint)
        return sprint

    def update(self, sprint_id: Any, changes: dict[str, Any]) -> Sprint:
        sprint = self.require(sprint_id)
        merged = sprint.to_dict()
        merged.update(changes)
        merged["id"] = sprint.id
        errors = Sprint.validate_dict(merged)
        if errors:
            raise InvalidInputError("; ".join(errors), details={"errors": errors})
        updated = Sprint.from_dict(merged)
        if updated.status == SPRINT_STATUS_COMPLETED and updated.completed_at is None:
            updated.completed_at = _now_iso()
        self.sprints[self.sprints.index(sprint)] = updated
        return updated
