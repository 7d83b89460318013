"""File-backed task store for ``tasks.json``.

The whole document is read at the start of an operation, mutated in memory
and written back wholesale.  Two mechanisms keep concurrent writers from
silently losing each other's work:

* :meth:`TaskStore.transaction` holds an exclusive advisory file lock for the
  whole read-modify-write cycle.
* every :meth:`TaskStore.save` compares the on-disk ``revision`` with the one
  seen at load time and raises :class:`ConflictError` if another writer got
  there first.
"""

from __future__ import annotations

import copy
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterator, Optional, Union

from loguru import logger

from ..constants import DEFAULT_SCHEMA_VERSION, LOCK_SUFFIX
from ..errors import (
    ConflictError,
    InvalidInputError,
    InvalidTaskIdError,
    IOFailureError,
    NotFoundError,
    TaskNotFoundError,
)
from ..io_utils import FileLock, _atomic_write_json, _load_document
from ..utils import _coerce_int
from .model import Subtask, Task

Target = Union[Task, Subtask]


# ---------------------------------------------------------------------------
# Id references
# ---------------------------------------------------------------------------

def parse_ref(text: str) -> tuple[int, Optional[int]]:
    """Parse ``"3"`` or ``"3.2"`` into ``(task_id, subtask_id)``."""
    raw = str(text).strip()
    parts = raw.split(".")
    if len(parts) > 2:
        raise InvalidTaskIdError(f"Invalid task id: {text!r}")
    ids = [_coerce_int(p) for p in parts]
    if any(i is None or i <= 0 for i in ids):
        raise InvalidTaskIdError(f"Invalid task id: {text!r}")
    task_id = int(ids[0])  # type: ignore[arg-type]
    sub_id = int(ids[1]) if len(ids) == 2 else None  # type: ignore[arg-type]
    return task_id, sub_id


def format_ref(task_id: int, subtask_id: Optional[int] = None) -> str:
    return f"{task_id}.{subtask_id}" if subtask_id is not None else str(task_id)


@dataclass(frozen=True)
class DependencyIssue:
    """A dependency id that does not resolve (or points at itself)."""

    ref: str
    dependency: int
    reason: str

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.ref, "dependency": self.dependency, "reason": self.reason}


# ---------------------------------------------------------------------------
# TaskStore
# ---------------------------------------------------------------------------

class TaskStore:
    """In-memory view of one ``tasks.json`` document.

    Parameters
    ----------
    path:
        Location of the JSON document.
    strict:
        Reject malformed task entries at load time instead of flagging them.
    """

    def __init__(self, path: Path, *, strict: bool = False) -> None:
        self.path = Path(path)
        self.strict = strict
        self._lock = FileLock(self.path.with_name(self.path.name + LOCK_SUFFIX))
        self._in_tx = False
        self._open = False
        self._reset()

    def _reset(self) -> None:
        self.schema_version = DEFAULT_SCHEMA_VERSION
        self.revision = 0
        self.tasks: list[Task] = []
        # Entries that could not be identified; written back verbatim.
        self.unparsed: list[Any] = []
        # Malformed but addressable entries: id -> (raw entry, view at load time).
        # The raw entry is written back until the task is changed.
        self._malformed: dict[int, tuple[dict[str, Any], dict[str, Any]]] = {}
        self.extra: dict[str, Any] = {}
        self.dirty = False
        self._index: dict[int, int] = {}

    # -- lifecycle ----------------------------------------------------------

    @classmethod
    def open(cls, path: Path, *, strict: bool = False) -> "TaskStore":
        """Load the document at *path* and return a ready store."""
        store = cls(path, strict=strict)
        store.load()
        return store

    def close(self) -> None:
        """Drop the in-memory state; the store must be reopened before reuse."""
        self._reset()
        self._open = False

    @property
    def is_open(self) -> bool:
        return self._open

    def _require_open(self) -> None:
        if not self._open:
            raise IOFailureError(f"Task store {self.path} is closed")

    def load(self) -> None:
        """(Re)read the document from disk, replacing the in-memory state."""
        self._open = False
        data = _load_document(self.path, {})
        self._reset()
        raw_tasks = data.get("tasks", [])
        if not isinstance(raw_tasks, list):
            raise InvalidInputError(f"{self.path.name}: 'tasks' must be an array")

        version = _coerce_int(data.get("schemaVersion"))
        self.schema_version = version if version is not None else DEFAULT_SCHEMA_VERSION
        self.revision = _coerce_int(data.get("revision")) or 0
        self.extra = {k: v for k, v in data.items() if k not in ("schemaVersion", "revision", "tasks")}

        problems: list[str] = []
        for raw in raw_tasks:
            errors = Task.validate_dict(raw)
            task_id = _coerce_int(raw.get("id")) if isinstance(raw, dict) else None
            if task_id is not None and task_id > 0 and task_id in self._index:
                errors.append(f"task {task_id}: duplicate id")
            if errors:
                problems.extend(errors)
                if self.strict:
                    continue
                for err in errors:
                    logger.warning("Malformed entry in {}: {}", self.path.name, err)
                if task_id is None or task_id <= 0 or task_id in self._index:
                    self.unparsed.append(raw)
                    continue
            task = Task.from_dict(raw)
            if errors:
                self._malformed[task.id] = (copy.deepcopy(raw), task.to_dict())
            self._index[task.id] = len(self.tasks)
            self.tasks.append(task)

        if problems and self.strict:
            raise InvalidInputError(
                f"{self.path.name} contains {len(problems)} malformed entr"
                f"{'y' if len(problems) == 1 else 'ies'}",
                details={"errors": problems},
            )
        self._open = True
        logger.debug("Loaded {} tasks from {} (revision {})", len(self.tasks), self.path, self.revision)

    def to_document(self) -> dict[str, Any]:
        doc: dict[str, Any] = {"schemaVersion": self.schema_version, "revision": self.revision}
        doc.update(self.extra)
        doc["tasks"] = [self._entry(t) for t in self.tasks] + list(self.unparsed)
        return doc

    def _entry(self, task: Task) -> dict[str, Any]:
        current = task.to_dict()
        kept = self._malformed.get(task.id)
        if kept is not None and current == kept[1]:
            return kept[0]
        return current

    def _disk_revision(self) -> int:
        data = _load_document(self.path, {})
        return _coerce_int(data.get("revision")) or 0

    def _write(self) -> None:
        on_disk = self._disk_revision()
        if on_disk != self.revision:
            raise ConflictError(
                f"{self.path.name} changed on disk (revision {on_disk}, loaded {self.revision})",
                details={"disk_revision": on_disk, "loaded_revision": self.revision},
            )
        self.revision += 1
        try:
            _atomic_write_json(self.path, self.to_document())
        except IOFailureError:
            self.revision -= 1
            raise
        self.dirty = False
        logger.debug("Saved {} tasks to {} (revision {})", len(self.tasks), self.path, self.revision)

    def save(self) -> None:
        """Write the document back, failing with :class:`ConflictError` on a stale revision."""
        self._require_open()
        if self._in_tx:
            self._write()
            return
        with self._lock:
            self._write()

    @contextmanager
    def transaction(self) -> Iterator["TaskStore"]:
        """Lock, reload, yield the store, and save on a clean exit if dirty.

        Usage::

            with store.transaction() as tx:
                tx.require(3).agent = "Alex"
                tx.mark_dirty()
        """
        with self._lock:
            self._in_tx = True
            try:
                self.load()
                yield self
                if self.dirty:
                    self._write()
            finally:
                self._in_tx = False

    def mark_dirty(self) -> None:
        self.dirty = True

    # -- lookups ------------------------------------------------------------

    def get(self, task_id: int) -> Optional[Task]:
        self._require_open()
        idx = self._index.get(task_id)
        return self.tasks[idx] if idx is not None else None

    def require(self, task_id: int) -> Task:
        self._require_open()
        task = self.get(task_id)
        if task is None:
            raise TaskNotFoundError(f"Task {task_id} not found", details={"id": task_id})
        return task

    def resolve(self, ref: str) -> Target:
        """Resolve ``"3"`` to a task or ``"3.2"`` to a subtask of task 3."""
        self._require_open()
        task_id, sub_id = parse_ref(ref)
        parent = self.require(task_id)
        if sub_id is None:
            return parent
        sub = parent.get_subtask(sub_id)
        if sub is None:
            raise NotFoundError(
                f"Subtask {format_ref(task_id, sub_id)} not found",
                details={"id": format_ref(task_id, sub_id)},
            )
        return sub

    def list_all(self) -> list[Task]:
        self._require_open()
        return list(self.tasks)

    def find(
        self,
        *,
        status: Optional[str] = None,
        priority: Optional[str] = None,
        agent: Optional[str] = None,
        assignee: Optional[str] = None,
        sprint: Optional[int] = None,
        search: Optional[str] = None,
    ) -> list[Task]:
        self._require_open()
        out: list[Task] = []
        for t in self.tasks:
            if status and t.status.value != status:
                continue
            if priority and t.priority.value != priority:
                continue
            if agent and t.agent != agent:
                continue
            if assignee and t.assignee != assignee:
                continue
            if sprint is not None and t.sprint != sprint:
                continue
            if search:
                q = search.lower()
                if q not in t.title.lower() and q not in t.description.lower():
                    continue
            out.append(t)
        return out

    def next_id(self) -> int:
        self._require_open()
        return max(self._index, default=0) + 1

    # -- mutations ----------------------------------------------------------

    def add(self, task: Task) -> Task:
        self._require_open()
        if task.id <= 0:
            raise InvalidTaskIdError(f"Task id must be a positive integer, got {task.id}")
        if task.id in self._index:
            raise InvalidInputError(f"Task {task.id} already exists")
        self._index[task.id] = len(self.tasks)
        self.tasks.append(task)
        self.dirty = True
        return task

    def update(self, task_id: int, changes: dict[str, Any]) -> Task:
        self._require_open()
        task = self.require(task_id)
        for key, value in changes.items():
            if key in ("id", "subtasks", "extra") or not hasattr(task, key):
                continue
            setattr(task, key, value)
        task.touch()
        self.dirty = True
        return task

    def remove(self, task_id: int) -> Task:
        """Delete a task and strip its id from every other task's dependencies."""
        self._require_open()
        task = self.require(task_id)
        self.tasks.pop(self._index[task_id])
        self._malformed.pop(task_id, None)
        self._index = {t.id: i for i, t in enumerate(self.tasks)}
        for other in self.tasks:
            if task_id in other.dependencies:
                other.dependencies = [d for d in other.dependencies if d != task_id]
                other.touch()
        self.dirty = True
        return task

    # -- validation ---------------------------------------------------------

    def validate_dependencies(self) -> list[DependencyIssue]:
        """Report dependency ids that do not resolve.  Never raises."""
        self._require_open()
        issues: list[DependencyIssue] = []
        for task in self.tasks:
            for dep in task.dependencies:
                if dep == task.id:
                    issues.append(DependencyIssue(format_ref(task.id), dep, "self"))
                elif dep not in self._index:
                    issues.append(DependencyIssue(format_ref(task.id), dep, "missing"))
            sub_ids = {s.id for s in task.subtasks}
            for sub in task.subtasks:
                for dep in sub.dependencies:
                    ref = format_ref(task.id, sub.id)
                    if dep == sub.id:
                        issues.append(DependencyIssue(ref, dep, "self"))
                    elif dep not in sub_ids:
                        issues.append(DependencyIssue(ref, dep, "missing"))
        return issues
