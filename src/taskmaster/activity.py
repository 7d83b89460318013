"""Append-only activity log (``.taskmaster/logs/activity.jsonl``).

Each line is one JSON entry::

    {"id", "timestamp", "activityType", "userId", "details", "metadata", "source"}

Writing is best effort: a failure is logged and never interrupts the task
operation that produced the entry.
"""

from __future__ import annotations

import uuid
from collections import Counter
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

from loguru import logger

from .constants import (
    ACTIVITY_AGENT_ASSIGNED,
    ACTIVITY_SUBTASK_STATUS_CHANGED,
    ACTIVITY_TASK_CREATED,
    ACTIVITY_TASK_DELETED,
    ACTIVITY_TASK_STATUS_CHANGED,
    ACTIVITY_TASK_UPDATED,
)
from .io_utils import _append_jsonl, _read_jsonl
from .task_engine.model import Task
from .task_engine.status import StatusChange
from .utils import _now_iso, _parse_iso

DEFAULT_USER = "system"
DEFAULT_SOURCE = "backend_api"


class ActivityLog:
    def __init__(self, path: Path, *, source: str = DEFAULT_SOURCE) -> None:
        self.path = Path(path)
        self.source = source

    def _write(
        self,
        activity_type: str,
        details: dict[str, Any],
        user_id: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> Optional[dict[str, Any]]:
        entry = {
            "id": f"activity_{uuid.uuid4().hex[:12]}",
            "timestamp": _now_iso(),
            "activityType": activity_type,
            "userId": user_id or DEFAULT_USER,
            "details": details,
            "metadata": metadata or {},
            "source": self.source,
        }
        try:
            _append_jsonl(self.path, entry)
        except OSError as exc:
            logger.warning("Failed to write activity log {}: {}", self.path, exc)
            return None
        logger.debug("[ACTIVITY] {}: {}", activity_type, details.get("taskId", "n/a"))
        return entry

    # ------------------------------------------------------------------
    # Writers
    # ------------------------------------------------------------------

    def log_task_created(self, task: Task, user_id: Optional[str] = None) -> Optional[dict[str, Any]]:
        return self._write(
            ACTIVITY_TASK_CREATED,
            {
                "taskId": task.id,
                "title": task.title,
                "status": task.status.value,
                "priority": task.priority.value,
            },
            user_id,
            {"hasSubtasks": bool(task.subtasks), "dependencyCount": len(task.dependencies)},
        )

    def log_task_updated(
        self, task: Task, changes: dict[str, Any], user_id: Optional[str] = None
    ) -> Optional[dict[str, Any]]:
        return self._write(
            ACTIVITY_TASK_UPDATED,
            {"taskId": task.id, "title": task.title, "changes": changes},
            user_id,
            {"changeCount": len(changes)},
        )

    def log_task_deleted(self, task: Task, user_id: Optional[str] = None) -> Optional[dict[str, Any]]:
        return self._write(
            ACTIVITY_TASK_DELETED,
            {"taskId": task.id, "title": task.title, "status": task.status.value},
            user_id,
        )

    def log_status_changed(
        self, task: Any, old_status: str, new_status: str, user_id: Optional[str] = None
    ) -> Optional[dict[str, Any]]:
        return self._write(
            ACTIVITY_TASK_STATUS_CHANGED,
            {"taskId": task.id, "title": task.title, "oldStatus": old_status, "newStatus": new_status},
            user_id,
            {
                "isCompletion": new_status == "done",
                "isReactivation": old_status == "done" and new_status != "done",
            },
        )

    def log_subtask_status_changed(
        self, change: StatusChange, user_id: Optional[str] = None
    ) -> Optional[dict[str, Any]]:
        return self._write(
            ACTIVITY_SUBTASK_STATUS_CHANGED,
            {
                "taskId": change.task_id,
                "subtaskId": change.task.id,
                "parentTaskId": change.parent_id,
                "title": change.task.title,
                "oldStatus": change.old_status,
                "newStatus": change.new_status,
            },
            user_id,
            {
                "isCompletion": change.new_status == "done",
                "isReactivation": change.old_status == "done" and change.new_status != "done",
            },
        )

    def log_change(self, change: StatusChange, user_id: Optional[str] = None) -> Optional[dict[str, Any]]:
        """Route one status-change record to the task or subtask writer."""
        if change.is_subtask:
            return self.log_subtask_status_changed(change, user_id)
        return self.log_status_changed(change.task, change.old_status, change.new_status, user_id)

    def log_agent_assigned(
        self, task: Task, agent: str, user_id: Optional[str] = None, *, policy: str = "delegate"
    ) -> Optional[dict[str, Any]]:
        return self._write(
            ACTIVITY_AGENT_ASSIGNED,
            {"taskId": task.id, "title": task.title, "agent": agent},
            user_id,
            {"policy": policy},
        )

    # ------------------------------------------------------------------
    # Readers
    # ------------------------------------------------------------------

    def read(
        self,
        limit: Optional[int] = None,
        *,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        activity_type: Optional[str] = None,
    ) -> list[dict[str, Any]]:
        """Entries newest first, optionally filtered by time range and type."""
        entries = _read_jsonl(self.path)
        selected: list[dict[str, Any]] = []
        for entry in entries:
            if activity_type and entry.get("activityType") != activity_type:
                continue
            if start or end:
                ts = _parse_iso(entry.get("timestamp"))
                if ts is None or (start and ts < start) or (end and ts > end):
                    continue
            selected.append(entry)
        selected.reverse()
        if limit is not None:
            selected = selected[: max(0, limit)]
        return selected

    def statistics(
        self, *, start: Optional[datetime] = None, end: Optional[datetime] = None
    ) -> dict[str, Any]:
        entries = self.read(start=start, end=end)
        by_day: Counter[str] = Counter()
        for entry in entries:
            ts = _parse_iso(entry.get("timestamp"))
            if ts is not None:
                by_day[ts.date().isoformat()] += 1
        return {
            "total": len(entries),
            "byType": dict(Counter(str(e.get("activityType")) for e in entries)),
            "byUser": dict(Counter(str(e.get("userId")) for e in entries)),
            "byDay": dict(sorted(by_day.items())),
        }
