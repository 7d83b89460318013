"""Sprint metrics, reports and auto-planning.

Two association styles coexist and are queried independently:

* sprint-owned: ``sprint.tasks`` lists task ids (:func:`sprint_metrics`,
  :func:`auto_plan`, :func:`capacity_utilization`);
* task-owned: ``task.sprint`` names the sprint (:func:`sprint_report`).
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional, Sequence

from ..agents.registry import Agent
from ..constants import DEFAULT_AUTO_PLAN_LIMIT, TASK_COMPLETION_STATUSES
from ..task_engine.model import Task, TaskPriority, TaskStatus
from .store import Sprint


def _by_id(tasks: Iterable[Task]) -> dict[int, Task]:
    return {t.id: t for t in tasks}


def sprint_metrics(sprint: Sprint, tasks: Iterable[Task]) -> dict[str, Any]:
    index = _by_id(tasks)
    completed = sum(
        1 for tid in sprint.tasks if tid in index and index[tid].status == TaskStatus.DONE
    )
    return {"id": sprint.id, "name": sprint.name, "total": len(sprint.tasks), "completed": completed}


def compute_metrics(sprints: Iterable[Sprint], tasks: Sequence[Task]) -> list[dict[str, Any]]:
    return [sprint_metrics(s, tasks) for s in sprints]


def sprint_report(tasks: Iterable[Task], sprint_id: int) -> dict[str, Any]:
    members = [t for t in tasks if t.sprint == sprint_id]
    completed = sum(1 for t in members if t.status.value in TASK_COMPLETION_STATUSES)
    return {
        "sprint": sprint_id,
        "summary": {"total": len(members), "completed": completed},
        "tasks": [t.to_dict() for t in members],
    }


@dataclass
class PlanResult:
    sprint: Sprint
    included: list[int] = field(default_factory=list)
    excluded: list[int] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "sprint": self.sprint.to_dict(),
            "included": list(self.included),
            "excluded": list(self.excluded),
        }


def auto_plan(sprint: Sprint, tasks: Sequence[Task], limit: int = DEFAULT_AUTO_PLAN_LIMIT) -> PlanResult:
    """Fill ``sprint.tasks`` with the first *limit* tasks that are not done.

    The sprint's existing list is replaced.  Everything not picked (done tasks
    and candidates past the cap) is reported as excluded.
    """
    limit = max(0, int(limit))
    included: list[int] = []
    excluded: list[int] = []
    for task in tasks:
        if task.status != TaskStatus.DONE and len(included) < limit:
            included.append(task.id)
        else:
            excluded.append(task.id)
    sprint.tasks = list(included)
    return PlanResult(sprint=sprint, included=included, excluded=excluded)


def capacity_utilization(
    sprint: Sprint, tasks: Sequence[Task], agents: Sequence[Agent]
) -> dict[str, Any]:
    """Open planned work against the daily capacity of available agents."""
    capacity = sum(
        (a.daily_capacity or 0.0) * a.availability for a in agents if a.is_available
    )
    index = _by_id(tasks)
    open_count = sum(
        1 for tid in sprint.tasks if tid in index and index[tid].status != TaskStatus.DONE
    )
    utilization: Optional[float] = round(open_count / capacity, 4) if capacity > 0 else None
    return {
        "sprintId": sprint.id,
        "capacity": capacity,
        "planned": len(sprint.tasks),
        "open": open_count,
        "utilization": utilization,
    }


# ---------------------------------------------------------------------------
# Project-wide summaries
# ---------------------------------------------------------------------------

def _completion_rate(done: int, total: int) -> float:
    return round(done / total, 4) if total else 0.0


def status_summary(tasks: Sequence[Task]) -> dict[str, Any]:
    counts = Counter(t.status.value for t in tasks)
    by_status = {status: counts.get(status, 0) for status in TaskStatus.values()}
    return {
        "total": len(tasks),
        "completed": by_status[TaskStatus.DONE.value],
        "pending": by_status[TaskStatus.PENDING.value],
        "inProgress": by_status[TaskStatus.IN_PROGRESS.value],
        "review": by_status[TaskStatus.REVIEW.value],
        "blocked": by_status[TaskStatus.BLOCKED.value],
        "deferred": by_status[TaskStatus.DEFERRED.value],
        "cancelled": by_status[TaskStatus.CANCELLED.value],
        "byStatus": by_status,
        "completionRate": _completion_rate(by_status[TaskStatus.DONE.value], len(tasks)),
    }


def task_stats(tasks: Sequence[Task]) -> dict[str, int]:
    completed = sum(1 for t in tasks if t.status == TaskStatus.DONE)
    return {"total": len(tasks), "completed": completed, "pending": len(tasks) - completed}


def metrics_summary(tasks: Sequence[Task]) -> dict[str, Any]:
    summary = status_summary(tasks)
    priorities = Counter(t.priority.value for t in tasks)
    progress = [t.progress for t in tasks if t.progress is not None]
    subtasks = [s for t in tasks for s in t.subtasks]
    summary.update({
        "byPriority": {p.value: priorities.get(p.value, 0) for p in TaskPriority},
        "averageProgress": round(sum(progress) / len(progress), 2) if progress else None,
        "subtasks": {
            "total": len(subtasks),
            "completed": sum(1 for s in subtasks if s.is_done),
        },
        "assigned": sum(1 for t in tasks if t.agent),
    })
    return summary
