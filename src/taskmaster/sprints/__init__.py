"""Sprint store, metrics and planning."""

from .metrics import (
    PlanResult,
    auto_plan,
    capacity_utilization,
    compute_metrics,
    metrics_summary,
    sprint_metrics,
    sprint_report,
    status_summary,
    task_stats,
)
from .store import Sprint, SprintStore

__all__ = [
    "PlanResult",
    "Sprint",
    "SprintStore",
    "auto_plan",
    "capacity_utilization",
    "compute_metrics",
    "metrics_summary",
    "sprint_metrics",
    "sprint_report",
    "status_summary",
    "task_stats",
]
