"""Agent assignment policies.

Two policies live here and are deliberately kept apart:

* :func:`delegate` / :func:`assign_agent` pick the available agent with the
  smallest open workload (ties go to the agent listed first).
* :func:`assign_agents_round_robin` is the bulk backfill: every task without an
  ``assignee`` gets ``agents[task.id % len(agents)]``.

All functions operate on plain lists and mutate tasks in place; persisting the
store is the caller's job.
"""

from __future__ import annotations

from typing import Any, Iterable, Optional, Sequence

from loguru import logger

from ..errors import (
    InvalidTaskIdError,
    NoAgentsError,
    NoAvailableAgentsError,
    TaskNotFoundError,
)
from ..task_engine.model import Task, TaskStatus
from ..utils import _coerce_int
from .registry import Agent


def parse_task_id(value: Any) -> int:
    """Return *value* as a positive task id or raise :class:`InvalidTaskIdError`."""
    task_id = _coerce_int(value)
    if task_id is None or task_id <= 0:
        raise InvalidTaskIdError("Invalid task id", details={"id": value})
    return task_id


def compute_workload(tasks: Iterable[Task], agents: Sequence[Agent]) -> dict[str, int]:
    """Open (non-done) task count per agent name."""
    workload = {agent.name: 0 for agent in agents}
    for task in tasks:
        if task.agent in workload and task.status != TaskStatus.DONE:
            workload[task.agent] += 1
    return workload


def _least_loaded(candidates: Sequence[Agent], workload: dict[str, int]) -> Optional[Agent]:
    best: Optional[Agent] = None
    for agent in candidates:
        if best is None or workload.get(agent.name, 0) < workload.get(best.name, 0):
            best = agent
    return best


def assign_agent(tasks: Iterable[Task], agents: Sequence[Agent]) -> Optional[str]:
    """Name of the least-loaded available agent, or ``None`` if nobody is free."""
    workload = compute_workload(tasks, agents)
    chosen = _least_loaded([a for a in agents if a.is_available], workload)
    return chosen.name if chosen else None


def delegate(tasks: Sequence[Task], agents: Sequence[Agent], task_id: Any) -> Task:
    """Assign the least-loaded available agent to one task.

    A ``pending`` task is promoted to ``in-progress``; any other status is
    left alone.
    """
    ident = parse_task_id(task_id)
    task = next((t for t in tasks if t.id == ident), None)
    if task is None:
        raise TaskNotFoundError(f"Task {ident} not found", details={"id": ident})
    if not agents:
        raise NoAgentsError("No agents available")
    name = assign_agent(tasks, agents)
    if name is None:
        raise NoAvailableAgentsError("No available agents")

    task.agent = name
    if task.status == TaskStatus.PENDING:
        task.status = TaskStatus.IN_PROGRESS
    task.touch()
    logger.info("Delegated task {} to {}", task.id, name)
    return task


def assign_agents_round_robin(tasks: Iterable[Task], agents: Sequence[Agent]) -> list[int]:
    """Backfill ``assignee`` on every unassigned task; returns the touched ids."""
    if not agents:
        raise NoAgentsError("No agents available")
    assigned: list[int] = []
    for task in tasks:
        if task.assignee:
            continue
        agent = agents[task.id % len(agents)]
        task.assignee = str(agent.key)
        task.touch()
        assigned.append(task.id)
    if assigned:
        logger.info("Round-robin assigned {} task(s) across {} agent(s)", len(assigned), len(agents))
    return assigned


# ---------------------------------------------------------------------------
# Suggestions and metrics
# ---------------------------------------------------------------------------

def _capability_score(agent: Agent, task: Task) -> int:
    text = " ".join(filter(None, (task.title, task.description, task.details))).lower()
    return sum(1 for cap in agent.capabilities if cap and cap.lower() in text)


def match_agent(tasks: Sequence[Task], agents: Sequence[Agent], task: Task) -> Optional[str]:
    """Suggest an agent for *task*.

    A manual pin wins while that agent is available.  Otherwise the agent whose
    capabilities best match the task text, then the lighter workload, then
    roster order.
    """
    available = [a for a in agents if a.is_available]
    if not available:
        return None
    if task.agent:
        pinned = next((a for a in available if a.name == task.agent), None)
        if pinned is not None:
            return pinned.name

    workload = compute_workload(tasks, agents)
    ranked = sorted(
        enumerate(available),
        key=lambda pair: (-_capability_score(pair[1], task), workload.get(pair[1].name, 0), pair[0]),
    )
    return ranked[0][1].name


def agent_metrics(agents: Sequence[Agent], tasks: Sequence[Task]) -> list[dict[str, Any]]:
    workload = compute_workload(tasks, agents)
    metrics: list[dict[str, Any]] = []
    for agent in agents:
        mine = [t for t in tasks if t.agent == agent.name]
        metrics.append({
            "id": agent.id,
            "name": agent.name,
            "status": agent.status,
            "available": agent.is_available,
            "assigned": len(mine),
            "completed": sum(1 for t in mine if t.status == TaskStatus.DONE),
            "workload": workload.get(agent.name, 0),
        })
    return metrics
