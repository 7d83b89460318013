"""Task engine: the facade the CLI and the HTTP API talk to.

Every mutating call runs one locked read-modify-write cycle on ``tasks.json``
through :meth:`TaskStore.transaction`, then feeds the resulting change
records to the activity log and, for agent assignments, the assignment
history.  Agents and sprints live in their own documents and are loaded per
call, so an engine holds no cached state between operations.
"""

from __future__ import annotations

from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, Optional, Union

from loguru import logger

from ..activity import ActivityLog
from ..agents import assignment
from ..agents.registry import Agent, AgentRoster, AssignmentHistory
from ..config import TaskmasterConfig, load_config
from ..errors import ConflictError, InvalidInputError
from ..sprints import metrics as sprint_calc
from ..sprints.metrics import PlanResult
from ..sprints.store import Sprint, SprintStore
from ..utils import _coerce_int
from .model import Subtask, Task, TaskPriority, TaskStatus, _int_list
from .status import (
    SetStatusResult,
    StatusChange,
    TransitionPolicy,
    add_feedback,
    set_status,
    update_progress,
    validate_status,
)
from .store import DependencyIssue, TaskStore

# Fields a caller may change through update_task (status is routed separately).
_UPDATABLE = {
    "title", "description", "priority", "dependencies", "details", "test_strategy",
    "agent", "assignee", "sprint",
}


def _priority(value: Any) -> TaskPriority:
    try:
        return TaskPriority(value)
    except ValueError:
        raise InvalidInputError(
            f"Invalid priority: {value}. Use one of: {', '.join(p.value for p in TaskPriority)}",
            details={"priority": value},
        ) from None


def _dependencies(value: Any) -> list[int]:
    if not isinstance(value, list) or any(_coerce_int(v) is None for v in value):
        raise InvalidInputError("'dependencies' must be a list of task ids", details={"dependencies": value})
    return _int_list(value)


class TaskEngine:
    """Manage tasks, agent assignment and sprints for one project.

    Parameters
    ----------
    config:
        Resolved project configuration (file locations and switches).
    """

    def __init__(self, config: TaskmasterConfig) -> None:
        self.config = config
        self.store = TaskStore(config.tasks_file, strict=config.strict_load)
        self.activity = ActivityLog(config.activity_log)
        self.history = AssignmentHistory(config.history_file)
        self.policy = TransitionPolicy.strict() if config.strict_transitions else TransitionPolicy.flat()

    @classmethod
    def for_project(cls, project_dir: Path) -> "TaskEngine":
        config, err = load_config(project_dir)
        if err:
            logger.warning("Ignoring unreadable config: {}", err)
        return cls(config)

    @contextmanager
    def _transaction(self, expected_revision: Optional[int] = None) -> Iterator[TaskStore]:
        with self.store.transaction() as tx:
            if expected_revision is not None and expected_revision != tx.revision:
                raise ConflictError(
                    "Task data out of date",
                    details={"expected_revision": expected_revision, "revision": tx.revision},
                )
            yield tx

    def _load(self) -> TaskStore:
        self.store.load()
        return self.store

    def load_agents(self) -> AgentRoster:
        return AgentRoster.open(self.config.agents_file)

    def load_sprints(self) -> SprintStore:
        return SprintStore.open(self.config.sprints_file)

    def _log_changes(self, changes: list[StatusChange], user_id: Optional[str]) -> None:
        for change in changes:
            self.activity.log_change(change, user_id)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def revision(self) -> int:
        return self._load().revision

    def list_tasks(self, **filters: Any) -> list[Task]:
        return self._load().find(**filters)

    def get_task(self, ref: Union[int, str]) -> Union[Task, Subtask]:
        return self._load().resolve(str(ref))

    def validate_dependencies(self) -> list[DependencyIssue]:
        return self._load().validate_dependencies()

    def status_summary(self) -> dict[str, Any]:
        return sprint_calc.status_summary(self._load().tasks)

    def metrics_summary(self) -> dict[str, Any]:
        return sprint_calc.metrics_summary(self._load().tasks)

    def task_stats(self) -> dict[str, int]:
        return sprint_calc.task_stats(self._load().tasks)

    # ------------------------------------------------------------------
    # Task CRUD
    # ------------------------------------------------------------------

    def create_task(
        self,
        title: str,
        description: str = "",
        priority: str = TaskPriority.MEDIUM.value,
        status: str = TaskStatus.PENDING.value,
        dependencies: Optional[list[int]] = None,
        details: Optional[str] = None,
        test_strategy: Optional[str] = None,
        agent: Optional[str] = None,
        sprint: Optional[int] = None,
        *,
        user_id: Optional[str] = None,
        expected_revision: Optional[int] = None,
    ) -> Task:
        """Create and persist a new task, returning it."""
        if not isinstance(title, str) or not title.strip():
            raise InvalidInputError("Task title is required")
        task_status = validate_status(status)
        task_priority = _priority(priority)
        deps = _dependencies(dependencies or [])
        with self._transaction(expected_revision) as tx:
            task = Task(
                id=tx.next_id(),
                title=title.strip(),
                description=description or "",
                status=task_status,
                priority=task_priority,
                dependencies=deps,
                details=details,
                test_strategy=test_strategy,
                agent=agent,
                sprint=sprint,
            )
            tx.add(task)
        logger.info("Created task {}: {}", task.id, task.title)
        self.activity.log_task_created(task, user_id)
        return task

    def update_task(
        self,
        task_id: Any,
        changes: dict[str, Any],
        *,
        user_id: Optional[str] = None,
        expected_revision: Optional[int] = None,
    ) -> Task:
        """Apply field *changes* to a task; a ``status`` change goes through :func:`set_status`."""
        ident = assignment.parse_task_id(task_id)
        changes = dict(changes)
        new_status = changes.pop("status", None)
        progress = changes.pop("progress", None)
        unknown = set(changes) - _UPDATABLE
        if unknown:
            raise InvalidInputError(f"Unknown task fields: {', '.join(sorted(unknown))}")
        if "title" in changes and (not isinstance(changes["title"], str) or not changes["title"].strip()):
            raise InvalidInputError("Task title must not be empty")
        if "priority" in changes:
            changes["priority"] = _priority(changes["priority"])
        if "dependencies" in changes:
            changes["dependencies"] = _dependencies(changes["dependencies"])
        if changes.get("sprint") is not None:
            sprint = _coerce_int(changes["sprint"])
            if sprint is None:
                raise InvalidInputError(f"Invalid sprint id: {changes['sprint']}")
            changes["sprint"] = sprint
        if new_status is not None:
            validate_status(new_status)

        status_result: Optional[SetStatusResult] = None
        progress_change: Optional[StatusChange] = None
        with self._transaction(expected_revision) as tx:
            task = tx.require(ident)
            if changes:
                tx.update(ident, changes)
            if progress is not None:
                progress_change = update_progress(task, progress)
                tx.mark_dirty()
            if new_status is not None:
                status_result = set_status(tx, str(ident), new_status, policy=self.policy)

        if status_result is not None:
            self._log_changes(status_result.changes, user_id)
        if progress_change is not None:
            self._log_changes([progress_change], user_id)
        if changes or (progress is not None and progress_change is None):
            logged = {k: (v.value if isinstance(v, TaskPriority) else v) for k, v in changes.items()}
            if progress is not None:
                logged["progress"] = progress
            self.activity.log_task_updated(task, logged, user_id)
        return task

    def delete_task(
        self,
        task_id: Any,
        *,
        user_id: Optional[str] = None,
        expected_revision: Optional[int] = None,
    ) -> Task:
        ident = assignment.parse_task_id(task_id)
        with self._transaction(expected_revision) as tx:
            task = tx.remove(ident)
        logger.info("Deleted task {}", ident)
        self.activity.log_task_deleted(task, user_id)
        return task

    # ------------------------------------------------------------------
    # Status, progress, feedback
    # ------------------------------------------------------------------

    def set_status(
        self,
        id_spec: Union[str, int],
        status: str,
        *,
        user_id: Optional[str] = None,
        expected_revision: Optional[int] = None,
    ) -> SetStatusResult:
        # Reject a bad status before touching the file at all.
        validate_status(status)
        with self._transaction(expected_revision) as tx:
            result = set_status(tx, id_spec, status, policy=self.policy)
        self._log_changes(result.changes, user_id)
        return result

    def update_progress(self, task_id: Any, value: Any, *, user_id: Optional[str] = None) -> Task:
        ident = assignment.parse_task_id(task_id)
        with self._transaction() as tx:
            task = tx.require(ident)
            change = update_progress(task, value)
            tx.mark_dirty()
        if change is not None:
            self._log_changes([change], user_id)
        else:
            self.activity.log_task_updated(task, {"progress": task.progress}, user_id)
        return task

    def add_feedback(
        self, task_id: Any, agent: str, message: str, *, user_id: Optional[str] = None
    ) -> dict[str, Any]:
        ident = assignment.parse_task_id(task_id)
        with self._transaction() as tx:
            task = tx.require(ident)
            entry = add_feedback(task, agent, message)
            tx.mark_dirty()
        self.activity.log_task_updated(task, {"feedback": entry}, user_id)
        return entry

    # ------------------------------------------------------------------
    # Agent assignment
    # ------------------------------------------------------------------

    def delegate(self, task_id: Any, *, user_id: Optional[str] = None) -> Task:
        """Least-workload assignment of one task, recorded in the history."""
        ident = assignment.parse_task_id(task_id)
        roster = self.load_agents()
        with self._transaction() as tx:
            existing = tx.get(ident)
            old_status = existing.status.value if existing else None
            task = assignment.delegate(tx.tasks, roster.agents, ident)
            tx.mark_dirty()
        self.history.record(task.id, task.agent or "", source="delegate")
        self.activity.log_agent_assigned(task, task.agent or "", user_id, policy="delegate")
        if old_status is not None and old_status != task.status.value:
            self.activity.log_status_changed(task, old_status, task.status.value, user_id)
        return task

    def assign_task(self, task_id: Any, agent_ident: Any, *, user_id: Optional[str] = None) -> Task:
        """Manually set a task's ``assignee`` to a known agent."""
        ident = assignment.parse_task_id(task_id)
        if agent_ident is None or not str(agent_ident).strip():
            raise InvalidInputError("Task ID and agent ID are required")
        agent = self.load_agents().require(agent_ident)
        with self._transaction() as tx:
            task = tx.require(ident)
            task.assignee = str(agent.key)
            task.touch()
            tx.mark_dirty()
        self.history.record(task.id, agent.name, source="manual")
        self.activity.log_agent_assigned(task, agent.name, user_id, policy="manual")
        return task

    def assign_agents_round_robin(self, *, user_id: Optional[str] = None) -> list[int]:
        roster = self.load_agents()
        with self._transaction() as tx:
            assigned = assignment.assign_agents_round_robin(tx.tasks, roster.agents)
            if assigned:
                tx.mark_dirty()
        return assigned

    def suggest_agent(self, task_id: Any) -> Optional[str]:
        ident = assignment.parse_task_id(task_id)
        store = self._load()
        task = store.require(ident)
        return assignment.match_agent(store.tasks, self.load_agents().agents, task)

    def agent_metrics(self) -> list[dict[str, Any]]:
        return assignment.agent_metrics(self.load_agents().agents, self._load().tasks)

    def create_agent(self, data: dict[str, Any]) -> Agent:
        errors = Agent.validate_dict(data)
        if errors:
            raise InvalidInputError("; ".join(errors), details={"errors": errors})
        roster = self.load_agents()
        agent = roster.add(Agent.from_dict(data))
        roster.save()
        logger.info("Added agent {}", agent.name)
        return agent

    def update_agent(self, ident: Any, changes: dict[str, Any]) -> Agent:
        roster = self.load_agents()
        agent = roster.update(ident, changes)
        roster.save()
        return agent

    # ------------------------------------------------------------------
    # Sprints
    # ------------------------------------------------------------------

    def create_sprint(self, name: str, **fields: Any) -> Sprint:
        sprints = self.load_sprints()
        sprint = sprints.create(name, **fields)
        sprints.save()
        logger.info("Created sprint {}: {}", sprint.id, sprint.name)
        return sprint

    def update_sprint(self, sprint_id: Any, changes: dict[str, Any]) -> Sprint:
        sprints = self.load_sprints()
        sprint = sprints.update(sprint_id, changes)
        sprints.save()
        return sprint

    def plan_sprint(self, sprint_id: Any, limit: Optional[int] = None) -> PlanResult:
        sprints = self.load_sprints()
        sprint = sprints.require(sprint_id)
        result = sprint_calc.auto_plan(
            sprint,
            self._load().tasks,
            self.config.auto_plan_limit if limit is None else limit,
        )
        sprints.save()
        logger.info(
            "Planned sprint {}: {} included, {} excluded",
            sprint.id, len(result.included), len(result.excluded),
        )
        return result

    def sprint_metrics(self) -> list[dict[str, Any]]:
        return sprint_calc.compute_metrics(self.load_sprints().sprints, self._load().tasks)

    def sprint_report(self, sprint_id: Any) -> dict[str, Any]:
        ident = _coerce_int(sprint_id)
        if ident is None:
            raise InvalidInputError(f"Invalid sprint id: {sprint_id}")
        return sprint_calc.sprint_report(self._load().tasks, ident)

    def sprint_capacity(self, sprint_id: Any) -> dict[str, Any]:
        sprint = self.load_sprints().require(sprint_id)
        return sprint_calc.capacity_utilization(
            sprint, self._load().tasks, self.load_agents().agents
        )
