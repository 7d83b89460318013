"""Task API endpoints.

This module provides a FastAPI router with task CRUD, bulk status updates,
agent delegation and progress/feedback endpoints.  It is mounted under
``/api/tasks`` by the main ``create_app`` factory.

Mutating endpoints honour an optional ``X-Tasks-Version`` request header: if
it does not match the current store revision the request fails with 409 and
nothing is written.  Responses carry the revision after the operation.
"""

from __future__ import annotations

from typing import Any, Callable, Optional

from fastapi import APIRouter, Header, Query, Response
from pydantic import BaseModel, ConfigDict, Field

from ..errors import InvalidInputError
from ..task_engine.engine import TaskEngine
from ..utils import _coerce_int
from .websocket import ConnectionManager

VERSION_HEADER = "X-Tasks-Version"

# Keys that may not be cleared to null through an update.
_NON_NULLABLE = ("title", "description", "priority", "status", "dependencies", "progress")


# ---------------------------------------------------------------------------
# Pydantic request / response models
# ---------------------------------------------------------------------------

class CreateTaskRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    title: str
    description: str = ""
    priority: str = "medium"
    status: str = "pending"
    dependencies: list[int] = Field(default_factory=list)
    details: Optional[str] = None
    test_strategy: Optional[str] = Field(None, alias="testStrategy")
    agent: Optional[str] = None
    sprint: Optional[int] = None


class UpdateTaskRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    title: Optional[str] = None
    description: Optional[str] = None
    priority: Optional[str] = None
    status: Optional[str] = None
    dependencies: Optional[list[int]] = None
    details: Optional[str] = None
    test_strategy: Optional[str] = Field(None, alias="testStrategy")
    agent: Optional[str] = None
    assignee: Optional[str] = None
    sprint: Optional[int] = None
    progress: Optional[float] = None


class SetStatusRequest(BaseModel):
    id: str
    status: str


class AssignRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    agent_id: str = Field(alias="agentId")


class ProgressRequest(BaseModel):
    progress: float


class FeedbackRequest(BaseModel):
    agent: str
    message: str


class TaskResponse(BaseModel):
    """Standard wrapper for task responses."""
    task: dict[str, Any]


class TaskListResponse(BaseModel):
    tasks: list[dict[str, Any]]
    total: int


def _expected_revision(value: Optional[str]) -> Optional[int]:
    if value is None or not value.strip():
        return None
    revision = _coerce_int(value)
    if revision is None:
        raise InvalidInputError(f"Invalid {VERSION_HEADER} header: {value!r}")
    return revision


# ---------------------------------------------------------------------------
# Router factory
# ---------------------------------------------------------------------------

def create_task_router(
    get_engine: Callable[[Optional[str]], TaskEngine],
    manager: ConnectionManager,
) -> APIRouter:
    """Create the task API router.

    Parameters
    ----------
    get_engine:
        A callable ``(project_dir_param: str | None) -> TaskEngine`` that
        resolves the engine for the current request's project directory.
    manager:
        WebSocket fan-out notified after every successful mutation.
    """
    router = APIRouter(prefix="/api/tasks", tags=["tasks"])

    # ------------------------------------------------------------------
    # Collection
    # ------------------------------------------------------------------

    @router.get("", response_model=TaskListResponse)
    async def list_tasks(
        response: Response,
        project_dir: Optional[str] = Query(None),
        status: Optional[str] = Query(None),
        priority: Optional[str] = Query(None),
        agent: Optional[str] = Query(None),
        assignee: Optional[str] = Query(None),
        sprint: Optional[int] = Query(None),
        search: Optional[str] = Query(None),
    ) -> TaskListResponse:
        engine = get_engine(project_dir)
        tasks = engine.list_tasks(
            status=status,
            priority=priority,
            agent=agent,
            assignee=assignee,
            sprint=sprint,
            search=search,
        )
        response.headers[VERSION_HEADER] = str(engine.store.revision)
        data = [t.to_dict() for t in tasks]
        return TaskListResponse(tasks=data, total=len(data))

    @router.post("", response_model=TaskResponse, status_code=201)
    async def create_task(
        body: CreateTaskRequest,
        response: Response,
        project_dir: Optional[str] = Query(None),
        x_tasks_version: Optional[str] = Header(None),
        x_user_id: Optional[str] = Header(None),
    ) -> TaskResponse:
        engine = get_engine(project_dir)
        task = engine.create_task(
            **body.model_dump(),
            user_id=x_user_id,
            expected_revision=_expected_revision(x_tasks_version),
        )
        response.headers[VERSION_HEADER] = str(engine.store.revision)
        await manager.broadcast("taskCreated", task.to_dict())
        return TaskResponse(task=task.to_dict())

    @router.get("/stats")
    async def task_stats(project_dir: Optional[str] = Query(None)) -> dict[str, int]:
        return get_engine(project_dir).task_stats()

    @router.post("/status")
    async def set_status(
        body: SetStatusRequest,
        response: Response,
        project_dir: Optional[str] = Query(None),
        x_tasks_version: Optional[str] = Header(None),
        x_user_id: Optional[str] = Header(None),
    ) -> dict[str, Any]:
        engine = get_engine(project_dir)
        result = engine.set_status(
            body.id,
            body.status,
            user_id=x_user_id,
            expected_revision=_expected_revision(x_tasks_version),
        )
        response.headers[VERSION_HEADER] = str(engine.store.revision)
        for change in result.changes:
            await manager.broadcast("taskStatusChanged", change.to_dict())
        return result.to_dict()

    @router.post("/assign-agents")
    async def assign_agents(
        project_dir: Optional[str] = Query(None),
        x_user_id: Optional[str] = Header(None),
    ) -> dict[str, Any]:
        engine = get_engine(project_dir)
        assigned = engine.assign_agents_round_robin(user_id=x_user_id)
        if assigned:
            await manager.broadcast("tasksAssigned", {"taskIds": assigned})
        return {"success": True, "assigned": assigned}

    # ------------------------------------------------------------------
    # Single task
    # ------------------------------------------------------------------

    @router.get("/{task_id}", response_model=TaskResponse)
    async def get_task(
        task_id: str,
        project_dir: Optional[str] = Query(None),
    ) -> TaskResponse:
        engine = get_engine(project_dir)
        return TaskResponse(task=engine.get_task(task_id).to_dict())

    @router.put("/{task_id}", response_model=TaskResponse)
    async def update_task(
        task_id: str,
        body: UpdateTaskRequest,
        response: Response,
        project_dir: Optional[str] = Query(None),
        x_tasks_version: Optional[str] = Header(None),
        x_user_id: Optional[str] = Header(None),
    ) -> TaskResponse:
        engine = get_engine(project_dir)
        changes = body.model_dump(exclude_unset=True)
        changes = {
            k: v for k, v in changes.items() if not (k in _NON_NULLABLE and v is None)
        }
        task = engine.update_task(
            task_id,
            changes,
            user_id=x_user_id,
            expected_revision=_expected_revision(x_tasks_version),
        )
        response.headers[VERSION_HEADER] = str(engine.store.revision)
        await manager.broadcast("taskUpdated", task.to_dict())
        return TaskResponse(task=task.to_dict())

    @router.delete("/{task_id}")
    async def delete_task(
        task_id: str,
        response: Response,
        project_dir: Optional[str] = Query(None),
        x_tasks_version: Optional[str] = Header(None),
        x_user_id: Optional[str] = Header(None),
    ) -> dict[str, Any]:
        engine = get_engine(project_dir)
        task = engine.delete_task(
            task_id,
            user_id=x_user_id,
            expected_revision=_expected_revision(x_tasks_version),
        )
        response.headers[VERSION_HEADER] = str(engine.store.revision)
        await manager.broadcast("taskDeleted", {"id": task.id})
        return {"status": "deleted", "id": task.id}

    # ------------------------------------------------------------------
    # Assignment, progress, feedback
    # ------------------------------------------------------------------

    @router.post("/{task_id}/delegate")
    async def delegate_task(
        task_id: str,
        project_dir: Optional[str] = Query(None),
        x_user_id: Optional[str] = Header(None),
    ) -> dict[str, Any]:
        engine = get_engine(project_dir)
        task = engine.delegate(task_id, user_id=x_user_id)
        await manager.broadcast("taskUpdated", task.to_dict())
        return {"success": True, "agent": task.agent, "task": task.to_dict()}

    @router.put("/{task_id}/assign")
    async def assign_task(
        task_id: str,
        body: AssignRequest,
        project_dir: Optional[str] = Query(None),
        x_user_id: Optional[str] = Header(None),
    ) -> dict[str, Any]:
        engine = get_engine(project_dir)
        task = engine.assign_task(task_id, body.agent_id, user_id=x_user_id)
        await manager.broadcast("taskUpdated", task.to_dict())
        return {
            "success": True,
            "task": task.to_dict(),
            "message": f"Task {task.id} assigned to {body.agent_id}",
        }

    @router.put("/{task_id}/progress", response_model=TaskResponse)
    async def update_progress(
        task_id: str,
        body: ProgressRequest,
        project_dir: Optional[str] = Query(None),
        x_user_id: Optional[str] = Header(None),
    ) -> TaskResponse:
        engine = get_engine(project_dir)
        task = engine.update_progress(task_id, body.progress, user_id=x_user_id)
        await manager.broadcast("taskUpdated", task.to_dict())
        return TaskResponse(task=task.to_dict())

    @router.post("/{task_id}/feedback", status_code=201)
    async def add_feedback(
        task_id: str,
        body: FeedbackRequest,
        project_dir: Optional[str] = Query(None),
        x_user_id: Optional[str] = Header(None),
    ) -> dict[str, Any]:
        engine = get_engine(project_dir)
        entry = engine.add_feedback(task_id, body.agent, body.message, user_id=x_user_id)
        return {"success": True, "feedback": entry}

    return router
