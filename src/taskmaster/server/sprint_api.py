"""Sprint API endpoints: CRUD, auto-planning, metrics and reports."""

from __future__ import annotations

from typing import Any, Callable, Optional

from fastapi import APIRouter, Query
from pydantic import BaseModel, ConfigDict, Field

from ..task_engine.engine import TaskEngine
from .websocket import ConnectionManager


class CreateSprintRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str
    goal: str = ""
    start_date: Optional[str] = Field(None, alias="startDate")
    end_date: Optional[str] = Field(None, alias="endDate")
    tasks: list[int] = Field(default_factory=list)


class UpdateSprintRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    name: Optional[str] = None
    goal: Optional[str] = None
    status: Optional[str] = None
    start_date: Optional[str] = Field(None, alias="startDate")
    end_date: Optional[str] = Field(None, alias="endDate")
    tasks: Optional[list[int]] = None


class PlanRequest(BaseModel):
    limit: Optional[int] = Field(None, ge=0)


def create_sprint_router(
    get_engine: Callable[[Optional[str]], TaskEngine],
    manager: ConnectionManager,
) -> APIRouter:
    router = APIRouter(prefix="/api/sprints", tags=["sprints"])

    async def _broadcast_sprints(engine: TaskEngine) -> None:
        await manager.broadcast("sprintsUpdated", [s.to_dict() for s in engine.load_sprints().sprints])

    @router.get("")
    async def list_sprints(project_dir: Optional[str] = Query(None)) -> dict[str, Any]:
        sprints = get_engine(project_dir).load_sprints()
        return {"sprints": [s.to_dict() for s in sprints.sprints]}

    @router.post("", status_code=201)
    async def create_sprint(
        body: CreateSprintRequest,
        project_dir: Optional[str] = Query(None),
    ) -> dict[str, Any]:
        engine = get_engine(project_dir)
        sprint = engine.create_sprint(**body.model_dump())
        await _broadcast_sprints(engine)
        return sprint.to_dict()

    @router.get("/metrics")
    async def sprint_metrics(project_dir: Optional[str] = Query(None)) -> dict[str, Any]:
        return {"metrics": get_engine(project_dir).sprint_metrics()}

    @router.put("/{sprint_id}")
    async def update_sprint(
        sprint_id: int,
        body: UpdateSprintRequest,
        project_dir: Optional[str] = Query(None),
    ) -> dict[str, Any]:
        engine = get_engine(project_dir)
        sprint = engine.update_sprint(sprint_id, body.model_dump(by_alias=True, exclude_unset=True))
        await _broadcast_sprints(engine)
        return sprint.to_dict()

    @router.post("/{sprint_id}/plan")
    async def plan_sprint(
        sprint_id: int,
        body: Optional[PlanRequest] = None,
        project_dir: Optional[str] = Query(None),
    ) -> dict[str, Any]:
        engine = get_engine(project_dir)
        result = engine.plan_sprint(sprint_id, body.limit if body else None)
        await _broadcast_sprints(engine)
        return result.to_dict()

    @router.get("/{sprint_id}/report")
    async def sprint_report(
        sprint_id: int,
        project_dir: Optional[str] = Query(None),
    ) -> dict[str, Any]:
        return get_engine(project_dir).sprint_report(sprint_id)

    @router.get("/{sprint_id}/capacity")
    async def sprint_capacity(
        sprint_id: int,
        project_dir: Optional[str] = Query(None),
    ) -> dict[str, Any]:
        return get_engine(project_dir).sprint_capacity(sprint_id)

    return router
