"""Agent API endpoints: roster management, metrics, history and suggestions."""

from __future__ import annotations

from typing import Any, Callable, Optional

from fastapi import APIRouter, Query
from pydantic import BaseModel, ConfigDict, Field

from ..agents.assignment import parse_task_id
from ..task_engine.engine import TaskEngine
from .websocket import ConnectionManager


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------

class CreateAgentRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    name: str
    status: str = "available"
    role: Optional[str] = None
    capabilities: list[str] = Field(default_factory=list)
    daily_capacity: Optional[float] = Field(None, alias="dailyCapacity")
    availability: float = 1.0


class UpdateAgentRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    name: Optional[str] = None
    status: Optional[str] = None
    role: Optional[str] = None
    capabilities: Optional[list[str]] = None
    daily_capacity: Optional[float] = Field(None, alias="dailyCapacity")
    availability: Optional[float] = None


# ---------------------------------------------------------------------------
# Router factory
# ---------------------------------------------------------------------------

def create_agent_router(
    get_engine: Callable[[Optional[str]], TaskEngine],
    manager: ConnectionManager,
) -> APIRouter:
    router = APIRouter(prefix="/api/agents", tags=["agents"])

    @router.get("")
    async def list_agents(project_dir: Optional[str] = Query(None)) -> dict[str, Any]:
        roster = get_engine(project_dir).load_agents()
        return {"agents": [a.to_dict() for a in roster]}

    @router.post("", status_code=201)
    async def create_agent(
        body: CreateAgentRequest,
        project_dir: Optional[str] = Query(None),
    ) -> dict[str, Any]:
        engine = get_engine(project_dir)
        agent = engine.create_agent(body.model_dump(by_alias=True, exclude_none=True))
        await manager.broadcast("agentsUpdated", [a.to_dict() for a in engine.load_agents()])
        return agent.to_dict()

    @router.get("/metrics")
    async def agent_metrics(project_dir: Optional[str] = Query(None)) -> dict[str, Any]:
        metrics = get_engine(project_dir).agent_metrics()
        return {"success": True, "data": {"metrics": metrics}}

    @router.get("/history")
    async def assignment_history(
        project_dir: Optional[str] = Query(None),
        task_id: Optional[int] = Query(None),
    ) -> dict[str, Any]:
        history = get_engine(project_dir).history
        entries = history.for_task(task_id) if task_id is not None else history.entries()
        return {"success": True, "data": {"history": entries}}

    @router.get("/suggest/{task_id}")
    async def suggest_agent(
        task_id: str,
        project_dir: Optional[str] = Query(None),
    ) -> dict[str, Any]:
        ident = parse_task_id(task_id)
        agent = get_engine(project_dir).suggest_agent(ident)
        return {"taskId": ident, "agent": agent}

    @router.put("/{agent_id}")
    async def update_agent(
        agent_id: str,
        body: UpdateAgentRequest,
        project_dir: Optional[str] = Query(None),
    ) -> dict[str, Any]:
        engine = get_engine(project_dir)
        changes = body.model_dump(by_alias=True, exclude_unset=True)
        agent = engine.update_agent(agent_id, changes)
        await manager.broadcast("agentsUpdated", [a.to_dict() for a in engine.load_agents()])
        return agent.to_dict()

    return router
