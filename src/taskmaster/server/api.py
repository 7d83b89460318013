"""FastAPI application for the Taskmaster backend."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Optional

from fastapi import FastAPI, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger

from ..config import TaskmasterConfig
from ..errors import InvalidInputError, TaskmasterError
from ..task_engine.engine import TaskEngine
from .agent_api import create_agent_router
from .sprint_api import create_sprint_router
from .task_api import VERSION_HEADER, create_task_router
from .websocket import ConnectionManager


def _success(data: Any) -> dict[str, Any]:
    return {"success": True, "data": data}


def _error_response(exc: TaskmasterError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.http_status,
        content={"success": False, "error": exc.to_dict()},
    )


def create_app(
    project_dir: Optional[Path] = None,
    config: Optional[TaskmasterConfig] = None,
    enable_cors: bool = True,
) -> FastAPI:
    """Create and configure FastAPI application.

    Args:
        project_dir: Default project directory.
        config: Pre-resolved configuration; takes precedence over *project_dir*
            for requests that do not name a project explicitly.
        enable_cors: Whether to enable CORS.

    Returns:
        Configured FastAPI app.
    """
    app = FastAPI(
        title="Taskmaster",
        description="Task tracking, agent assignment and sprint planning API",
        version="1.0.0",
    )

    if enable_cors:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
            expose_headers=[VERSION_HEADER],
        )

    app.state.default_project_dir = project_dir
    app.state.config = config
    app.state.ws_manager = ConnectionManager()

    def _get_engine(project_dir_param: Optional[str] = None) -> TaskEngine:
        """Resolve the engine for a request's project directory."""
        if project_dir_param:
            return TaskEngine.for_project(Path(project_dir_param))
        if app.state.config is not None:
            return TaskEngine(app.state.config)
        return TaskEngine.for_project(app.state.default_project_dir or Path.cwd())

    # ------------------------------------------------------------------
    # Error mapping
    # ------------------------------------------------------------------

    @app.exception_handler(TaskmasterError)
    async def handle_taskmaster_error(request: Request, exc: TaskmasterError) -> JSONResponse:
        if exc.http_status >= 500:
            logger.error("{} {} failed: {}", request.method, request.url.path, exc.message)
        else:
            logger.debug("{} {} rejected ({}): {}", request.method, request.url.path, exc.code, exc.message)
        return _error_response(exc)

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        problems = [
            f"{'.'.join(str(p) for p in err.get('loc', ()))}: {err.get('msg')}" for err in exc.errors()
        ]
        error = InvalidInputError("Invalid request: " + "; ".join(problems), details={"errors": problems})
        return _error_response(error)

    # ------------------------------------------------------------------
    # Routers
    # ------------------------------------------------------------------

    manager: ConnectionManager = app.state.ws_manager
    app.include_router(create_task_router(_get_engine, manager))
    app.include_router(create_agent_router(_get_engine, manager))
    app.include_router(create_sprint_router(_get_engine, manager))

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    @app.get("/api/health")
    async def health() -> dict[str, Any]:
        return _success({"status": "ok", "websocketClients": manager.count})

    @app.get("/api/status")
    async def get_status(project_dir: Optional[str] = Query(None)) -> dict[str, Any]:
        return _success(_get_engine(project_dir).status_summary())

    @app.get("/api/metrics")
    async def get_metrics(project_dir: Optional[str] = Query(None)) -> dict[str, Any]:
        return _success(_get_engine(project_dir).metrics_summary())

    @app.get("/api/activity")
    async def get_activity(
        project_dir: Optional[str] = Query(None),
        limit: int = Query(100, ge=0),
        activity_type: Optional[str] = Query(None, alias="type"),
    ) -> dict[str, Any]:
        activity = _get_engine(project_dir).activity
        return _success({
            "activities": activity.read(limit, activity_type=activity_type),
            "statistics": activity.statistics(),
        })

    # ------------------------------------------------------------------
    # WebSocket
    # ------------------------------------------------------------------

    @app.websocket("/ws")
    async def websocket_updates(websocket: WebSocket) -> None:
        """Push task, agent and sprint events; answers ``ping`` with ``pong``."""
        await manager.connect(websocket)
        try:
            while True:
                message = await websocket.receive_text()
                if message.strip().lower() == "ping":
                    await websocket.send_text("pong")
        except WebSocketDisconnect:
            manager.disconnect(websocket)

    return app
