"""Tests for the HTTP API (server/)."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from httpx import ASGITransport, AsyncClient

from helpers import agents_path, read_json, tasks_path, write_json
from taskmaster.server.api import create_app
from taskmaster.server.websocket import ConnectionManager


@pytest.fixture
def app(project_dir: Path):
    """Create a test app with a seeded project directory."""
    write_json(tasks_path(project_dir), {
        "tasks": [
            {"id": 1, "title": "Schema", "status": "pending"},
            {"id": 2, "title": "API", "status": "done"},
            {
                "id": 3,
                "title": "UI",
                "status": "pending",
                "subtasks": [{"id": 1, "title": "Forms", "status": "pending"}],
            },
        ]
    })
    return create_app(project_dir=project_dir, enable_cors=False)


@pytest.fixture
async def client(app):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


def _with_agents(project_dir: Path) -> None:
    write_json(agents_path(project_dir), {
        "agents": [{"id": 1, "name": "Ada"}, {"id": 2, "name": "Lin"}],
    })


@pytest.mark.anyio
class TestTaskCRUD:
    async def test_list(self, client: AsyncClient) -> None:
        resp = await client.get("/api/tasks")
        assert resp.status_code == 200
        data = resp.json()
        assert data["total"] == 3
        assert resp.headers["X-Tasks-Version"] == "0"

    async def test_list_with_filters(self, client: AsyncClient) -> None:
        resp = await client.get("/api/tasks?status=pending")
        assert [t["id"] for t in resp.json()["tasks"]] == [1, 3]

    async def test_create_and_get(self, client: AsyncClient) -> None:
        resp = await client.post("/api/tasks", json={
            "title": "Docs",
            "priority": "low",
            "testStrategy": "read them",
        })
        assert resp.status_code == 201
        task = resp.json()["task"]
        assert task["id"] == 4
        assert task["testStrategy"] == "read them"
        assert resp.headers["X-Tasks-Version"] == "1"

        resp = await client.get("/api/tasks/4")
        assert resp.status_code == 200
        assert resp.json()["task"]["title"] == "Docs"

    async def test_get_subtask(self, client: AsyncClient) -> None:
        resp = await client.get("/api/tasks/3.1")
        assert resp.status_code == 200
        assert resp.json()["task"]["title"] == "Forms"

    async def test_get_nonexistent(self, client: AsyncClient) -> None:
        resp = await client.get("/api/tasks/99")
        assert resp.status_code == 404
        body = resp.json()
        assert body["success"] is False
        assert body["error"]["code"] == "task_not_found"

    async def test_get_invalid_id(self, client: AsyncClient) -> None:
        resp = await client.get("/api/tasks/abc")
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "invalid_task_id"

    async def test_create_requires_title(self, client: AsyncClient) -> None:
        resp = await client.post("/api/tasks", json={"description": "no title"})
        assert resp.status_code == 400
        assert resp.json()["error"]["kind"] == "invalid_input"

    async def test_update(self, client: AsyncClient) -> None:
        resp = await client.put("/api/tasks/1", json={"title": "Schema v2", "status": "review"})
        assert resp.status_code == 200
        task = resp.json()["task"]
        assert task["title"] == "Schema v2"
        assert task["status"] == "review"

    async def test_update_stale_version(self, client: AsyncClient, project_dir: Path) -> None:
        before = tasks_path(project_dir).read_text(encoding="utf-8")
        resp = await client.put(
            "/api/tasks/1", json={"title": "late"}, headers={"X-Tasks-Version": "5"}
        )
        assert resp.status_code == 409
        assert resp.json()["error"]["kind"] == "conflict"
        assert tasks_path(project_dir).read_text(encoding="utf-8") == before

    async def test_bad_version_header(self, client: AsyncClient) -> None:
        resp = await client.put(
            "/api/tasks/1", json={"title": "x"}, headers={"X-Tasks-Version": "v1"}
        )
        assert resp.status_code == 400

    async def test_delete(self, client: AsyncClient) -> None:
        resp = await client.delete("/api/tasks/2")
        assert resp.status_code == 200
        assert resp.json() == {"status": "deleted", "id": 2}
        resp = await client.get("/api/tasks/2")
        assert resp.status_code == 404

    async def test_stats(self, client: AsyncClient) -> None:
        resp = await client.get("/api/tasks/stats")
        assert resp.json() == {"total": 3, "completed": 1, "pending": 2}


@pytest.mark.anyio
class TestStatusEndpoint:
    async def test_set_status(self, client: AsyncClient, project_dir: Path) -> None:
        resp = await client.post("/api/tasks/status", json={"id": "1,3", "status": "done"})
        assert resp.status_code == 200
        data = resp.json()
        assert data["success"] is True
        assert data["updatedTasks"] == [
            {"id": 1, "status": "done"},
            {"id": 3, "status": "done"},
        ]
        assert [c["taskId"] for c in data["changes"]] == ["1", "3", "3.1"]
        statuses = [t["status"] for t in read_json(tasks_path(project_dir))["tasks"]]
        assert statuses == ["done", "done", "done"]

    async def test_invalid_status(self, client: AsyncClient, project_dir: Path) -> None:
        before = tasks_path(project_dir).read_text(encoding="utf-8")
        resp = await client.post("/api/tasks/status", json={"id": "1", "status": "finished"})
        assert resp.status_code == 400
        error = resp.json()["error"]
        assert error["code"] == "invalid_status"
        assert "pending" in error["details"]["allowed"]
        assert tasks_path(project_dir).read_text(encoding="utf-8") == before

    async def test_unknown_task(self, client: AsyncClient) -> None:
        resp = await client.post("/api/tasks/status", json={"id": "9", "status": "done"})
        assert resp.status_code == 404


@pytest.mark.anyio
class TestProgressFeedback:
    async def test_progress(self, client: AsyncClient) -> None:
        resp = await client.put("/api/tasks/1/progress", json={"progress": 100})
        assert resp.status_code == 200
        task = resp.json()["task"]
        assert task["progress"] == 100
        assert task["status"] == "done"

    async def test_progress_out_of_range(self, client: AsyncClient) -> None:
        resp = await client.put("/api/tasks/1/progress", json={"progress": 150})
        assert resp.status_code == 400

    async def test_feedback(self, client: AsyncClient) -> None:
        resp = await client.post(
            "/api/tasks/1/feedback", json={"agent": "Ada", "message": "Needs an index"}
        )
        assert resp.status_code == 201
        assert resp.json()["feedback"]["message"] == "Needs an index"


@pytest.mark.anyio
class TestAgentEndpoints:
    async def test_delegate_without_agents(self, client: AsyncClient) -> None:
        resp = await client.post("/api/tasks/1/delegate")
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "no_agents"

    async def test_delegate(self, client: AsyncClient, project_dir: Path) -> None:
        _with_agents(project_dir)
        resp = await client.post("/api/tasks/1/delegate")
        assert resp.status_code == 200
        data = resp.json()
        assert data["agent"] == "Ada"
        assert data["task"]["status"] == "in-progress"

        resp = await client.get("/api/agents/history", params={"task_id": 1})
        history = resp.json()["data"]["history"]
        assert history[0]["agent"] == "Ada"

    async def test_delegate_invalid_id(self, client: AsyncClient) -> None:
        resp = await client.post("/api/tasks/x/delegate")
        assert resp.status_code == 400
        assert resp.json()["error"]["message"] == "Invalid task id"

    async def test_assign(self, client: AsyncClient, project_dir: Path) -> None:
        _with_agents(project_dir)
        resp = await client.put("/api/tasks/2/assign", json={"agentId": "2"})
        assert resp.status_code == 200
        assert resp.json()["task"]["assignee"] == "2"

        resp = await client.put("/api/tasks/2/assign", json={"agentId": "99"})
        assert resp.status_code == 404

    async def test_assign_agents_round_robin(self, client: AsyncClient, project_dir: Path) -> None:
        _with_agents(project_dir)
        resp = await client.post("/api/tasks/assign-agents")
        assert resp.json() == {"success": True, "assigned": [1, 2, 3]}

    async def test_create_and_list_agents(self, client: AsyncClient) -> None:
        resp = await client.post("/api/agents", json={"name": "Kim", "dailyCapacity": 3})
        assert resp.status_code == 201
        assert resp.json()["dailyCapacity"] == 3

        resp = await client.get("/api/agents")
        assert [a["name"] for a in resp.json()["agents"]] == ["Kim"]

        resp = await client.put("/api/agents/Kim", json={"status": "busy"})
        assert resp.json()["status"] == "busy"

    async def test_metrics_and_suggest(self, client: AsyncClient, project_dir: Path) -> None:
        _with_agents(project_dir)
        resp = await client.get("/api/agents/metrics")
        metrics = resp.json()["data"]["metrics"]
        assert [m["name"] for m in metrics] == ["Ada", "Lin"]

        resp = await client.get("/api/agents/suggest/1")
        assert resp.json() == {"taskId": 1, "agent": "Ada"}

    @pytest.mark.parametrize("task_id", ["abc", "0", "-2"])
    async def test_suggest_rejects_invalid_id(self, client: AsyncClient, project_dir: Path, task_id: str) -> None:
        _with_agents(project_dir)
        resp = await client.get(f"/api/agents/suggest/{task_id}")
        assert resp.status_code == 400
        assert resp.json()["success"] is False
        assert resp.json()["error"]["code"] == "invalid_task_id"


@pytest.mark.anyio
class TestSprintEndpoints:
    async def test_plan_and_metrics(self, client: AsyncClient) -> None:
        resp = await client.post("/api/sprints", json={"name": "Sprint 1", "startDate": "2024-03-01"})
        assert resp.status_code == 201
        sprint = resp.json()
        assert sprint["startDate"] == "2024-03-01"

        resp = await client.post(f"/api/sprints/{sprint['id']}/plan", json={"limit": 1})
        assert resp.json()["included"] == [1]
        assert resp.json()["excluded"] == [2, 3]

        resp = await client.get("/api/sprints/metrics")
        assert resp.json()["metrics"] == [
            {"id": 1, "name": "Sprint 1", "total": 1, "completed": 0}
        ]

    async def test_plan_default_limit(self, client: AsyncClient) -> None:
        await client.post("/api/sprints", json={"name": "S"})
        resp = await client.post("/api/sprints/1/plan")
        assert resp.json()["included"] == [1, 3]

    async def test_update_and_report(self, client: AsyncClient) -> None:
        await client.post("/api/sprints", json={"name": "S"})
        resp = await client.put("/api/sprints/1", json={"status": "completed"})
        assert resp.json()["completedAt"] is not None

        await client.put("/api/tasks/2", json={"sprint": 1})
        resp = await client.get("/api/sprints/1/report")
        assert resp.json()["summary"] == {"total": 1, "completed": 1}

    async def test_missing_sprint(self, client: AsyncClient) -> None:
        resp = await client.get("/api/sprints/4/capacity")
        assert resp.status_code == 404


@pytest.mark.anyio
class TestStatusAndActivity:
    async def test_health(self, client: AsyncClient) -> None:
        resp = await client.get("/api/health")
        assert resp.json() == {"success": True, "data": {"status": "ok", "websocketClients": 0}}

    async def test_status_and_metrics(self, client: AsyncClient) -> None:
        resp = await client.get("/api/status")
        assert resp.json()["data"]["completed"] == 1
        resp = await client.get("/api/metrics")
        assert resp.json()["data"]["subtasks"] == {"total": 1, "completed": 0}

    async def test_activity(self, client: AsyncClient) -> None:
        await client.post(
            "/api/tasks/status", json={"id": "1", "status": "done"}, headers={"X-User-Id": "u9"}
        )
        resp = await client.get("/api/activity", params={"type": "task_status_changed"})
        data = resp.json()["data"]
        assert data["activities"][0]["userId"] == "u9"
        assert data["statistics"]["total"] == 1


class _FakeSocket:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.sent: list[str] = []

    async def accept(self) -> None:
        return None

    async def send_text(self, text: str) -> None:
        if self.fail:
            raise RuntimeError("socket closed")
        self.sent.append(text)


@pytest.mark.anyio
class TestConnectionManager:
    async def test_broadcast_drops_failed_sockets(self) -> None:
        manager = ConnectionManager()
        good, bad = _FakeSocket(), _FakeSocket(fail=True)
        await manager.connect(good)
        await manager.connect(bad)
        assert manager.count == 2

        delivered = await manager.broadcast("taskUpdated", {"id": 1})
        assert delivered == 1
        assert manager.count == 1
        assert json.loads(good.sent[0]) == {"type": "taskUpdated", "data": {"id": 1}}

    async def test_broadcast_without_clients(self) -> None:
        assert await ConnectionManager().broadcast("noop", {}) == 0
