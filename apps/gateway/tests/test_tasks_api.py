"""任务协调 API 测试

测试内容：
1. 注册 / 启动 / 完成 / 失败 / 强制完成的响应结构
2. 错误码映射（404 / 409）
3. 依赖完成后下游自动推进
4. 依赖链查询
"""

from httpx import AsyncClient


async def _register(client: AsyncClient, task_id: str, deps: list[str] | None = None):
    resp = await client.post(
        "/api/tasks",
        json={"task_id": task_id, "dependencies": deps or []},
    )
    assert resp.status_code == 201, resp.text
    return resp.json()


async def _start(client: AsyncClient, task_id: str, agent_id: str = "worker"):
    return await client.post(f"/api/tasks/{task_id}/start", json={"agent_id": agent_id})


class TestRegisterApi:
    """POST /api/tasks"""

    async def test_register_returns_201(self, client: AsyncClient):
        resp = await client.post(
            "/api/tasks",
            json={
                "task_id": "build",
                "dependencies": [],
                "agent_id": "planner",
                "payload": {"target": "wheel"},
            },
        )

        assert resp.status_code == 201
        data = resp.json()
        assert data["task_id"] == "build"
        assert data["dependencies"] == []
        assert data["status"] == "registered"
        assert data["metadata"]["state"] == "READY"
        assert data["metadata"]["payload"] == {"target": "wheel"}

    async def test_register_non_object_payload(self, client: AsyncClient):
        resp = await client.post(
            "/api/tasks",
            json={"task_id": "build", "payload": ["lint", "test"]},
        )

        assert resp.status_code == 201
        assert resp.json()["metadata"]["payload"] == ["lint", "test"]

    async def test_register_duplicate_returns_409(self, client: AsyncClient):
        await _register(client, "build")
        resp = await client.post("/api/tasks", json={"task_id": "build"})

        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "DUPLICATE_REGISTRATION"

    async def test_register_cycle_returns_409(self, client: AsyncClient):
        await _register(client, "a", ["b"])
        resp = await client.post("/api/tasks", json={"task_id": "b", "dependencies": ["a"]})

        assert resp.status_code == 409
        error = resp.json()["error"]
        assert error["code"] == "CYCLIC_DEPENDENCY"
        assert "b -> a -> b" in error["message"]

    async def test_register_validation_error(self, client: AsyncClient):
        resp = await client.post("/api/tasks", json={"task_id": ""})
        assert resp.status_code == 422


class TestLifecycleApi:
    """start / complete / fail / force-complete"""

    async def test_start_and_complete(self, client: AsyncClient):
        await _register(client, "a")

        resp = await _start(client, "a", "agent-a")
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "started"
        assert data["agent_id"] == "agent-a"
        assert data["metadata"]["state"] == "RUNNING"

        resp = await client.post("/api/tasks/a/complete", json={"result": {"artifact": "a.whl"}})
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "completed"
        assert data["metadata"]["result"] == {"artifact": "a.whl"}

    async def test_start_blocked_then_promoted(self, client: AsyncClient, app):
        await _register(client, "a")
        await _register(client, "b", ["a"])

        resp = await _start(client, "b", "agent-b")
        assert resp.json()["metadata"]["state"] == "BLOCKED"

        await _start(client, "a")
        await client.post("/api/tasks/a/complete", json={})
        await app.state.engine.drain()

        resp = await client.get("/api/tasks/b")
        data = resp.json()
        assert data["task"]["state"] == "RUNNING"
        assert data["task"]["agent_id"] == "agent-b"
        assert data["can_start"] is True

    async def test_start_require_ready_returns_409(self, client: AsyncClient):
        await _register(client, "a")
        await _register(client, "b", ["a"])

        resp = await client.post(
            "/api/tasks/b/start",
            json={"agent_id": "agent-b", "require_ready": True},
        )

        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "DEPENDENCY_NOT_SATISFIED"

    async def test_complete_not_running_returns_409(self, client: AsyncClient):
        await _register(client, "a")
        resp = await client.post("/api/tasks/a/complete", json={})

        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "INVALID_STATE_TRANSITION"

    async def test_fail_blocks_dependents(self, client: AsyncClient, app):
        await _register(client, "a")
        await _register(client, "b", ["a"])
        await _start(client, "a")

        resp = await client.post("/api/tasks/a/fail", json={"error": "compiler crashed"})
        assert resp.status_code == 200
        assert resp.json()["status"] == "failed"
        assert resp.json()["metadata"]["error"] == "compiler crashed"
        await app.state.engine.drain()

        data = (await client.get("/api/tasks/b")).json()
        assert data["task"]["state"] == "BLOCKED_BY_FAILURE"
        assert data["task"]["blocked_by"] == "a"
        assert data["can_start"] is False

    async def test_force_complete(self, client: AsyncClient):
        await _register(client, "a")

        resp = await client.post(
            "/api/tasks/a/force-complete",
            json={"reason": "operator override"},
        )

        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "force-completed"
        assert data["warning"]
        assert data["metadata"]["state"] == "FORCE_COMPLETED"
        assert data["metadata"]["result"]["forced_complete"] is True

    async def test_unknown_task_returns_404(self, client: AsyncClient):
        for path, body in [
            ("/api/tasks/missing/start", {"agent_id": "w"}),
            ("/api/tasks/missing/complete", {}),
            ("/api/tasks/missing/fail", {}),
            ("/api/tasks/missing/force-complete", {}),
        ]:
            resp = await client.post(path, json=body)
            assert resp.status_code == 404, path
            assert resp.json()["error"]["code"] == "TASK_NOT_FOUND"


class TestQueryApi:
    """GET /api/tasks/{id} 与 /chain"""

    async def test_get_task(self, client: AsyncClient):
        await _register(client, "b", ["a"])

        data = (await client.get("/api/tasks/a")).json()
        assert data["task"]["is_placeholder"] is True
        assert data["task"]["dependents"] == ["b"]
        assert data["can_start"] is True

    async def test_get_unknown_task(self, client: AsyncClient):
        resp = await client.get("/api/tasks/missing")
        assert resp.status_code == 404
        assert resp.json()["error"]["message"] == "Task with id missing does not exist"

    async def test_chain(self, client: AsyncClient):
        await _register(client, "a")
        await _register(client, "b", ["a"])
        await _register(client, "c", ["b"])

        resp = await client.get("/api/tasks/b/chain")
        assert resp.status_code == 200
        data = resp.json()
        assert data["task_id"] == "b"
        assert [e["task_id"] for e in data["ancestors"]] == ["a"]
        assert [e["task_id"] for e in data["descendants"]] == ["c"]
        assert data["total_depth"] == 1

    async def test_chain_unknown_task(self, client: AsyncClient):
        resp = await client.get("/api/tasks/missing/chain")
        assert resp.status_code == 404
