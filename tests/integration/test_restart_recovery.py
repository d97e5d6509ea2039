"""重启恢复集成测试

进程重启后任务状态、依赖关系与等待中的 BLOCKED 任务完整恢复。
"""

from pathlib import Path

from httpx import ASGITransport, AsyncClient
from taskmesh.gateway.main import create_app, lifespan


class TestRestartRecovery:
    """关闭 app -> 重新启动 -> 协调继续"""

    async def test_blocked_task_resumes_after_restart(self, integration_db: Path):
        # 第一次启动：A <- B，B 已请求启动
        app1 = create_app()
        async with lifespan(app1):
            async with AsyncClient(
                transport=ASGITransport(app=app1), base_url="http://test"
            ) as c1:
                await c1.post("/api/tasks", json={"task_id": "A"})
                await c1.post("/api/tasks", json={"task_id": "B", "dependencies": ["A"]})
                await c1.post("/api/tasks/A/start", json={"agent_id": "agent-a"})
                resp = await c1.post("/api/tasks/B/start", json={"agent_id": "agent-b"})
                assert resp.json()["metadata"]["state"] == "BLOCKED"

        # 第二次启动：从 SQLite 恢复后完成 A
        app2 = create_app()
        async with lifespan(app2):
            async with AsyncClient(
                transport=ASGITransport(app=app2), base_url="http://test"
            ) as c2:
                resp = await c2.get("/api/tasks/B")
                assert resp.json()["task"]["state"] == "BLOCKED"

                resp = await c2.post("/api/tasks/A/complete", json={"result": "done"})
                assert resp.status_code == 200
                await app2.state.engine.drain()

                resp = await c2.get("/api/tasks/B")
                assert resp.json()["task"]["state"] == "RUNNING"
                assert resp.json()["task"]["agent_id"] == "agent-b"

    async def test_event_history_survives_restart(self, integration_db: Path):
        app1 = create_app()
        async with lifespan(app1):
            engine = app1.state.engine
            await engine.register_task("A")
            await engine.start_task("A", agent_id="w")
            await engine.complete_task("A", "ok")

        app2 = create_app()
        async with lifespan(app2):
            async with AsyncClient(
                transport=ASGITransport(app=app2), base_url="http://test"
            ) as c2:
                resp = await c2.get("/api/stream/task/A")
                states = [
                    line for line in resp.text.splitlines() if line.startswith("data:")
                ]
                assert len(states) == 3
                assert '"final": true' in states[-1] or '"final":true' in states[-1]
