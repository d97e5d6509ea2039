"""apps/gateway 测试配置 -- httpx AsyncClient + 手动初始化的 app"""

from collections.abc import AsyncGenerator
from pathlib import Path

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient


@pytest.fixture(autouse=True)
def gateway_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """测试环境变量：临时数据库 + 关闭 Logfire"""
    db_path = tmp_path / "sqlite" / "test.db"
    monkeypatch.setenv("TASKMESH_DB_PATH", str(db_path))
    monkeypatch.setenv("LOGFIRE_SEND_TO_LOGFIRE", "false")
    return db_path


@pytest_asyncio.fixture
async def app(gateway_env: Path):
    """创建 app 并手动初始化 state（ASGITransport 不触发 lifespan）"""
    from taskmesh.core.config import EngineConfig
    from taskmesh.core.store import create_store_group
    from taskmesh.gateway.main import build_engine, create_app
    from taskmesh.gateway.services.sse_hub import SSEHub

    application = create_app()
    store_group = await create_store_group(str(gateway_env))
    sse_hub = SSEHub()
    engine = build_engine(store_group, sse_hub, EngineConfig())

    application.state.store_group = store_group
    application.state.sse_hub = sse_hub
    application.state.engine = engine

    yield application

    await engine.drain()
    await store_group.conn.close()


@pytest_asyncio.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """提供 httpx AsyncClient 用于测试"""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac
