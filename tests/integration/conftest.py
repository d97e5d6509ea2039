"""集成测试共享 fixture -- 走完整 lifespan 的 app"""

from collections.abc import AsyncGenerator
from pathlib import Path

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient


@pytest.fixture
def integration_db(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """集成测试环境：临时数据库 + 关闭 Logfire 与周期状态日志"""
    db_path = tmp_path / "sqlite" / "integration.db"
    monkeypatch.setenv("TASKMESH_DB_PATH", str(db_path))
    monkeypatch.setenv("LOGFIRE_SEND_TO_LOGFIRE", "false")
    monkeypatch.setenv("TASKMESH_STATUS_LOG_INTERVAL_S", "3600")
    return db_path


@pytest_asyncio.fixture
async def integration_app(integration_db: Path):
    """集成测试用 FastAPI app，state 由 lifespan 初始化"""
    from taskmesh.gateway.main import create_app, lifespan

    app = create_app()
    async with lifespan(app):
        yield app


@pytest_asyncio.fixture
async def client(integration_app) -> AsyncGenerator[AsyncClient, None]:
    async with AsyncClient(
        transport=ASGITransport(app=integration_app),
        base_url="http://test",
    ) as ac:
        yield ac
