"""FastAPI 应用主文件

app 创建 + lifespan 管理：
启动时打开 SQLite、创建 SSEHub 与协调引擎、从快照恢复、启动周期性状态日志；
关闭时停止状态日志、等待后台传播结束、关闭连接。
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from taskmesh.core.config import EngineConfig, get_db_path, load_engine_config
from taskmesh.core.engine import CoordinationEngine
from taskmesh.core.recovery import restore_from_store
from taskmesh.core.store import StoreGroup, create_store_group

from .middleware.logging_config import setup_logfire, setup_logging
from .middleware.logging_mw import LoggingMiddleware
from .middleware.trace_mw import TraceMiddleware
from .routes import health, status, stream, tasks
from .services.sse_hub import SSEHub
from .services.status_reporter import StatusReporter

log = structlog.get_logger()


def build_engine(
    store_group: StoreGroup,
    sse_hub: SSEHub,
    config: EngineConfig,
) -> CoordinationEngine:
    """组装协调引擎：SSEHub 作为通知 hook，SqlitePersister 作为持久化 hook"""
    persister = store_group.persister if config.persistence_enabled else None
    return CoordinationEngine(notifier=sse_hub, persister=persister, config=config)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """应用生命周期管理"""
    config = load_engine_config()
    store_group = await create_store_group(get_db_path())
    sse_hub = SSEHub()
    engine = build_engine(store_group, sse_hub, config)

    app.state.store_group = store_group
    app.state.sse_hub = sse_hub
    app.state.engine = engine

    restored = await restore_from_store(engine, store_group.task_store)

    reporter = StatusReporter(engine, config.status_log_interval_s)
    reporter.start()
    app.state.status_reporter = reporter

    await log.ainfo(
        "gateway_started",
        restored_tasks=restored,
        persistence=config.persistence_enabled,
        stale_threshold_s=config.stale_threshold_s,
    )

    yield

    await reporter.stop()
    await engine.drain()
    sse_hub.close()
    await store_group.conn.close()
    await log.ainfo("gateway_stopped")


def create_app() -> FastAPI:
    """创建 FastAPI 应用实例"""
    app = FastAPI(
        title="TaskMesh Gateway",
        version="0.1.0",
        description="TaskMesh 任务依赖协调 API",
        lifespan=lifespan,
    )

    # 注册中间件（顺序：先 Trace 后 Logging）
    app.add_middleware(TraceMiddleware)
    app.add_middleware(LoggingMiddleware)

    setup_logging()
    setup_logfire()

    app.include_router(tasks.router, tags=["tasks"])
    app.include_router(status.router, tags=["status"])
    app.include_router(stream.router, tags=["stream"])
    app.include_router(health.router, tags=["health"])

    return app


# 默认 app 实例（uvicorn 入口）
app = create_app()
