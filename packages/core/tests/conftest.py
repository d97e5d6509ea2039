"""packages/core 测试配置 -- 核心层 fixture"""

from collections.abc import AsyncGenerator
from pathlib import Path

import pytest_asyncio
from taskmesh.core.engine import CoordinationEngine
from taskmesh.core.models import TaskEvent
from taskmesh.core.store import StoreGroup, create_store_group


class RecordingNotifier:
    """记录所有广播事件的通知 hook"""

    def __init__(self) -> None:
        self.events: list[TaskEvent] = []

    async def broadcast(self, task_id: str, event: TaskEvent) -> None:
        self.events.append(event)

    def types_for(self, task_id: str) -> list[str]:
        return [e.type.value for e in self.events if e.task_id == task_id]

    def states_for(self, task_id: str) -> list[str]:
        return [e.to_state.value for e in self.events if e.task_id == task_id]


class FailingHook:
    """总是抛异常的 hook，用于验证旁路错误不影响状态"""

    async def broadcast(self, task_id: str, event: TaskEvent) -> None:
        raise RuntimeError("notifier down")

    async def write(self, task, event=None) -> None:
        raise RuntimeError("disk full")


@pytest_asyncio.fixture
async def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest_asyncio.fixture
async def engine(notifier: RecordingNotifier) -> AsyncGenerator[CoordinationEngine, None]:
    """不带持久化的引擎"""
    eng = CoordinationEngine(notifier=notifier)
    yield eng
    await eng.drain()


@pytest_asyncio.fixture
async def store_group(tmp_path: Path) -> AsyncGenerator[StoreGroup, None]:
    """核心层临时 StoreGroup"""
    group = await create_store_group(str(tmp_path / "sqlite" / "core_test.db"))
    yield group
    await group.conn.close()


@pytest_asyncio.fixture
async def persisted_engine(
    store_group: StoreGroup,
    notifier: RecordingNotifier,
) -> AsyncGenerator[CoordinationEngine, None]:
    """带 SQLite 持久化的引擎"""
    eng = CoordinationEngine(notifier=notifier, persister=store_group.persister)
    yield eng
    await eng.drain()


@pytest_asyncio.fixture
async def failing_hook() -> FailingHook:
    return FailingHook()
