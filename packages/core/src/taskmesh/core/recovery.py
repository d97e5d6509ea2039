"""启动恢复模块

从 tasks 表读取最近一次快照，恢复到内存协调引擎。
恢复后引擎会立即补齐停机期间错过的依赖推进。
"""

import time

import structlog

from .engine import CoordinationEngine
from .store.task_store import SqliteTaskStore

log = structlog.get_logger()


async def restore_from_store(
    engine: CoordinationEngine,
    task_store: SqliteTaskStore,
) -> int:
    """从 SQLite 恢复引擎状态

    Args:
        engine: 尚未注册任何任务的引擎
        task_store: 任务快照 store

    Returns:
        恢复的任务数
    """
    start_time = time.monotonic()

    tasks = await task_store.list_tasks()
    await log.ainfo("engine_restore_started", task_count=len(tasks))

    count = await engine.restore(tasks)

    elapsed_ms = int((time.monotonic() - start_time) * 1000)
    await log.ainfo(
        "engine_restore_completed",
        task_count=count,
        edge_count=engine.graph.edge_count,
        elapsed_ms=elapsed_ms,
    )
    return count
