"""快照+事件原子事务封装

在同一 SQLite 事务内原子提交任务快照和对应的事件，
避免快照与事件日志不一致。
"""

import aiosqlite

from ..models.event import TaskEvent
from ..models.task import Task
from .event_store import SqliteEventStore
from .task_store import SqliteTaskStore


async def save_task_and_event(
    conn: aiosqlite.Connection,
    task_store: SqliteTaskStore,
    event_store: SqliteEventStore,
    task: Task,
    event: TaskEvent | None = None,
) -> None:
    """在同一事务内原子写入任务快照和事件

    Args:
        conn: 数据库连接（需在同一连接上操作以保证事务性）
        task_store: TaskStore 实例
        event_store: EventStore 实例
        task: 最新任务快照
        event: 本次变更对应的事件，None 表示只写快照

    Raises:
        aiosqlite.Error: 如果事务提交失败，自动回滚
    """
    try:
        # 先写快照，满足 events.task_id 外键
        await task_store.save_task(task)

        if event is not None:
            await event_store.append_event(event)

        # 原子提交
        await conn.commit()
    except Exception:
        await conn.rollback()
        raise
