"""SqlitePersister -- 持久化 hook 的 SQLite 实现

所有任务共享一个连接，写入通过 asyncio.Lock 串行化，
避免不同任务的事务在同一连接上交错提交或回滚。
"""

import asyncio

import aiosqlite

from ..errors import PersistenceWriteError
from ..models.event import TaskEvent
from ..models.task import Task
from .event_store import SqliteEventStore
from .task_store import SqliteTaskStore
from .transaction import save_task_and_event


class SqlitePersister:
    """将任务快照与事件写入 SQLite"""

    def __init__(
        self,
        conn: aiosqlite.Connection,
        task_store: SqliteTaskStore,
        event_store: SqliteEventStore,
    ) -> None:
        self._conn = conn
        self._task_store = task_store
        self._event_store = event_store
        self._lock = asyncio.Lock()

    async def write(self, task: Task, event: TaskEvent | None = None) -> None:
        """
        Raises:
            PersistenceWriteError: SQLite 写入失败（事务已回滚）
        """
        async with self._lock:
            try:
                await save_task_and_event(
                    self._conn,
                    self._task_store,
                    self._event_store,
                    task,
                    event,
                )
            except aiosqlite.Error as e:
                raise PersistenceWriteError(
                    f"Failed to persist task {task.task_id}: {e}",
                    task_id=task.task_id,
                ) from e
