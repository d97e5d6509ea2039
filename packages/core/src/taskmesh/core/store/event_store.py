"""EventStore SQLite 实现

事件表 append-only：只允许插入，不允许更新或删除。
同一毫秒内生成的 ULID 不保证有序，查询统一按 rowid（写入顺序）排序。
"""

import json
from datetime import datetime

import aiosqlite

from ..models.enums import EventType, TaskState
from ..models.event import TaskEvent


class SqliteEventStore:
    """EventStore 的 SQLite 实现"""

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    async def append_event(self, event: TaskEvent) -> None:
        """追加事件（append-only）

        注意：此方法不自动提交事务，需由调用方管理事务。
        """
        await self._conn.execute(
            """
            INSERT INTO events (event_id, task_id, type, from_state, to_state, ts, payload)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                event.event_id,
                event.task_id,
                event.type.value,
                event.from_state.value if event.from_state is not None else None,
                event.to_state.value,
                event.ts.isoformat(),
                json.dumps(event.payload, ensure_ascii=False, default=str),
            ),
        )

    async def get_events_for_task(self, task_id: str) -> list[TaskEvent]:
        """查询指定任务的所有事件，按写入顺序"""
        cursor = await self._conn.execute(
            "SELECT * FROM events WHERE task_id = ? ORDER BY rowid ASC",
            (task_id,),
        )
        rows = await cursor.fetchall()
        return [self._row_to_event(row) for row in rows]

    async def get_events_after(
        self,
        task_id: str,
        after_event_id: str,
    ) -> list[TaskEvent]:
        """查询指定事件之后的增量事件（用于 SSE 断线重连）

        after_event_id 不存在时返回全部事件。
        """
        cursor = await self._conn.execute(
            """
            SELECT * FROM events
            WHERE task_id = ?
              AND rowid > COALESCE(
                  (SELECT rowid FROM events WHERE event_id = ?), 0
              )
            ORDER BY rowid ASC
            """,
            (task_id, after_event_id),
        )
        rows = await cursor.fetchall()
        return [self._row_to_event(row) for row in rows]

    @staticmethod
    def _row_to_event(row: aiosqlite.Row) -> TaskEvent:
        """将数据库行转换为 TaskEvent 模型"""
        payload = json.loads(row[6]) if row[6] else {}
        return TaskEvent(
            event_id=row[0],
            task_id=row[1],
            type=EventType(row[2]),
            from_state=TaskState(row[3]) if row[3] else None,
            to_state=TaskState(row[4]),
            ts=datetime.fromisoformat(row[5]),
            payload=payload,
        )
