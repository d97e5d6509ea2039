"""TaskStore SQLite 实现

tasks 表保存每个任务的最新快照，内存引擎是权威来源，
此处仅提供数据库操作；启动时用于恢复引擎状态。
"""

import json
from datetime import datetime

import aiosqlite

from ..models.task import Task

_COLUMNS = (
    "task_id, state, dependencies, agent_id, payload, result, error, "
    "is_placeholder, blocked_by, created_at, updated_at, registered_at, "
    "start_requested_at, started_at, completed_at"
)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _parse(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


class SqliteTaskStore:
    """任务快照的 SQLite 实现"""

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    async def save_task(self, task: Task) -> None:
        """写入或覆盖任务快照

        注意：此方法不自动提交事务，需由调用方管理事务。
        """
        await self._conn.execute(
            f"""
            INSERT INTO tasks ({_COLUMNS})
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(task_id) DO UPDATE SET
                state = excluded.state,
                dependencies = excluded.dependencies,
                agent_id = excluded.agent_id,
                payload = excluded.payload,
                result = excluded.result,
                error = excluded.error,
                is_placeholder = excluded.is_placeholder,
                blocked_by = excluded.blocked_by,
                updated_at = excluded.updated_at,
                registered_at = excluded.registered_at,
                start_requested_at = excluded.start_requested_at,
                started_at = excluded.started_at,
                completed_at = excluded.completed_at
            """,
            (
                task.task_id,
                task.state.value,
                json.dumps(task.dependencies, ensure_ascii=False),
                task.agent_id,
                json.dumps(task.payload, ensure_ascii=False, default=str),
                json.dumps(task.result, ensure_ascii=False, default=str),
                json.dumps(task.error, ensure_ascii=False, default=str),
                int(task.is_placeholder),
                task.blocked_by,
                task.created_at.isoformat(),
                task.updated_at.isoformat(),
                _iso(task.registered_at),
                _iso(task.start_requested_at),
                _iso(task.started_at),
                _iso(task.completed_at),
            ),
        )

    async def get_task(self, task_id: str) -> Task | None:
        """根据 task_id 查询任务快照"""
        cursor = await self._conn.execute(
            f"SELECT {_COLUMNS} FROM tasks WHERE task_id = ?",
            (task_id,),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return self._row_to_task(row)

    async def list_tasks(self, state: str | None = None) -> list[Task]:
        """查询任务列表，支持按状态筛选，按 created_at 正序"""
        if state:
            cursor = await self._conn.execute(
                f"SELECT {_COLUMNS} FROM tasks WHERE state = ? ORDER BY created_at ASC",
                (state,),
            )
        else:
            cursor = await self._conn.execute(
                f"SELECT {_COLUMNS} FROM tasks ORDER BY created_at ASC"
            )
        rows = await cursor.fetchall()
        return [self._row_to_task(row) for row in rows]

    @staticmethod
    def _row_to_task(row: aiosqlite.Row) -> Task:
        """将数据库行转换为 Task 模型"""
        return Task(
            task_id=row[0],
            state=row[1],
            dependencies=json.loads(row[2]) if row[2] else [],
            agent_id=row[3],
            payload=json.loads(row[4]) if row[4] else {},
            result=json.loads(row[5]) if row[5] else None,
            error=json.loads(row[6]) if row[6] else None,
            is_placeholder=bool(row[7]),
            blocked_by=row[8],
            created_at=datetime.fromisoformat(row[9]),
            updated_at=datetime.fromisoformat(row[10]),
            registered_at=_parse(row[11]),
            start_requested_at=_parse(row[12]),
            started_at=_parse(row[13]),
            completed_at=_parse(row[14]),
        )
