"""SQLite 数据库初始化

PRAGMA 配置 + 两张表 DDL + 索引创建。
使用 aiosqlite 异步操作。
"""

import aiosqlite

# tasks 表 DDL（任务快照，按 task_id upsert）
_TASKS_DDL = """
CREATE TABLE IF NOT EXISTS tasks (
    task_id            TEXT PRIMARY KEY,
    state              TEXT NOT NULL DEFAULT 'PENDING',
    dependencies       TEXT NOT NULL DEFAULT '[]',
    agent_id           TEXT,
    payload            TEXT NOT NULL DEFAULT '{}',
    result             TEXT,
    error              TEXT,
    is_placeholder     INTEGER NOT NULL DEFAULT 0,
    blocked_by         TEXT,
    created_at         TEXT NOT NULL,
    updated_at         TEXT NOT NULL,
    registered_at      TEXT,
    start_requested_at TEXT,
    started_at         TEXT,
    completed_at       TEXT
);
"""

_TASKS_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_tasks_state ON tasks(state);",
    "CREATE INDEX IF NOT EXISTS idx_tasks_created_at ON tasks(created_at);",
]

# events 表 DDL（append-only 状态变更日志）
_EVENTS_DDL = """
CREATE TABLE IF NOT EXISTS events (
    event_id    TEXT PRIMARY KEY,
    task_id     TEXT NOT NULL,
    type        TEXT NOT NULL,
    from_state  TEXT,
    to_state    TEXT NOT NULL,
    ts          TEXT NOT NULL,
    payload     TEXT NOT NULL DEFAULT '{}',

    FOREIGN KEY (task_id) REFERENCES tasks(task_id)
);
"""

_EVENTS_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_events_task_id ON events(task_id, event_id);",
]


async def init_db(conn: aiosqlite.Connection) -> None:
    """初始化数据库：设置 PRAGMA + 创建表 + 创建索引

    Args:
        conn: aiosqlite 数据库连接
    """
    # 设置 PRAGMA
    await conn.execute("PRAGMA journal_mode = WAL;")
    await conn.execute("PRAGMA foreign_keys = ON;")
    await conn.execute("PRAGMA busy_timeout = 5000;")

    # 创建表
    await conn.execute(_TASKS_DDL)
    await conn.execute(_EVENTS_DDL)

    # 创建索引
    for idx_sql in _TASKS_INDEXES + _EVENTS_INDEXES:
        await conn.execute(idx_sql)

    await conn.commit()


async def verify_wal_mode(conn: aiosqlite.Connection) -> bool:
    """验证 WAL 模式是否生效

    Returns:
        True 如果 WAL 模式已启用
    """
    cursor = await conn.execute("PRAGMA journal_mode;")
    row = await cursor.fetchone()
    return row is not None and row[0].lower() == "wal"
