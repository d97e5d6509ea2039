"""SQLite 持久化测试

测试内容：
1. 快照 upsert 与读取
2. 事件 append-only 与增量查询
3. 快照 + 事件原子事务，失败回滚
4. 引擎通过 SqlitePersister 写入，重启后恢复
5. WAL 模式
"""

from datetime import UTC, datetime

import aiosqlite
import pytest
from taskmesh.core.engine import CoordinationEngine
from taskmesh.core.errors import PersistenceWriteError
from taskmesh.core.models import EventType, Task, TaskEvent, TaskState
from taskmesh.core.recovery import restore_from_store
from taskmesh.core.store import create_store_group
from taskmesh.core.store.event_store import SqliteEventStore
from taskmesh.core.store.sqlite_init import verify_wal_mode
from taskmesh.core.store.task_store import SqliteTaskStore
from taskmesh.core.store.transaction import save_task_and_event


def _task(task_id: str, **kwargs) -> Task:
    now = datetime.now(UTC)
    return Task(task_id=task_id, created_at=now, updated_at=now, **kwargs)


class TestTaskSnapshots:
    """tasks 表"""

    async def test_save_and_get(self, db_conn):
        store = SqliteTaskStore(db_conn)
        task = _task(
            "t1",
            state=TaskState.BLOCKED,
            dependencies=["a", "b"],
            agent_id="agent-1",
            payload={"prompt": "写一段代码"},
        )
        await store.save_task(task)
        await db_conn.commit()

        loaded = await store.get_task("t1")
        assert loaded == task

    async def test_save_is_upsert(self, db_conn):
        store = SqliteTaskStore(db_conn)
        task = _task("t1")
        await store.save_task(task)

        task.state = TaskState.FAILED
        task.error = {"reason": "timeout"}
        await store.save_task(task)
        await db_conn.commit()

        loaded = await store.get_task("t1")
        assert loaded.state == TaskState.FAILED
        assert loaded.error == {"reason": "timeout"}
        assert len(await store.list_tasks()) == 1

    async def test_list_tasks_by_state(self, db_conn):
        store = SqliteTaskStore(db_conn)
        await store.save_task(_task("t1", state=TaskState.READY))
        await store.save_task(_task("t2", state=TaskState.RUNNING))
        await store.save_task(_task("t3", state=TaskState.READY))
        await db_conn.commit()

        ready = await store.list_tasks(state="READY")
        assert [t.task_id for t in ready] == ["t1", "t3"]

    async def test_get_missing_returns_none(self, db_conn):
        assert await SqliteTaskStore(db_conn).get_task("missing") is None


class TestEvents:
    """events 表"""

    async def test_events_ordered_and_incremental(self, db_conn):
        task_store = SqliteTaskStore(db_conn)
        event_store = SqliteEventStore(db_conn)
        task = _task("t1")
        events = [
            TaskEvent.build("t1", EventType.TASK_REGISTERED, None, TaskState.READY),
            TaskEvent.build("t1", EventType.STATE_TRANSITION, TaskState.READY, TaskState.RUNNING),
            TaskEvent.build("t1", EventType.STATE_TRANSITION, TaskState.RUNNING, TaskState.COMPLETED),
        ]
        for event in events:
            await save_task_and_event(db_conn, task_store, event_store, task, event)

        loaded = await event_store.get_events_for_task("t1")
        assert [e.event_id for e in loaded] == [e.event_id for e in events]
        assert loaded[0].from_state is None

        after = await event_store.get_events_after("t1", events[0].event_id)
        assert [e.event_id for e in after] == [e.event_id for e in events[1:]]


class TestTransaction:
    """快照 + 事件原子事务"""

    async def test_rollback_on_failure(self, db_conn):
        task_store = SqliteTaskStore(db_conn)
        event_store = SqliteEventStore(db_conn)
        task = _task("t1")
        event = TaskEvent.build("t1", EventType.TASK_REGISTERED, None, TaskState.READY)
        await save_task_and_event(db_conn, task_store, event_store, task, event)

        # 重复 event_id 违反主键，整个事务回滚
        task.state = TaskState.RUNNING
        with pytest.raises(aiosqlite.IntegrityError):
            await save_task_and_event(db_conn, task_store, event_store, task, event)

        loaded = await task_store.get_task("t1")
        assert loaded.state == TaskState.READY
        assert len(await event_store.get_events_for_task("t1")) == 1

    async def test_persister_wraps_sqlite_errors(self, store_group):
        task = _task("t1")
        event = TaskEvent.build("t1", EventType.TASK_REGISTERED, None, TaskState.READY)
        await store_group.persister.write(task, event)

        with pytest.raises(PersistenceWriteError) as exc_info:
            await store_group.persister.write(task, event)
        assert exc_info.value.task_id == "t1"
        assert exc_info.value.code == "PERSISTENCE_WRITE_FAILED"


class TestEnginePersistence:
    """引擎写入 + 重启恢复"""

    async def test_every_accepted_mutation_is_persisted(self, persisted_engine, store_group):
        await persisted_engine.register_task("b", ["a"])
        await persisted_engine.register_task("a")
        await persisted_engine.start_task("a", agent_id="w")
        await persisted_engine.complete_task("a", {"ok": True})
        await persisted_engine.drain()

        a_events = await store_group.event_store.get_events_for_task("a")
        assert [e.type.value for e in a_events] == [
            "TASK_PLACEHOLDER_CREATED",
            "TASK_REGISTERED",
            "STATE_TRANSITION",
            "STATE_TRANSITION",
        ]
        saved_b = await store_group.task_store.get_task("b")
        assert saved_b.state == TaskState.READY
        saved_a = await store_group.task_store.get_task("a")
        assert saved_a.result == {"ok": True}
        assert saved_a.is_placeholder is False

    async def test_restart_restores_engine(self, tmp_path, notifier):
        db_path = str(tmp_path / "sqlite" / "restart.db")

        group1 = await create_store_group(db_path)
        engine1 = CoordinationEngine(notifier=notifier, persister=group1.persister)
        await engine1.register_task("a")
        await engine1.register_task("b", ["a"])
        await engine1.start_task("b", agent_id="agent-b")
        await engine1.start_task("a", agent_id="agent-a")
        await engine1.drain()
        await group1.conn.close()

        group2 = await create_store_group(db_path)
        try:
            engine2 = CoordinationEngine(persister=group2.persister)
            count = await restore_from_store(engine2, group2.task_store)
            assert count == 2
            assert engine2.get_task_metadata("b").state == TaskState.BLOCKED
            assert engine2.get_task_metadata("a").dependents == ["b"]

            await engine2.complete_task("a")
            await engine2.drain()

            assert engine2.get_task_metadata("b").state == TaskState.RUNNING
            saved = await group2.task_store.get_task("b")
            assert saved.state == TaskState.RUNNING
        finally:
            await group2.conn.close()

    async def test_persistence_failure_does_not_block_engine(self, failing_hook):
        engine = CoordinationEngine(persister=failing_hook)
        await engine.register_task("a")
        await engine.start_task("a", agent_id="w")

        assert engine.get_task_metadata("a").state == TaskState.RUNNING
        assert engine.get_system_status().side_channel_failures == {"persistence": 2}


class TestWal:
    async def test_wal_mode_enabled(self, db_conn):
        assert await verify_wal_mode(db_conn) is True
