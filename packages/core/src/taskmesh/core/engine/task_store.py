"""TaskStore -- 内存中的权威任务表

每个任务一把 asyncio.Lock，保证同一任务同一时刻只有一个变更在执行。
变更被接受后，在持有该任务锁的情况下依次执行持久化与通知，
两者失败都只记录日志并计数，不回滚内存状态。
"""

import asyncio
from collections import Counter
from collections.abc import Callable
from datetime import UTC, datetime

import structlog

from ..errors import DuplicateRegistrationError, TaskNotFoundError
from ..models import (
    EventType,
    PlaceholderCreatedPayload,
    Task,
    TaskEvent,
    TaskState,
)
from ..store.protocols import TaskNotifier, TaskPersister

log = structlog.get_logger()

# 变更函数：同步修改记录，返回需要发出的事件（None 表示无变化）
Mutation = Callable[[Task], TaskEvent | None]


class TaskStore:
    """任务记录 + 每任务锁"""

    def __init__(
        self,
        notifier: TaskNotifier | None = None,
        persister: TaskPersister | None = None,
    ) -> None:
        self._tasks: dict[str, Task] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._notifier = notifier
        self._persister = persister
        self.side_channel_failures: Counter[str] = Counter()

    def __len__(self) -> int:
        return len(self._tasks)

    def __contains__(self, task_id: object) -> bool:
        return task_id in self._tasks

    def peek(self, task_id: str) -> Task | None:
        """返回活动记录（只读使用，不要在锁外修改）"""
        return self._tasks.get(task_id)

    def get(self, task_id: str) -> Task:
        """返回任务快照

        Raises:
            TaskNotFoundError: 任务不存在
        """
        task = self._tasks.get(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        return task.model_copy(deep=True)

    def tasks(self) -> list[Task]:
        """所有活动记录（只读）"""
        return list(self._tasks.values())

    def insert(self, task: Task) -> None:
        """插入新记录，不产生旁路副作用

        Raises:
            DuplicateRegistrationError: task_id 已存在
        """
        if task.task_id in self._tasks:
            raise DuplicateRegistrationError(task.task_id)
        self._tasks[task.task_id] = task
        self._locks[task.task_id] = asyncio.Lock()

    async def upsert_placeholder(self, task_id: str, referenced_by: str) -> bool:
        """为前向引用的依赖创建占位记录（幂等）

        Returns:
            True 如果新建了占位记录
        """
        if task_id in self._tasks:
            return False

        now = datetime.now(UTC)
        task = Task(
            task_id=task_id,
            state=TaskState.PENDING,
            is_placeholder=True,
            created_at=now,
            updated_at=now,
        )
        self.insert(task)
        event = TaskEvent.build(
            task_id,
            EventType.TASK_PLACEHOLDER_CREATED,
            None,
            TaskState.PENDING,
            PlaceholderCreatedPayload(referenced_by=referenced_by).model_dump(),
            ts=now,
        )
        async with self._locks[task_id]:
            await self._emit(task, event)

        log.info(
            "task_placeholder_created",
            task_id=task_id,
            referenced_by=referenced_by,
        )
        return True

    async def mutate(
        self,
        task_id: str,
        fn: Mutation,
    ) -> tuple[Task, TaskEvent | None]:
        """在任务锁内应用变更

        fn 必须是同步函数，且不能等待其他任务；
        fn 抛出的异常原样传给调用方，此时记录不应被修改。

        Returns:
            (变更后的快照, 发出的事件)
        """
        lock = self._locks.get(task_id)
        if lock is None:
            raise TaskNotFoundError(task_id)

        async with lock:
            task = self._tasks[task_id]
            event = fn(task)
            if event is not None:
                task.updated_at = event.ts
                await self._emit(task, event)
            return task.model_copy(deep=True), event

    async def _emit(self, task: Task, event: TaskEvent) -> None:
        """执行持久化与通知，失败只记录不抛出"""
        if self._persister is not None:
            try:
                await self._persister.write(task, event)
            except Exception as e:
                self.side_channel_failures["persistence"] += 1
                log.error(
                    "task_persist_failed",
                    task_id=task.task_id,
                    event_type=event.type.value,
                    error_type=type(e).__name__,
                    error=str(e),
                )

        if self._notifier is not None:
            try:
                await self._notifier.broadcast(task.task_id, event)
            except Exception as e:
                self.side_channel_failures["notification"] += 1
                log.warning(
                    "task_notify_failed",
                    task_id=task.task_id,
                    event_type=event.type.value,
                    error_type=type(e).__name__,
                    error=str(e),
                )
