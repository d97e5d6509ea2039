"""SSEHub -- 内存中事件广播器

作为协调引擎的通知 hook：每个订阅者持有一个 asyncio.Queue，
可以订阅单个任务，也可以通过 ALL_TASKS 订阅全部任务的事件。
"""

import asyncio
from collections import defaultdict

from taskmesh.core.errors import NotificationError
from taskmesh.core.models import TaskEvent

# 订阅全部任务事件的 key
ALL_TASKS = "*"


class SSEHub:
    """SSE 事件广播器 -- 基于 asyncio.Queue 的发布/订阅模式"""

    def __init__(self, queue_maxsize: int = 100) -> None:
        # task_id -> set of asyncio.Queue
        self._subscribers: dict[str, set[asyncio.Queue]] = defaultdict(set)
        self._queue_maxsize = queue_maxsize
        self._closed = False

    @property
    def subscriber_count(self) -> int:
        return sum(len(queues) for queues in self._subscribers.values())

    async def subscribe(self, task_id: str = ALL_TASKS) -> asyncio.Queue:
        """订阅指定任务的事件流

        Args:
            task_id: 要订阅的任务 ID，ALL_TASKS 表示全部任务

        Returns:
            asyncio.Queue 实例，新事件会被推送到此队列
        """
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._queue_maxsize)
        self._subscribers[task_id].add(queue)
        return queue

    async def unsubscribe(self, task_id: str, queue: asyncio.Queue) -> None:
        self._subscribers[task_id].discard(queue)
        if not self._subscribers[task_id]:
            del self._subscribers[task_id]

    async def broadcast(self, task_id: str, event: TaskEvent) -> None:
        """向任务订阅者与全局订阅者广播事件

        消费过慢（队列已满）的订阅者会被移除。

        Raises:
            NotificationError: hub 已关闭
        """
        if self._closed:
            raise NotificationError("SSE hub is closed", task_id=task_id)

        for key in (task_id, ALL_TASKS):
            dead_queues = []
            for queue in self._subscribers.get(key, set()):
                try:
                    queue.put_nowait(event)
                except asyncio.QueueFull:
                    dead_queues.append(queue)

            # 清理已满的队列
            for q in dead_queues:
                self._subscribers[key].discard(q)
            if key in self._subscribers and not self._subscribers[key]:
                del self._subscribers[key]

    def close(self) -> None:
        """关闭 hub，之后的广播都会失败"""
        self._closed = True
        self._subscribers.clear()
