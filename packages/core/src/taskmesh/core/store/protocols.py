"""旁路 hook 接口定义

引擎只依赖两个外部协作者：广播通知 hook 与持久化 hook。
使用 Python Protocol 实现结构化子类型（duck typing）。
"""

from typing import Protocol

from ..models.event import TaskEvent
from ..models.task import Task


class TaskNotifier(Protocol):
    """广播 hook：fire-and-forget 推送状态变更事件"""

    async def broadcast(self, task_id: str, event: TaskEvent) -> None:
        """向订阅者推送事件"""
        ...


class TaskPersister(Protocol):
    """持久化 hook：best-effort 写入任务快照"""

    async def write(self, task: Task, event: TaskEvent | None = None) -> None:
        """写入最新快照及对应事件，失败时抛出 PersistenceWriteError"""
        ...
