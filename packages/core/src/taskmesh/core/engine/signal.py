"""CompletionSignal -- 每个任务一次性的完成信号

显式的 subscribe / resolve 语义：
- resolve 最多生效一次，订阅者各被调用一次
- 对已解析的信号订阅，回调立即执行
- wait() 供进程内调用方等待结果
"""

import asyncio
from collections.abc import Callable
from typing import Any

from ..models import SignalOutcome, SignalResult

Subscriber = Callable[[SignalResult], None]


def succeeded(result: Any = None) -> SignalResult:
    return SignalResult(outcome=SignalOutcome.SUCCEEDED, result=result)


def failed(error: Any = None) -> SignalResult:
    return SignalResult(outcome=SignalOutcome.FAILED, error=error)


class CompletionSignal:
    """任务完成信号"""

    def __init__(self, task_id: str) -> None:
        self.task_id = task_id
        self._event = asyncio.Event()
        self._result: SignalResult | None = None
        self._subscribers: list[Subscriber] = []

    @property
    def resolved(self) -> bool:
        return self._result is not None

    @property
    def result(self) -> SignalResult | None:
        return self._result

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self, callback: Subscriber) -> None:
        if self._result is not None:
            callback(self._result)
            return
        self._subscribers.append(callback)

    def resolve(self, result: SignalResult) -> bool:
        """解析信号

        Returns:
            False 如果信号此前已被解析（本次调用无效）
        """
        if self._result is not None:
            return False
        self._result = result
        self._event.set()

        subscribers, self._subscribers = self._subscribers, []
        for callback in subscribers:
            callback(result)
        return True

    async def wait(self) -> SignalResult:
        await self._event.wait()
        return self._result
