"""SSEHub 单元测试"""

import pytest
from taskmesh.core.errors import NotificationError
from taskmesh.core.models import EventType, TaskEvent, TaskState
from taskmesh.gateway.services.sse_hub import ALL_TASKS, SSEHub


def _event(task_id: str) -> TaskEvent:
    return TaskEvent.build(task_id, EventType.TASK_REGISTERED, None, TaskState.READY)


class TestSSEHub:
    """发布/订阅"""

    async def test_task_and_global_subscribers_receive_event(self):
        hub = SSEHub()
        task_queue = await hub.subscribe("t1")
        other_queue = await hub.subscribe("t2")
        global_queue = await hub.subscribe(ALL_TASKS)

        event = _event("t1")
        await hub.broadcast("t1", event)

        assert task_queue.get_nowait() is event
        assert global_queue.get_nowait() is event
        assert other_queue.empty()

    async def test_unsubscribe(self):
        hub = SSEHub()
        queue = await hub.subscribe("t1")
        await hub.unsubscribe("t1", queue)

        await hub.broadcast("t1", _event("t1"))
        assert queue.empty()
        assert hub.subscriber_count == 0

    async def test_full_queue_is_dropped(self):
        hub = SSEHub(queue_maxsize=1)
        queue = await hub.subscribe("t1")

        await hub.broadcast("t1", _event("t1"))
        await hub.broadcast("t1", _event("t1"))

        assert queue.qsize() == 1
        assert hub.subscriber_count == 0

    async def test_broadcast_after_close_raises(self):
        hub = SSEHub()
        hub.close()
        with pytest.raises(NotificationError) as exc_info:
            await hub.broadcast("t1", _event("t1"))
        assert exc_info.value.code == "NOTIFICATION_FAILED"

    async def test_closed_hub_does_not_break_engine(self):
        from taskmesh.core.engine import CoordinationEngine

        hub = SSEHub()
        engine = CoordinationEngine(notifier=hub)
        hub.close()

        task = await engine.register_task("t1")

        assert task.state == TaskState.READY
        assert engine.get_system_status().side_channel_failures == {"notification": 1}
