"""SSE 事件流路由

GET /api/stream/task/{task_id}: 推送指定任务的事件。
  先推送 SQLite 中的历史事件，再推送实时事件；终态事件携带 final: true。
  支持 Last-Event-ID 断线重连与心跳保活。
GET /api/stream/events: 推送全部任务的实时事件（不含历史）。
"""

import asyncio
import json

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sse_starlette.sse import EventSourceResponse
from taskmesh.core.config import SSE_HEARTBEAT_INTERVAL
from taskmesh.core.models import TERMINAL_STATES, TaskEvent

from ..deps import get_engine, get_sse_hub, get_store_group
from ..services.sse_hub import ALL_TASKS

router = APIRouter()


def _event_to_sse(event: TaskEvent, is_final: bool = False) -> dict:
    """将 TaskEvent 转换为 sse-starlette 的事件字典"""
    data = event.model_dump(mode="json")
    data["final"] = is_final
    return {
        "id": event.event_id,
        "event": event.type.value,
        "data": json.dumps(data, ensure_ascii=False),
    }


def _is_terminal_event(event: TaskEvent) -> bool:
    """判断事件是否标识任务到达终态"""
    return event.to_state in TERMINAL_STATES


@router.get("/api/stream/task/{task_id}")
async def stream_task_events(
    task_id: str,
    request: Request,
    engine=Depends(get_engine),
    store_group=Depends(get_store_group),
    sse_hub=Depends(get_sse_hub),
):
    """单任务 SSE 事件流

    1. 先推送历史事件（Last-Event-ID 之后）
    2. 注册到 SSEHub 监听新事件
    3. 终态事件携带 final: true 后结束
    4. 心跳保活
    """
    if task_id not in engine.store:
        return JSONResponse(
            status_code=404,
            content={
                "error": {
                    "code": "TASK_NOT_FOUND",
                    "message": f"Task with id {task_id} does not exist",
                }
            },
        )

    last_event_id = request.headers.get("last-event-id")

    async def event_generator():
        # 先订阅，避免历史查询期间产生的事件丢失
        queue = await sse_hub.subscribe(task_id)
        try:
            if last_event_id:
                events = await store_group.event_store.get_events_after(task_id, last_event_id)
            else:
                events = await store_group.event_store.get_events_for_task(task_id)

            sent_ids = set()
            for event in events:
                is_final = _is_terminal_event(event)
                yield _event_to_sse(event, is_final=is_final)
                sent_ids.add(event.event_id)
                if is_final:
                    return

            if engine.store.peek(task_id).is_terminal:
                # 历史查询期间到达终态：补发队列中剩余的事件后结束
                while not queue.empty():
                    event = queue.get_nowait()
                    if event.event_id not in sent_ids:
                        yield _event_to_sse(event, is_final=_is_terminal_event(event))
                return

            while True:
                try:
                    event = await asyncio.wait_for(queue.get(), timeout=SSE_HEARTBEAT_INTERVAL)
                except TimeoutError:
                    yield {"comment": "heartbeat"}
                    continue

                # 跳过已通过历史推送的事件
                if event.event_id in sent_ids:
                    continue
                is_final = _is_terminal_event(event)
                yield _event_to_sse(event, is_final=is_final)
                if is_final:
                    return
        finally:
            await sse_hub.unsubscribe(task_id, queue)

    return EventSourceResponse(event_generator())


@router.get("/api/stream/events")
async def stream_all_events(sse_hub=Depends(get_sse_hub)):
    """全局 SSE 事件流 -- 所有任务的实时事件"""

    async def event_generator():
        queue = await sse_hub.subscribe(ALL_TASKS)
        try:
            while True:
                try:
                    event = await asyncio.wait_for(queue.get(), timeout=SSE_HEARTBEAT_INTERVAL)
                except TimeoutError:
                    yield {"comment": "heartbeat"}
                    continue
                yield _event_to_sse(event, is_final=_is_terminal_event(event))
        finally:
            await sse_hub.unsubscribe(ALL_TASKS, queue)

    return EventSourceResponse(event_generator())
