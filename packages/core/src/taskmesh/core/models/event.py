"""Event Domain Model -- 状态变更通知

每次被接受的变更都会产生一条 TaskEvent，
推送给广播 hook，并随任务快照一起写入持久化 hook。
event_id 使用 ULID 格式，时间有序。
"""

from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, Field
from ulid import ULID

from .enums import EventType, TaskState


class TaskEvent(BaseModel):
    """TaskEvent 数据模型

    from_state 为 None 表示记录刚被创建。
    """

    event_id: str = Field(description="唯一标识，ULID 格式，时间有序")
    task_id: str = Field(description="关联的 Task ID")
    type: EventType = Field(description="事件类型")
    from_state: TaskState | None = Field(default=None, description="变更前状态")
    to_state: TaskState = Field(description="变更后状态")
    ts: datetime = Field(description="事件时间戳")
    payload: dict[str, Any] = Field(default_factory=dict, description="结构化 payload")

    @classmethod
    def build(
        cls,
        task_id: str,
        type: EventType,
        from_state: TaskState | None,
        to_state: TaskState,
        payload: dict[str, Any] | None = None,
        ts: datetime | None = None,
    ) -> "TaskEvent":
        """生成带新 ULID 的事件"""
        return cls(
            event_id=str(ULID()),
            task_id=task_id,
            type=type,
            from_state=from_state,
            to_state=to_state,
            ts=ts or datetime.now(UTC),
            payload=payload or {},
        )
