"""Event Payload 子类型

所有通知事件的结构化 payload 定义。
"""

from pydantic import BaseModel, Field


class PlaceholderCreatedPayload(BaseModel):
    """TASK_PLACEHOLDER_CREATED 事件 payload"""

    referenced_by: str = Field(description="引用该占位任务的任务 ID")


class TaskRegisteredPayload(BaseModel):
    """TASK_REGISTERED 事件 payload"""

    dependencies: list[str]
    agent_id: str | None = None
    replaced_placeholder: bool = Field(default=False)


class StateTransitionPayload(BaseModel):
    """STATE_TRANSITION 事件 payload"""

    reason: str = Field(default="")
    agent_id: str | None = None
    dependency_id: str | None = Field(default=None, description="触发本次流转的依赖")


class ForceCompletedPayload(BaseModel):
    """TASK_FORCE_COMPLETED 事件 payload"""

    reason: str = Field(default="")
    warning: str = Field(default="Task was manually force-completed")
