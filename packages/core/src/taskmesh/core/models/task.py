"""Task Domain Model

内存中的权威任务记录。dependencies 在注册时确定且不可变，
dependents 是反向边，由 DependencyGraph 维护，仅在快照时填充。
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from .enums import TERMINAL_STATES, TaskState


class Task(BaseModel):
    """Task 数据模型

    占位任务（is_placeholder=True）由前向依赖引用自动创建，
    没有依赖和数据，等待真正的注册来补全。
    """

    task_id: str = Field(description="调用方提供的唯一标识")
    state: TaskState = Field(default=TaskState.PENDING, description="当前状态")
    dependencies: list[str] = Field(default_factory=list, description="依赖的任务 ID")
    dependents: list[str] = Field(default_factory=list, description="依赖本任务的任务 ID")
    agent_id: str | None = Field(default=None, description="执行该任务的 agent")
    payload: Any = Field(default_factory=dict, description="调用方数据，引擎不解释")
    result: Any = Field(default=None, description="成功结果")
    error: Any = Field(default=None, description="失败信息")
    is_placeholder: bool = Field(default=False, description="是否为前向引用占位")
    blocked_by: str | None = Field(
        default=None,
        description="导致 BLOCKED_BY_FAILURE 的失败任务 ID",
    )
    created_at: datetime = Field(description="记录创建时间")
    updated_at: datetime = Field(description="最近一次变更时间")
    registered_at: datetime | None = Field(default=None, description="正式注册时间")
    start_requested_at: datetime | None = Field(default=None, description="首次请求启动时间")
    started_at: datetime | None = Field(default=None, description="进入 RUNNING 的时间")
    completed_at: datetime | None = Field(default=None, description="进入终态的时间")

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES
