"""查询结果模型 -- 完成信号结果、依赖链、系统状态"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from .enums import SignalOutcome, TaskState


class SignalResult(BaseModel):
    """完成信号的解析值

    COMPLETED / FORCE_COMPLETED 对应 SUCCEEDED，FAILED 对应 FAILED。
    """

    outcome: SignalOutcome
    result: Any = None
    error: Any = None

    @property
    def succeeded(self) -> bool:
        return self.outcome == SignalOutcome.SUCCEEDED


class ChainEntry(BaseModel):
    """依赖链中的一个节点"""

    task_id: str
    state: TaskState
    depth: int = Field(description="与查询任务的距离（1 为直接依赖/下游）")
    is_placeholder: bool = False


class DependencyChain(BaseModel):
    """依赖链查询结果

    ancestors 按拓扑序排列（最底层依赖在前），
    descendants 按逆拓扑序排列（最远的下游在前）。
    """

    task_id: str
    ancestors: list[ChainEntry] = Field(default_factory=list)
    descendants: list[ChainEntry] = Field(default_factory=list)
    total_depth: int = 0


class StaleTask(BaseModel):
    """长时间停留在 BLOCKED / BLOCKED_BY_FAILURE 的任务"""

    task_id: str
    state: TaskState
    agent_id: str | None = None
    blocked_by: str | None = None
    since: datetime
    age_s: float


class SystemStatus(BaseModel):
    """系统状态汇总"""

    total_tasks: int
    counts_by_state: dict[str, int]
    stale_tasks: list[StaleTask] = Field(default_factory=list)
    active_tasks: int = Field(default=0, description="RUNNING 任务数")
    placeholders: list[str] = Field(default_factory=list, description="尚未注册的占位任务")
    edge_count: int = Field(default=0, description="依赖边总数")
    side_channel_failures: dict[str, int] = Field(default_factory=dict)
    stale_threshold_s: float
    timestamp: datetime
