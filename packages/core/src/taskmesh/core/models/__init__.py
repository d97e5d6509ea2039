"""TaskMesh Core Domain Models -- 公共类型导出

所有公共模型类型从此入口导入。
"""

from .enums import (
    FAILURE_STATES,
    PROPAGATABLE_STATES,
    SATISFIED_STATES,
    TERMINAL_STATES,
    VALID_TRANSITIONS,
    EventType,
    SignalOutcome,
    TaskState,
    validate_transition,
)
from .event import TaskEvent
from .payloads import (
    ForceCompletedPayload,
    PlaceholderCreatedPayload,
    StateTransitionPayload,
    TaskRegisteredPayload,
)
from .task import Task
from .views import ChainEntry, DependencyChain, SignalResult, StaleTask, SystemStatus

__all__ = [
    # 枚举
    "TaskState",
    "EventType",
    "SignalOutcome",
    # 状态机
    "VALID_TRANSITIONS",
    "TERMINAL_STATES",
    "SATISFIED_STATES",
    "FAILURE_STATES",
    "PROPAGATABLE_STATES",
    "validate_transition",
    # Task
    "Task",
    # Event
    "TaskEvent",
    # Payloads
    "PlaceholderCreatedPayload",
    "TaskRegisteredPayload",
    "StateTransitionPayload",
    "ForceCompletedPayload",
    # 查询结果
    "SignalResult",
    "ChainEntry",
    "DependencyChain",
    "StaleTask",
    "SystemStatus",
]
