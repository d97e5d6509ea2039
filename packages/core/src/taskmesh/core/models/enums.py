"""枚举定义 -- 任务状态机与事件类型

包含 TaskState 状态机、EventType、SignalOutcome 枚举，
以及 VALID_TRANSITIONS 合法流转映射、TERMINAL_STATES 终态集合。
"""

from enum import StrEnum


class TaskState(StrEnum):
    """Task 状态机"""

    # 未启动
    PENDING = "PENDING"
    BLOCKED = "BLOCKED"
    READY = "READY"

    # 执行中
    RUNNING = "RUNNING"

    # 终态
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    FORCE_COMPLETED = "FORCE_COMPLETED"

    # 依赖失败导致的死锁态，只能通过 force-complete 离开
    BLOCKED_BY_FAILURE = "BLOCKED_BY_FAILURE"


# 合法状态流转
VALID_TRANSITIONS: dict[TaskState, set[TaskState]] = {
    TaskState.PENDING: {
        TaskState.READY,
        TaskState.BLOCKED,
        TaskState.RUNNING,
        TaskState.BLOCKED_BY_FAILURE,
        TaskState.FORCE_COMPLETED,
    },
    TaskState.READY: {
        TaskState.RUNNING,
        TaskState.BLOCKED_BY_FAILURE,
        TaskState.FORCE_COMPLETED,
    },
    TaskState.BLOCKED: {
        TaskState.RUNNING,
        TaskState.BLOCKED_BY_FAILURE,
        TaskState.FORCE_COMPLETED,
    },
    TaskState.RUNNING: {
        TaskState.COMPLETED,
        TaskState.FAILED,
        TaskState.FORCE_COMPLETED,
    },
    TaskState.BLOCKED_BY_FAILURE: {TaskState.FORCE_COMPLETED},
    # 终态不可再流转
    TaskState.COMPLETED: set(),
    TaskState.FAILED: set(),
    TaskState.FORCE_COMPLETED: set(),
}

TERMINAL_STATES: set[TaskState] = {
    TaskState.COMPLETED,
    TaskState.FAILED,
    TaskState.FORCE_COMPLETED,
}

# 视为依赖已满足的状态
SATISFIED_STATES: set[TaskState] = {
    TaskState.COMPLETED,
    TaskState.FORCE_COMPLETED,
}

# 依赖处于这些状态时，下游任务会被标记为 BLOCKED_BY_FAILURE
FAILURE_STATES: set[TaskState] = {
    TaskState.FAILED,
    TaskState.BLOCKED_BY_FAILURE,
}

# 依赖失败时会被连带阻塞的状态
PROPAGATABLE_STATES: set[TaskState] = {
    TaskState.PENDING,
    TaskState.BLOCKED,
    TaskState.READY,
}


class EventType(StrEnum):
    """通知事件类型"""

    TASK_PLACEHOLDER_CREATED = "TASK_PLACEHOLDER_CREATED"
    TASK_REGISTERED = "TASK_REGISTERED"
    STATE_TRANSITION = "STATE_TRANSITION"
    TASK_FORCE_COMPLETED = "TASK_FORCE_COMPLETED"


class SignalOutcome(StrEnum):
    """完成信号的结果类型"""

    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"


def validate_transition(from_state: TaskState, to_state: TaskState) -> bool:
    """验证状态流转是否合法

    Args:
        from_state: 当前状态
        to_state: 目标状态

    Returns:
        True 如果流转合法，否则 False
    """
    allowed = VALID_TRANSITIONS.get(from_state, set())
    return to_state in allowed
