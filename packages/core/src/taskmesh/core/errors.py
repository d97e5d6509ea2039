"""协调引擎异常体系

结构性错误（NotFound / Duplicate / Cyclic / InvalidTransition）同步抛给调用方，
旁路错误（持久化 / 通知）只记录日志并计数，不影响内存状态。
"""


class CoordinationError(Exception):
    """协调引擎基础异常"""

    code = "COORDINATION_ERROR"

    def __init__(self, message: str, task_id: str | None = None) -> None:
        """
        Args:
            message: 错误描述
            task_id: 关联的任务 ID
        """
        super().__init__(message)
        self.task_id = task_id


class TaskNotFoundError(CoordinationError):
    """任务不存在"""

    code = "TASK_NOT_FOUND"

    def __init__(self, task_id: str) -> None:
        super().__init__(f"Task with id {task_id} does not exist", task_id=task_id)


class DuplicateRegistrationError(CoordinationError):
    """任务已正式注册过（占位任务除外）"""

    code = "DUPLICATE_REGISTRATION"

    def __init__(self, task_id: str) -> None:
        super().__init__(f"Task {task_id} is already registered", task_id=task_id)


class CyclicDependencyError(CoordinationError):
    """注册会形成循环依赖，整个注册被拒绝"""

    code = "CYCLIC_DEPENDENCY"

    def __init__(self, task_id: str, cycle: list[str]) -> None:
        """
        Args:
            task_id: 正在注册的任务
            cycle: 闭合的环路径，首尾均为 task_id
        """
        super().__init__(
            f"Circular dependency detected for task {task_id}: {' -> '.join(cycle)}",
            task_id=task_id,
        )
        self.cycle = cycle


class InvalidStateTransitionError(CoordinationError):
    """非法状态流转"""

    code = "INVALID_STATE_TRANSITION"

    def __init__(
        self,
        task_id: str,
        from_state: str,
        to_state: str,
        detail: str = "",
    ) -> None:
        message = f"Task {task_id} cannot transition from {from_state} to {to_state}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message, task_id=task_id)
        self.from_state = from_state
        self.to_state = to_state


class DependencyNotSatisfiedError(CoordinationError):
    """调用方要求同步启动，但依赖尚未全部完成"""

    code = "DEPENDENCY_NOT_SATISFIED"

    def __init__(self, task_id: str, pending: list[str]) -> None:
        super().__init__(
            f"Task {task_id} is blocked by dependencies: {', '.join(pending)}",
            task_id=task_id,
        )
        self.pending = pending


class PersistenceWriteError(CoordinationError):
    """持久化写入失败（非致命）"""

    code = "PERSISTENCE_WRITE_FAILED"


class NotificationError(CoordinationError):
    """通知广播失败（非致命）"""

    code = "NOTIFICATION_FAILED"
