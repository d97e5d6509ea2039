"""TaskMesh Core Engine -- 内存协调引擎

TaskStore 持有任务记录，DependencyGraph 管理依赖边，
CompletionSignal 驱动下游推进，CoordinationEngine 组合三者对外提供操作。
"""

from .coordinator import CoordinationEngine
from .graph import DependencyGraph
from .signal import CompletionSignal
from .task_store import TaskStore

__all__ = [
    "CoordinationEngine",
    "CompletionSignal",
    "DependencyGraph",
    "TaskStore",
]
