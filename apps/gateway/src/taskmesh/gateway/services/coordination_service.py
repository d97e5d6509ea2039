"""CoordinationService -- 协调引擎的对外操作封装

将引擎操作结果整理为 HTTP 响应结构：
register / start / complete / fail / force-complete 均返回
{task_id, status, metadata}，metadata 为任务快照。
"""

from typing import Any

import structlog
from taskmesh.core.engine import CoordinationEngine
from taskmesh.core.models import ForceCompletedPayload, Task

log = structlog.get_logger()


def task_to_metadata(task: Task) -> dict[str, Any]:
    """任务快照转 JSON 兼容字典"""
    return task.model_dump(mode="json")


class CoordinationService:
    """协调业务服务"""

    def __init__(self, engine: CoordinationEngine) -> None:
        self._engine = engine

    async def register(
        self,
        task_id: str,
        dependencies: list[str],
        agent_id: str | None = None,
        payload: Any = None,
    ) -> dict[str, Any]:
        task = await self._engine.register_task(
            task_id,
            dependencies,
            agent_id=agent_id,
            payload=payload,
        )
        return {
            "task_id": task.task_id,
            "dependencies": task.dependencies,
            "status": "registered",
            "metadata": task_to_metadata(task),
        }

    async def start(
        self,
        task_id: str,
        agent_id: str,
        require_ready: bool = False,
    ) -> dict[str, Any]:
        task = await self._engine.start_task(task_id, agent_id, require_ready=require_ready)
        return {
            "task_id": task.task_id,
            "agent_id": agent_id,
            "status": "started",
            "metadata": task_to_metadata(task),
        }

    async def complete(self, task_id: str, result: Any = None) -> dict[str, Any]:
        task = await self._engine.complete_task(task_id, result)
        return {
            "task_id": task.task_id,
            "status": "completed",
            "metadata": task_to_metadata(task),
        }

    async def fail(self, task_id: str, error: Any = None) -> dict[str, Any]:
        task = await self._engine.fail_task(task_id, error)
        return {
            "task_id": task.task_id,
            "status": "failed",
            "metadata": task_to_metadata(task),
        }

    async def force_complete(
        self,
        task_id: str,
        result: Any = None,
        reason: str = "",
    ) -> dict[str, Any]:
        task = await self._engine.force_complete_task(task_id, result, reason=reason)
        return {
            "task_id": task.task_id,
            "status": "force-completed",
            "warning": ForceCompletedPayload().warning,
            "metadata": task_to_metadata(task),
        }

    def get_task(self, task_id: str) -> dict[str, Any]:
        task = self._engine.get_task_metadata(task_id)
        return {
            "task": task_to_metadata(task),
            "can_start": self._engine.can_task_start(task_id),
        }

    def get_chain(self, task_id: str) -> dict[str, Any]:
        return self._engine.get_dependency_chain(task_id).model_dump(mode="json")

    def get_status(self, stale_threshold_s: float | None = None) -> dict[str, Any]:
        return self._engine.get_system_status(stale_threshold_s).model_dump(mode="json")
