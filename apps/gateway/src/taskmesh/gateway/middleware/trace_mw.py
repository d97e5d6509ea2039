"""TraceMiddleware -- 任务级追踪

/api/tasks/{task_id}/... 与 /api/stream/task/{task_id} 请求绑定 trace_id，
同一任务的注册、启动、完成日志可以按 trace_id 串联。
"""

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

# 路径中紧跟 task_id 的段
_TASK_SEGMENTS = ("tasks", "task")


def extract_task_id(path: str) -> str | None:
    """从请求路径中提取 task_id，没有则返回 None"""
    parts = [p for p in path.split("/") if p]
    for i, part in enumerate(parts[:-1]):
        if part in _TASK_SEGMENTS:
            return parts[i + 1]
    return None


class TraceMiddleware(BaseHTTPMiddleware):
    """任务级追踪中间件 -- 为任务操作绑定 trace_id"""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        task_id = extract_task_id(request.url.path)
        if task_id:
            structlog.contextvars.bind_contextvars(
                task_id=task_id,
                trace_id=f"trace-{task_id}",
            )

        return await call_next(request)
