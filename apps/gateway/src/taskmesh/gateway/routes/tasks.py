"""任务协调路由

POST /api/tasks: 注册任务（201）
POST /api/tasks/{task_id}/start: 请求启动（依赖未满足时进入 BLOCKED）
POST /api/tasks/{task_id}/complete: RUNNING -> COMPLETED
POST /api/tasks/{task_id}/fail: RUNNING -> FAILED
POST /api/tasks/{task_id}/force-complete: 人工强制完成
GET /api/tasks/{task_id}: 任务快照 + can_start
GET /api/tasks/{task_id}/chain: 完整依赖链

错误统一返回 {"error": {"code", "message"}}：
TASK_NOT_FOUND -> 404，其余协调错误 -> 409。
"""

from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from starlette.responses import JSONResponse
from taskmesh.core.errors import CoordinationError, TaskNotFoundError

from ..deps import get_engine
from ..services.coordination_service import CoordinationService

router = APIRouter()


class RegisterRequest(BaseModel):
    """注册请求体"""

    task_id: str = Field(min_length=1, description="调用方提供的任务 ID")
    dependencies: list[str] = Field(default_factory=list, description="依赖的任务 ID")
    agent_id: str | None = Field(default=None, description="注册方 agent")
    payload: Any = Field(default_factory=dict, description="任务附加数据，原样保存")


class StartRequest(BaseModel):
    """启动请求体"""

    agent_id: str = Field(min_length=1, description="执行任务的 agent")
    require_ready: bool = Field(
        default=False,
        description="为 true 时依赖未满足直接返回 409，不进入 BLOCKED",
    )


class CompleteRequest(BaseModel):
    result: Any = None


class FailRequest(BaseModel):
    error: Any = Field(default=None, description="失败信息")


class ForceCompleteRequest(BaseModel):
    result: Any = None
    reason: str = Field(default="", description="强制完成的原因")


def _error_response(e: CoordinationError) -> JSONResponse:
    status_code = 404 if isinstance(e, TaskNotFoundError) else 409
    return JSONResponse(
        status_code=status_code,
        content={
            "error": {
                "code": e.code,
                "message": str(e),
            }
        },
    )


@router.post("/api/tasks", status_code=201)
async def register_task(
    body: RegisterRequest,
    engine=Depends(get_engine),
):
    """注册任务及其依赖

    - 201: 注册成功（含补全占位任务）
    - 409: 重复注册 / 循环依赖
    """
    service = CoordinationService(engine)
    try:
        return await service.register(
            body.task_id,
            body.dependencies,
            agent_id=body.agent_id,
            payload=body.payload,
        )
    except CoordinationError as e:
        return _error_response(e)


@router.post("/api/tasks/{task_id}/start")
async def start_task(
    task_id: str,
    body: StartRequest,
    engine=Depends(get_engine),
):
    """请求启动任务，metadata.state 为 RUNNING 或 BLOCKED"""
    service = CoordinationService(engine)
    try:
        return await service.start(task_id, body.agent_id, require_ready=body.require_ready)
    except CoordinationError as e:
        return _error_response(e)


@router.post("/api/tasks/{task_id}/complete")
async def complete_task(
    task_id: str,
    body: CompleteRequest,
    engine=Depends(get_engine),
):
    service = CoordinationService(engine)
    try:
        return await service.complete(task_id, body.result)
    except CoordinationError as e:
        return _error_response(e)


@router.post("/api/tasks/{task_id}/fail")
async def fail_task(
    task_id: str,
    body: FailRequest,
    engine=Depends(get_engine),
):
    service = CoordinationService(engine)
    try:
        return await service.fail(task_id, body.error)
    except CoordinationError as e:
        return _error_response(e)


@router.post("/api/tasks/{task_id}/force-complete")
async def force_complete_task(
    task_id: str,
    body: ForceCompleteRequest,
    engine=Depends(get_engine),
):
    """人工强制完成 -- 绕过正常流转，解除下游阻塞"""
    service = CoordinationService(engine)
    try:
        return await service.force_complete(task_id, body.result, reason=body.reason)
    except CoordinationError as e:
        return _error_response(e)


@router.get("/api/tasks/{task_id}")
async def get_task(
    task_id: str,
    engine=Depends(get_engine),
):
    service = CoordinationService(engine)
    try:
        return service.get_task(task_id)
    except CoordinationError as e:
        return _error_response(e)


@router.get("/api/tasks/{task_id}/chain")
async def get_task_chain(
    task_id: str,
    engine=Depends(get_engine),
):
    service = CoordinationService(engine)
    try:
        return service.get_chain(task_id)
    except CoordinationError as e:
        return _error_response(e)
