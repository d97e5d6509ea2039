"""系统状态路由

GET /api/status: 各状态计数、停滞任务、占位任务与依赖边数量。
"""

from fastapi import APIRouter, Depends, Query

from ..deps import get_engine
from ..services.coordination_service import CoordinationService

router = APIRouter()


@router.get("/api/status")
async def get_status(
    stale_threshold_s: float | None = Query(
        default=None,
        ge=0,
        description="停滞阈值（秒），默认取 TASKMESH_STALE_THRESHOLD_S",
    ),
    engine=Depends(get_engine),
):
    service = CoordinationService(engine)
    return service.get_status(stale_threshold_s)
