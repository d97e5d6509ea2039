"""配置模块 -- 可通过环境变量覆盖

包含数据库路径、SSE 心跳间隔等常量，以及引擎运行参数 EngineConfig。
"""

import os
from pathlib import Path

import structlog
from pydantic import BaseModel, Field

log = structlog.get_logger()


def _get_base_dir() -> Path:
    """获取项目 data 基础目录"""
    return Path(os.environ.get("TASKMESH_DATA_DIR", "data"))


def get_db_path() -> str:
    """获取 SQLite 数据库路径"""
    return os.environ.get(
        "TASKMESH_DB_PATH",
        str(_get_base_dir() / "sqlite" / "taskmesh.db"),
    )


# SSE 心跳间隔（秒）
SSE_HEARTBEAT_INTERVAL: int = int(
    os.environ.get("TASKMESH_SSE_HEARTBEAT_INTERVAL", "15")
)


class EngineConfig(BaseModel):
    """协调引擎配置 -- 从环境变量加载

    环境变量:
        TASKMESH_STALE_THRESHOLD_S: BLOCKED 任务判定为停滞的阈值（秒，默认 300）
        TASKMESH_STATUS_LOG_INTERVAL_S: 周期性状态日志间隔（秒，默认 600）
        TASKMESH_PERSISTENCE: 是否启用 SQLite 持久化（on/off，默认 on）
    """

    stale_threshold_s: float = Field(
        default=300.0,
        ge=0,
        description="停滞诊断阈值（秒）",
    )
    status_log_interval_s: float = Field(
        default=600.0,
        gt=0,
        description="周期性状态日志间隔（秒）",
    )
    persistence_enabled: bool = Field(
        default=True,
        description="是否写入 SQLite",
    )


def _read_float(env_var: str, fallback: float) -> float | None:
    val = os.environ.get(env_var)
    if not val:
        return None
    try:
        return float(val)
    except ValueError:
        log.warning(
            "invalid_engine_config",
            env_var=env_var,
            value=val,
            fallback=fallback,
        )
        return None


def load_engine_config() -> EngineConfig:
    """从环境变量加载引擎配置

    非法数值记录 warning 并使用默认值，不阻塞启动。

    Returns:
        EngineConfig 实例
    """
    kwargs: dict = {}

    if (val := _read_float("TASKMESH_STALE_THRESHOLD_S", 300.0)) is not None:
        kwargs["stale_threshold_s"] = val

    if (val := _read_float("TASKMESH_STATUS_LOG_INTERVAL_S", 600.0)) is not None:
        kwargs["status_log_interval_s"] = val

    if val := os.environ.get("TASKMESH_PERSISTENCE"):
        kwargs["persistence_enabled"] = val.lower() not in ("off", "false", "0")

    return EngineConfig(**kwargs)
