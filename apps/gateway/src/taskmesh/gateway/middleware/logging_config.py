"""structlog 配置模块

dev 模式：ConsoleRenderer 彩色输出
json 模式：每行一个 JSON 对象，便于日志采集
标准库 logging（uvicorn、aiosqlite 等）通过 ProcessorFormatter 统一渲染。
Logfire APM：LOGFIRE_SEND_TO_LOGFIRE 环境变量控制，false 时只输出本地日志。
"""

import logging
import os

import structlog

# 引擎与网关的日志中统一携带的服务名
SERVICE_NAME = "taskmesh-gateway"

# 第三方库日志过于冗长，最低输出 WARNING
_NOISY_LOGGERS = ("aiosqlite", "sse_starlette")


def _add_service_name(
    logger: logging.Logger, method_name: str, event_dict: structlog.types.EventDict
) -> structlog.types.EventDict:
    event_dict.setdefault("service", SERVICE_NAME)
    return event_dict


def setup_logging(log_format: str | None = None, log_level: str | None = None) -> None:
    """初始化 structlog 配置

    Args:
        log_format: "json" 或 "dev"，默认读取 TASKMESH_LOG_FORMAT（默认 dev）
        log_level: 日志级别，默认读取 TASKMESH_LOG_LEVEL（默认 INFO）
    """
    log_format = log_format or os.environ.get("TASKMESH_LOG_FORMAT", "dev")
    log_level = log_level or os.environ.get("TASKMESH_LOG_LEVEL", "INFO")

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        _add_service_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if log_format == "json":
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer(
            ensure_ascii=False
        )
        shared_processors.append(structlog.processors.format_exc_info)
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processor=renderer,
        foreign_pre_chain=shared_processors,
    )
    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def setup_logfire() -> bool:
    """Logfire 可选初始化

    LOGFIRE_SEND_TO_LOGFIRE="true" 时启用（需要 LOGFIRE_TOKEN），
    未安装 logfire 或初始化失败时记录 warning，继续使用本地日志。

    Returns:
        True 如果 Logfire 已启用
    """
    send_to_logfire = os.environ.get("LOGFIRE_SEND_TO_LOGFIRE", "false").lower()
    if send_to_logfire != "true":
        return False

    try:
        import logfire

        logfire.configure(service_name=SERVICE_NAME)
        logfire.instrument_fastapi()
    except Exception as e:
        structlog.get_logger().warning(
            "logfire_init_failed",
            error_type=type(e).__name__,
            message="Logfire 初始化失败，使用本地日志",
        )
        return False
    return True
