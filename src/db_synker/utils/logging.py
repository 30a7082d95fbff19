"""
日志配置模块 - 使用 structlog 提供结构化日志
"""

import logging
import sys
from typing import Any, List

import structlog
from structlog.types import EventDict, WrappedLogger


def _format_exception(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    """把 exc_info 压缩成单行的 "类型: 信息"，完整堆栈只在 DEBUG 下保留"""
    exc_info = event_dict.pop("exc_info", None)
    if not exc_info:
        return event_dict

    if isinstance(exc_info, BaseException):
        event_dict["exception"] = f"{type(exc_info).__name__}: {exc_info}"
    elif exc_info is True:
        error = sys.exc_info()[1]
        if error is not None:
            event_dict["exception"] = f"{type(error).__name__}: {error}"
            if logging.getLogger().isEnabledFor(logging.DEBUG):
                import traceback

                event_dict["traceback"] = traceback.format_exc()
    return event_dict


def configure_logging(
    log_level: str = "INFO",
    json_format: bool = False,
) -> None:
    """
    配置结构化日志

    参数:
        log_level: 日志级别 (DEBUG, INFO, WARNING, ERROR)
        json_format: 是否使用 JSON 格式输出（以守护进程运行 `run` 时推荐）
    """
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=getattr(logging, log_level.upper()),
        force=True,
    )

    shared: List[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.stdlib.PositionalArgumentsFormatter(),
        _format_exception,
    ]

    if json_format:
        processors = shared + [
            structlog.stdlib.add_logger_name,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer(ensure_ascii=False),
        ]
    else:
        processors = shared + [
            structlog.dev.ConsoleRenderer(
                colors=sys.stderr.isatty(),
                sort_keys=False,
                pad_level=False,
            ),
        ]

    structlog.configure(
        processors=processors,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None) -> Any:
    """
    获取结构化日志记录器

    示例:
        >>> from db_synker.utils.logging import get_logger
        >>> logger = get_logger(__name__)
        >>> logger.info("table_sync_start", db="shop", table="orders")
        2024-01-05T10:00:00Z [info] table_sync_start db=shop table=orders
    """
    return structlog.get_logger(name)


def bind_context(**kwargs: Any) -> None:
    """
    绑定上下文字段到当前协程后续的所有日志

    示例:
        >>> bind_context(run_id="a1b2", trigger="scheduled")
        >>> logger.info("table_sync_complete")  # 自动包含 run_id 和 trigger
    """
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_context() -> None:
    """清除上下文字段"""
    structlog.contextvars.clear_contextvars()
