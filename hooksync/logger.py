"""
日志模块

更新流程运行在 hooksync-update 后台线程上，CLI 和调用方在主线程等待。
两边都通过 loguru 的同一个 logger 写日志，这里负责安装唯一的输出。
"""

import os
import sys
from typing import Optional

from loguru import logger

DEBUG_ENV = "HOOKSYNC_DEBUG"

LOG_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {message}"
# 调试时标出线程，便于区分后台更新和主线程的日志
DEBUG_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {thread.name} | {message}"


def resolve_level(level: Optional[str] = None) -> str:
    """显式传入的级别优先，否则看 HOOKSYNC_DEBUG=1"""
    if level is not None:
        return level.upper()
    return "DEBUG" if os.environ.get(DEBUG_ENV, "0") == "1" else "INFO"


def setup_logger(
    level: Optional[str] = None,
    sink=sys.stdout,
    enqueue: bool = True,
    colorize: bool = True,
) -> int:
    """
    安装 HookSync 的日志输出

    移除 loguru 默认的 stderr 输出后只保留一个 sink。
    后台更新线程与主线程会同时写日志，默认经队列串行写出。

    Args:
        level: 日志级别，为 None 时由 HOOKSYNC_DEBUG 决定
        sink: 输出目标
        enqueue: 是否经队列写出
        colorize: 是否启用颜色

    Returns:
        新 sink 的 id
    """
    level = resolve_level(level)
    debug = level == "DEBUG"

    logger.remove()
    handler_id = logger.add(
        sink=sink,
        format=DEBUG_FORMAT if debug else LOG_FORMAT,
        enqueue=enqueue,
        level=level,
        colorize=colorize,
        backtrace=debug,
        diagnose=debug,
    )

    if debug:
        logger.debug("[日志] 调试模式已启用")
    return handler_id


__all__ = ["logger", "setup_logger", "resolve_level"]
