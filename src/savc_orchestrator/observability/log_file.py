"""编排日志文件 handler（`[timestamp] message` 单行格式）。"""

from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Dict

PACKAGE_LOGGER = "savc_orchestrator"

_handlers: Dict[Path, logging.FileHandler] = {}


class _IsoFormatter(logging.Formatter):
    """`[2026-01-01T00:00:00.000Z] message` 格式（UTC）。"""

    def formatTime(self, record: logging.LogRecord, datefmt: str | None = None) -> str:
        ct = time.gmtime(record.created)
        return time.strftime("%Y-%m-%dT%H:%M:%S", ct) + f".{int(record.msecs):03d}Z"


def attach_orchestrator_log(path: Path | str, *, level: int = logging.INFO) -> logging.FileHandler:
    """
    给包 logger 挂一个文件 handler（同一路径幂等）。

    参数：
    - path：日志文件路径；父目录不存在时自动创建
    - level：handler 级别（默认 INFO）

    返回：
    - 已挂载的 FileHandler（重复调用返回同一个）
    """

    p = Path(path).expanduser().resolve()
    existing = _handlers.get(p)
    if existing is not None:
        return existing
    p.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(p, encoding="utf-8")
    handler.setLevel(level)
    handler.setFormatter(_IsoFormatter("[%(asctime)s] %(message)s"))
    logger = logging.getLogger(PACKAGE_LOGGER)
    logger.addHandler(handler)
    if logger.level == logging.NOTSET or logger.level > level:
        logger.setLevel(level)
    _handlers[p] = handler
    return handler


def detach_orchestrator_log(path: Path | str) -> bool:
    """移除并关闭之前挂载的文件 handler；未挂载时返回 False。"""

    p = Path(path).expanduser().resolve()
    handler = _handlers.pop(p, None)
    if handler is None:
        return False
    logging.getLogger(PACKAGE_LOGGER).removeHandler(handler)
    handler.close()
    return True
