"""
Observability（编排日志落盘）。

说明：
- 各模块只使用 `logging.getLogger(__name__)`；是否落盘由宿主进程通过 `attach_orchestrator_log` 决定。
"""

from __future__ import annotations

from savc_orchestrator.observability.log_file import attach_orchestrator_log, detach_orchestrator_log

__all__ = [
    "attach_orchestrator_log",
    "detach_orchestrator_log",
]
