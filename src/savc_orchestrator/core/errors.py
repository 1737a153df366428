"""
编排层错误分类（异常类型 + 稳定错误码）。

说明：
- 异常只在模块内部传递“错误层级”语义；工具边界统一转换为 `{ok, code, error, data}` envelope。
- 错误码为英文大写下划线，调用方可据此区分“后端明确拒绝”与“后端不可达”。
"""

from __future__ import annotations

from typing import Any, Dict

INVALID_PARAMS = "INVALID_PARAMS"
AGENT_NOT_FOUND = "AGENT_NOT_FOUND"
MISSING_SESSION_CONTEXT = "MISSING_SESSION_CONTEXT"
SPAWN_FAILED = "SPAWN_FAILED"
SPAWN_FORBIDDEN = "SPAWN_FORBIDDEN"
SEND_FAILED = "SEND_FAILED"
SEND_FORBIDDEN = "SEND_FORBIDDEN"
RUN_WAIT_FAILED = "RUN_WAIT_FAILED"
STATUS_FAILED = "STATUS_FAILED"


class OrchestratorError(Exception):
    """编排层错误基类（不建议直接抛出）。"""


class OrchestratorCodedError(OrchestratorError):
    """带稳定错误码的编排错误。"""

    def __init__(self, *, code: str, message: str, details: Dict[str, Any] | None = None) -> None:
        """创建编排错误。

        参数：
        - `code`：稳定错误码（见本模块常量）
        - `message`：可读错误信息
        - `details`：结构化上下文信息
        """

        super().__init__(message)
        self.code = code
        self.message = message
        self.details: Dict[str, Any] = details or {}

    def __str__(self) -> str:
        """返回用于日志的字符串表示。"""

        return f"{self.code}: {self.message}"


class RunRegistryError(OrchestratorError):
    """run registry 写入校验失败（例如 runId 为空）。"""


class ToolRegistrationError(OrchestratorError):
    """工具注册冲突（同名重复注册且未声明 override）。"""


class GatewayCallError(OrchestratorError):
    """远端 gateway 调用失败（网络错误、非 2xx、或 body 声明失败）。"""

    def __init__(self, message: str, *, method: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.method = method
        self.status_code = status_code
