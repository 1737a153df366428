"""
ToolRegistry：工具注册表与派发（dispatch）。

本模块提供：
- 注册：`register/get_spec/list_specs`
- 执行：`async dispatch(ToolCall, ctx) -> ToolResult`（任何异常都收敛为失败 envelope，不向调用方抛出）
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Optional

from savc_orchestrator.core.contracts import SessionContext
from savc_orchestrator.core.errors import INVALID_PARAMS, OrchestratorCodedError, ToolRegistrationError
from savc_orchestrator.core.spawn_orchestrator import SpawnOrchestrator
from savc_orchestrator.core.status_query import StatusQueryService
from savc_orchestrator.tools.protocol import ToolCall, ToolResult, ToolSpec

logger = logging.getLogger(__name__)

ToolHandler = Callable[[ToolCall, "OrchestratorToolContext"], Awaitable[ToolResult]]


@dataclass
class OrchestratorToolContext:
    """
    Tool 执行上下文（宿主按请求注入）。

    字段：
    - spawner：spawn 编排服务
    - status：状态查询服务
    - session_key / agent_id：调用方会话（real 后端必需）
    - message_channel / agent_account_id：可选会话属性
    """

    spawner: SpawnOrchestrator
    status: StatusQueryService
    session_key: Optional[str] = None
    agent_id: Optional[str] = None
    message_channel: Optional[str] = None
    agent_account_id: Optional[str] = None

    def session(self) -> Optional[SessionContext]:
        """解析调用方会话；session_key 或 agent_id 缺失时返回 None。"""

        return SessionContext.resolve(
            session_key=self.session_key,
            agent_id=self.agent_id,
            channel=self.message_channel,
            account_id=self.agent_account_id,
        )


class ToolRegistry:
    """工具注册表（最小实现）；执行上下文按每次 dispatch 注入。"""

    def __init__(self) -> None:
        self._specs: Dict[str, ToolSpec] = {}
        self._handlers: Dict[str, ToolHandler] = {}
        self._fallback_codes: Dict[str, str] = {}

    def register(
        self,
        spec: ToolSpec,
        handler: ToolHandler,
        *,
        fallback_code: str = INVALID_PARAMS,
        override: bool = False,
    ) -> None:
        """
        注册工具。

        参数：
        - spec：工具规格
        - handler：异步工具执行函数
        - fallback_code：handler 漏出非编码异常时使用的错误码
        - override：是否允许覆盖同名工具；默认 False（重复注册抛 ToolRegistrationError）
        """

        name = spec.name
        if name in self._specs and not override:
            raise ToolRegistrationError(f"重复注册 tool：{name}")
        self._specs[name] = spec
        self._handlers[name] = handler
        self._fallback_codes[name] = fallback_code

    def get_spec(self, name: str) -> ToolSpec:
        """获取工具规格；不存在则抛 `KeyError`。"""

        try:
            return self._specs[name]
        except KeyError as e:
            raise KeyError(f"未注册的 tool：{name}") from e

    def list_specs(self) -> list[ToolSpec]:
        """按注册顺序返回所有工具规格。"""

        return list(self._specs.values())

    async def dispatch(self, call: ToolCall, ctx: OrchestratorToolContext) -> ToolResult:
        """
        派发执行一个 ToolCall。

        说明：
        - 未注册的工具返回 `INVALID_PARAMS`
        - handler 自身应返回 envelope；漏出的编码错误保留其 code，其它异常使用注册时的 fallback_code
        """

        handler = self._handlers.get(call.name)
        if handler is None:
            return ToolResult.failure(INVALID_PARAMS, f"unknown tool: {call.name}")

        try:
            return await handler(call, ctx)
        except OrchestratorCodedError as e:
            return ToolResult.failure(e.code, e.message, summary=f"{call.name} failed: {e.message}")
        except Exception as e:
            logger.exception("tool dispatch failed: %s", call.name)
            code = self._fallback_codes.get(call.name, INVALID_PARAMS)
            return ToolResult.failure(code, str(e), summary=f"{call.name} failed: {e}")
