"""
对外稳定入口：OrchestratorPlugin（薄门面）。

说明：
- 组装执行后端、expert 注册表、编排服务、状态查询与内置工具
- 宿主每次工具调用通过 `execute()` 注入会话上下文；返回统一 envelope 的 `ToolResult`
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from savc_orchestrator.agents.registry import YamlAgentRegistry
from savc_orchestrator.backends.factory import build_backend
from savc_orchestrator.backends.protocol import (
    AgentRegistry,
    ExecutionBackend,
    GatewayCall,
    LifecycleModule,
    SemanticMemory,
    SessionsToolFactory,
)
from savc_orchestrator.bootstrap import resolve_orchestrator_config
from savc_orchestrator.config.loader import OrchestratorConfig
from savc_orchestrator.core.spawn_orchestrator import SpawnOrchestrator
from savc_orchestrator.core.status_query import StatusQueryService
from savc_orchestrator.core.utils import now_ms
from savc_orchestrator.observability.log_file import attach_orchestrator_log
from savc_orchestrator.state.run_registry import RunRegistry
from savc_orchestrator.tools.builtin import register_builtin_tools
from savc_orchestrator.tools.protocol import ToolCall, ToolResult, ToolSpec
from savc_orchestrator.tools.registry import OrchestratorToolContext, ToolRegistry

logger = logging.getLogger(__name__)


class OrchestratorPlugin:
    """
    编排插件门面。

    参数：
    - config：编排配置
    - lifecycle：mock 模式的 lifecycle 协作方（缺省 `InProcessLifecycle`）
    - sessions_tools：real 模式必需的 sessions 工具工厂
    - gateway：real 模式的通用 RPC（缺省 `HttpGatewayClient`）
    - agents：expert 注册表（缺省 `YamlAgentRegistry(config.resolve_agents_dir())`）
    - memory：可选语义记忆协作方
    - run_registry：real 模式的 run 记录表（缺省新建）
    - attach_log：是否按 `config.log_file` 挂载文件日志
    """

    def __init__(
        self,
        config: OrchestratorConfig,
        *,
        lifecycle: Optional[LifecycleModule] = None,
        sessions_tools: Optional[SessionsToolFactory] = None,
        gateway: Optional[GatewayCall] = None,
        agents: Optional[AgentRegistry] = None,
        memory: Optional[SemanticMemory] = None,
        run_registry: Optional[RunRegistry] = None,
        attach_log: bool = True,
    ) -> None:
        self._config = config
        if attach_log:
            log_path = config.resolve_log_file()
            if log_path is not None:
                attach_orchestrator_log(log_path)

        self._backend: ExecutionBackend = build_backend(
            config,
            lifecycle=lifecycle,
            sessions_tools=sessions_tools,
            gateway=gateway,
            registry=run_registry,
        )
        self._spawner = SpawnOrchestrator(
            config=config,
            backend=self._backend,
            agents=agents if agents is not None else YamlAgentRegistry(config.resolve_agents_dir()),
            memory=memory,
        )
        self._status = StatusQueryService(self._backend)
        self._tools = ToolRegistry()
        register_builtin_tools(self._tools)
        logger.info("orchestrator ready: mode=%s core=%s", self._backend.name, config.core_path or "-")

    @classmethod
    def from_workspace(
        cls,
        workspace_root: Path | str,
        *,
        env: Optional[Mapping[str, str]] = None,
        **collaborators: Any,
    ) -> "OrchestratorPlugin":
        """按 bootstrap 规则（默认配置 + overlays + env）解析配置后构造。"""

        resolved = resolve_orchestrator_config(workspace_root=Path(workspace_root), env=env)
        return cls(resolved.config, **collaborators)

    @property
    def config(self) -> OrchestratorConfig:
        return self._config

    def list_tools(self) -> List[ToolSpec]:
        return self._tools.list_specs()

    async def execute(
        self,
        name: str,
        args: Optional[Dict[str, Any]] = None,
        *,
        session_key: Optional[str] = None,
        agent_id: Optional[str] = None,
        message_channel: Optional[str] = None,
        agent_account_id: Optional[str] = None,
        call_id: Optional[str] = None,
    ) -> ToolResult:
        """
        执行一次工具调用（不抛异常；失败以 envelope 返回）。

        参数：
        - name：工具名（savc_spawn_expert / savc_agent_status）
        - args：工具参数（camelCase）
        - session_key / agent_id / message_channel / agent_account_id：调用方会话上下文
        - call_id：调用 id；缺省 `<name>-<epoch ms>`
        """

        ctx = OrchestratorToolContext(
            spawner=self._spawner,
            status=self._status,
            session_key=session_key,
            agent_id=agent_id,
            message_channel=message_channel,
            agent_account_id=agent_account_id,
        )
        call = ToolCall(
            call_id=call_id or f"{name}-{now_ms()}",
            name=name,
            args=dict(args or {}),
        )
        return await self._tools.dispatch(call, ctx)
