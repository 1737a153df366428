"""
SpawnOrchestrator：一次 expert 委派的编排入口。

职责（按顺序）：
1) 宽松解析调用参数（wait/timeout/recall/persist/sessions_send）
2) 强制重载 expert 定义并查找目标 agent（两种后端都适用）
3) real 后端前置校验会话上下文（缺失时在任何远端调用之前失败）
4) 可选语义召回，把 `[相关记忆]` 块拼进任务
5) 交给执行后端 spawn（mock / real）
6) 完成后的记忆持久化与 auto-capture
7) 输出一行 INFO 摘要日志

错误：以 `OrchestratorCodedError` 抛出（INVALID_PARAMS / AGENT_NOT_FOUND / MISSING_SESSION_CONTEXT /
SPAWN_FAILED / SPAWN_FORBIDDEN / SEND_FAILED / SEND_FORBIDDEN / RUN_WAIT_FAILED），由工具边界转换为 envelope。
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from savc_orchestrator.backends.protocol import (
    AgentRegistry,
    ExecutionBackend,
    SemanticMemory,
    SessionsSendInfo,
    SpawnRequest,
)
from savc_orchestrator.config.loader import OrchestratorConfig
from savc_orchestrator.core.contracts import AgentRunResult, SessionContext
from savc_orchestrator.core.errors import (
    AGENT_NOT_FOUND,
    INVALID_PARAMS,
    MISSING_SESSION_CONTEXT,
    OrchestratorCodedError,
)
from savc_orchestrator.core.memory_context import MemoryContext, MemoryReport
from savc_orchestrator.core.utils import read_optional_string, read_string, to_bool, to_positive_int

logger = logging.getLogger(__name__)

MEMORY_AGENT = "memory"


@dataclass
class SpawnReport:
    """一次 spawn 的完整结果（`to_dict()` 即工具 envelope 的 data）。"""

    result: AgentRunResult
    memory: MemoryReport
    mode: str
    wait: bool
    timeout_ms: int
    child_session_key: Optional[str] = None
    sessions_send: Optional[SessionsSendInfo] = None
    warning: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        send = self.sessions_send or SessionsSendInfo()
        return {
            "result": self.result.to_dict(),
            "memory": self.memory.to_dict(),
            "spawn": {
                "mode": self.mode,
                "backend": self.mode,
                "wait": self.wait,
                "timeoutMs": self.timeout_ms,
                "childSessionKey": self.child_session_key,
                "warning": self.warning,
                "sessionsSend": send.to_dict(),
            },
        }


class SpawnOrchestrator:
    """
    spawn 编排服务。

    参数：
    - config：编排配置
    - backend：执行后端（启动时按 spawn_mode 选定）
    - agents：expert 定义注册表
    - memory：可选语义记忆协作方（缺失时召回/持久化均为 no-op）
    """

    def __init__(
        self,
        *,
        config: OrchestratorConfig,
        backend: ExecutionBackend,
        agents: AgentRegistry,
        memory: Optional[SemanticMemory] = None,
    ) -> None:
        self._config = config
        self._backend = backend
        self._agents = agents
        self._memory = MemoryContext(
            memory,
            workspace=config.core_path,
            min_score=config.memory.min_score,
            persist_enabled=config.memory.persist_enabled,
        )

    def _lookup_agent(self, name: str) -> Dict[str, Any]:
        agents_dir = self._config.resolve_agents_dir()
        self._agents.discover_agents(str(agents_dir) if agents_dir is not None else None, force_reload=True)
        agent_def = self._agents.get_agent(name)
        if not agent_def:
            raise OrchestratorCodedError(code=AGENT_NOT_FOUND, message=f"unknown agent: {name}")
        return agent_def

    async def spawn(
        self,
        *,
        agent: Any,
        task: Any,
        session: Optional[SessionContext] = None,
        wait: Any = None,
        timeout_ms: Any = None,
        label: Any = None,
        recall_query: Any = None,
        recall_limit: Any = None,
        persist_memory: Any = None,
        use_sessions_send: Any = None,
        target_session_key: Any = None,
        handoff_message: Any = None,
        handoff_timeout_seconds: Any = None,
    ) -> SpawnReport:
        """
        执行一次 spawn。

        参数：
        - agent / task：必填（去空白后非空）
        - session：调用方会话上下文（real 后端必需）
        - wait / timeout_ms：缺省取配置 `default_wait` / `default_timeout_ms`
        - label：real 后端 spawn label（缺省 `savc-<agent>`）
        - recall_query / recall_limit：召回查询（缺省为 task）与 top-K（缺省取配置）
        - persist_memory：agent=memory 时在完成后持久化任务
        - use_sessions_send / target_session_key / handoff_*：sessions_send 桥接（仅 real）

        返回：
        - SpawnReport
        """

        agent_name = read_string(agent)
        task_text = read_string(task)
        if not agent_name or not task_text:
            raise OrchestratorCodedError(code=INVALID_PARAMS, message="agent and task are required")

        cfg = self._config
        wait_flag = to_bool(wait, cfg.default_wait)
        timeout = to_positive_int(timeout_ms, cfg.default_timeout_ms)
        query = read_optional_string(recall_query) or task_text
        limit = to_positive_int(recall_limit, cfg.memory.recall_top_k)
        persist = to_bool(persist_memory, False)
        handoff_timeout = to_positive_int(handoff_timeout_seconds, 0) or None

        agent_def = self._lookup_agent(agent_name)

        if self._backend.requires_session and session is None:
            raise OrchestratorCodedError(
                code=MISSING_SESSION_CONTEXT,
                message="real spawn mode requires tool context sessionKey and agentId",
            )

        report = MemoryReport(recall_enabled=cfg.memory.recall_enabled)
        final_task = task_text
        if cfg.memory.recall_enabled:
            recalled = await self._memory.recall(task_text, query=query, limit=limit)
            final_task = recalled.final_task
            report.recall_count = recalled.recall_count

        outcome = await self._backend.spawn(
            SpawnRequest(
                agent=agent_name,
                agent_def=agent_def,
                task=task_text,
                final_task=final_task,
                wait=wait_flag,
                timeout_ms=timeout,
                label=read_optional_string(label),
                session=session,
                use_sessions_send=to_bool(use_sessions_send, False),
                target_session_key=read_optional_string(target_session_key),
                handoff_message=read_optional_string(handoff_message),
                handoff_timeout_seconds=handoff_timeout,
            )
        )
        result = outcome.result

        if result.status == "completed":
            if agent_name == MEMORY_AGENT and persist:
                report.persisted, report.persisted_error = await self._memory.persist(task_text)
            report.auto_capture = await self._memory.auto_capture(
                [task_text, final_task, result.output or ""],
                agent=agent_name,
            )

        send = outcome.sessions_send
        logger.info(
            "spawn agent=%s runId=%s status=%s mode=%s recallCount=%d persisted=%s autoCapture=%d sessionsSend=%s",
            agent_name,
            result.run_id,
            result.status,
            self._backend.name,
            report.recall_count,
            "true" if report.persisted else "false",
            report.auto_capture.stored,
            send.status if send.attempted else "skipped",
        )

        return SpawnReport(
            result=result,
            memory=report,
            mode=self._backend.name,
            wait=wait_flag,
            timeout_ms=timeout,
            child_session_key=outcome.child_session_key,
            sessions_send=send,
            warning=outcome.warning,
        )
