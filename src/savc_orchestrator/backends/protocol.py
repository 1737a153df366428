"""
执行后端与外部协作方协议（Protocol）。

本模块只定义“边界契约”，具体实现见：
- `savc_orchestrator.backends.mock`（本地模拟 lifecycle）
- `savc_orchestrator.backends.real`（远端会话式后端）
- `savc_orchestrator.backends.lifecycle` / `savc_orchestrator.agents.registry`（可选的内置协作方实现）
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Protocol, runtime_checkable

from savc_orchestrator.core.contracts import AgentRunResult, SessionContext


@runtime_checkable
class LifecycleModule(Protocol):
    """本地 lifecycle 协作方（mock 后端）。快照为 camelCase dict。"""

    async def spawn_agent(
        self,
        agent_def: Mapping[str, Any],
        task: str,
        *,
        timeout_ms: Optional[int] = None,
        spawn_mode: Optional[str] = None,
    ) -> str:
        ...

    async def wait_for_agent(self, run_id: str, timeout_ms: int = 0) -> Dict[str, Any]:
        ...

    def get_status(self, run_id: str) -> Optional[Dict[str, Any]]:
        ...


@runtime_checkable
class AgentRegistry(Protocol):
    """expert 定义查找。"""

    def discover_agents(self, agents_dir: Optional[str] = None, *, force_reload: bool = False) -> List[Dict[str, Any]]:
        ...

    def get_agent(self, name: str) -> Optional[Dict[str, Any]]:
        ...


@runtime_checkable
class SemanticMemory(Protocol):
    """语义记忆协作方（search/store 必备；auto_capture 可选，用 getattr 探测）。"""

    async def search(
        self,
        query: str,
        *,
        workspace: Optional[str] = None,
        limit: int = 3,
        min_score: float = 0.0,
    ) -> Dict[str, Any]:
        ...

    async def store(
        self,
        text: str,
        metadata: Optional[Dict[str, Any]] = None,
        options: Optional[Dict[str, Any]] = None,
    ) -> Any:
        ...


@runtime_checkable
class SessionsTool(Protocol):
    """远端会话能力（sessions_spawn / sessions_send）的一次性工具实例。"""

    async def execute(self, call_id: str, args: Dict[str, Any]) -> Any:
        ...


@runtime_checkable
class SessionsToolFactory(Protocol):
    """按调用方上下文创建 sessions 工具（kind 为 `spawn` 或 `send`）。"""

    def __call__(self, kind: str, context: SessionContext) -> SessionsTool:
        ...


@runtime_checkable
class GatewayCall(Protocol):
    """通用定时 RPC 调用（`agent.wait` / `chat.history` 等）。"""

    async def call(self, method: str, params: Dict[str, Any], *, timeout_ms: int) -> Dict[str, Any]:
        ...


@dataclass(frozen=True)
class SpawnRequest:
    """
    一次 spawn 的后端无关输入（已完成参数归一化与记忆增强）。

    字段：
    - agent / agent_def：目标 expert 名与其定义
    - task：原始任务；final_task：实际下发的任务（可能带 `[相关记忆]` 块）
    - wait / timeout_ms：是否等待完成及超时
    - label：real 后端的 spawn label
    - session：调用方会话上下文（real 后端必需）
    - use_sessions_send / target_session_key / handoff_*：sessions_send 桥接参数
    """

    agent: str
    agent_def: Mapping[str, Any]
    task: str
    final_task: str
    wait: bool
    timeout_ms: int
    label: Optional[str] = None
    session: Optional[SessionContext] = None
    use_sessions_send: bool = False
    target_session_key: Optional[str] = None
    handoff_message: Optional[str] = None
    handoff_timeout_seconds: Optional[int] = None


@dataclass
class SessionsSendInfo:
    """sessions_send 桥接元数据（不是完整 lifecycle 记录）。"""

    attempted: bool = False
    ok: bool = True
    status: Optional[str] = None
    run_id: Optional[str] = None
    reply: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "attempted": self.attempted,
            "ok": self.ok,
            "status": self.status,
            "runId": self.run_id,
            "reply": self.reply,
            "error": self.error,
        }


@dataclass
class SpawnOutcome:
    """后端 spawn 的结果。"""

    result: AgentRunResult
    child_session_key: Optional[str] = None
    sessions_send: SessionsSendInfo = field(default_factory=SessionsSendInfo)
    warning: Optional[str] = None


@runtime_checkable
class ExecutionBackend(Protocol):
    """
    执行后端能力集（mock / real 两种变体，启动时按配置选定一次）。

    方法：
    - spawn：启动一次委派执行（失败抛 `OrchestratorCodedError`）
    - status：单次状态查询；查询不到返回 None

    属性：
    - name：`mock` / `real`
    - requires_session：是否必须有调用方会话上下文（real 为 True）
    """

    name: str
    requires_session: bool

    async def spawn(self, request: SpawnRequest) -> SpawnOutcome:
        ...

    async def status(self, run_id: str) -> Optional[AgentRunResult]:
        ...

