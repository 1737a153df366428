"""
RealBackend：远端会话式后端（adapter + registry + reconciler）。

spawn 分两种：
- send-only 桥接：`use_sessions_send` 且给了 `target_session_key` 时，只向该会话发消息，
  不创建子会话，也不写 registry（结果是 sessions_send 的元数据映射）
- 常规 spawn：sessions_spawn 成功后以 `accepted` 写入 registry；可选向子会话发送协调消息；
  `wait=True` 时做一次初次等待并 patch registry
"""

from __future__ import annotations

import logging
import math
from typing import Optional

from savc_orchestrator.backends.protocol import SessionsSendInfo, SpawnOutcome, SpawnRequest
from savc_orchestrator.backends.real_session_adapter import RealSendResult, RealSessionAdapter
from savc_orchestrator.core.contracts import AgentRunResult, SessionContext
from savc_orchestrator.core.errors import (
    MISSING_SESSION_CONTEXT,
    RUN_WAIT_FAILED,
    SEND_FAILED,
    SPAWN_FAILED,
    OrchestratorCodedError,
)
from savc_orchestrator.core.reconciler import RunReconciler
from savc_orchestrator.core.utils import now_ms
from savc_orchestrator.state.run_registry import RunRegistry

logger = logging.getLogger(__name__)

# sessions_send 状态 -> 规范 run 状态（send-only 桥接）
_SEND_STATUS_TO_RUN = {"ok": "completed", "accepted": "accepted", "timeout": "running"}


def coordination_message(run_id: str, agent: str) -> str:
    """spawn 后发给子会话的默认协调消息。"""

    return "\n".join(
        [
            "[协调消息]",
            f"runId={run_id}",
            f"targetAgent={agent}",
            "请结合当前任务上下文继续执行并返回结构化要点。",
        ]
    )


def _send_info(send: RealSendResult) -> SessionsSendInfo:
    return SessionsSendInfo(
        attempted=True,
        ok=send.ok,
        status=send.status,
        run_id=send.run_id,
        reply=send.reply,
        error=send.error,
    )


class RealBackend:
    """
    real 后端。

    参数：
    - adapter：远端适配器
    - registry：run 记录表（由编排服务持有并注入）
    - reconciler：有界轮询协调器（缺省按 registry/adapter 构造）
    """

    name = "real"
    requires_session = True

    def __init__(
        self,
        adapter: RealSessionAdapter,
        registry: RunRegistry,
        *,
        reconciler: Optional[RunReconciler] = None,
    ) -> None:
        self._adapter = adapter
        self._registry = registry
        self._reconciler = reconciler or RunReconciler(registry, adapter)

    def _require_session(self, session: Optional[SessionContext]) -> SessionContext:
        if session is None:
            raise OrchestratorCodedError(
                code=MISSING_SESSION_CONTEXT,
                message="real spawn mode requires tool context sessionKey and agentId",
            )
        return session

    async def spawn(self, request: SpawnRequest) -> SpawnOutcome:
        session = self._require_session(request.session)
        if request.use_sessions_send and request.target_session_key:
            return await self._send_only(request, session)

        spawned = await self._adapter.spawn(
            session=session,
            target_agent=request.agent,
            task=request.final_task,
            timeout_ms=request.timeout_ms,
            label=request.label or f"savc-{request.agent}",
        )
        if not spawned.ok or not spawned.run_id:
            raise OrchestratorCodedError(
                code=spawned.code or SPAWN_FAILED,
                message=spawned.error or "sessions_spawn did not return an accepted run",
                details={"status": spawned.status},
            )

        run_id = spawned.run_id
        record = self._registry.ensure(
            run_id=run_id,
            agent=request.agent,
            status="accepted",
            child_session_key=spawned.child_session_key,
            started_at=now_ms(),
        )

        send_info = SessionsSendInfo()
        if request.use_sessions_send and spawned.child_session_key:
            send = await self._adapter.send(
                session=session,
                target_session_key=spawned.child_session_key,
                message=request.handoff_message or coordination_message(run_id, request.agent),
                timeout_seconds=request.handoff_timeout_seconds or max(1, math.ceil(request.timeout_ms / 1000)),
            )
            send_info = _send_info(send)
            if not send.ok:
                logger.warning("handoff send failed: runId=%s status=%s error=%s", run_id, send.status, send.error)

        if request.wait:
            try:
                settled = await self._reconciler.settle(run_id, request.timeout_ms)
            except Exception as exc:
                raise OrchestratorCodedError(
                    code=RUN_WAIT_FAILED,
                    message=str(exc),
                    details={"runId": run_id},
                ) from exc
            if settled is not None:
                record = settled

        return SpawnOutcome(
            result=AgentRunResult.from_record(record),
            child_session_key=spawned.child_session_key,
            sessions_send=send_info,
            warning=spawned.warning,
        )

    async def _send_only(self, request: SpawnRequest, session: SessionContext) -> SpawnOutcome:
        target = str(request.target_session_key)
        send = await self._adapter.send(
            session=session,
            target_session_key=target,
            message=request.handoff_message or request.final_task,
            timeout_seconds=request.handoff_timeout_seconds,
        )
        if not send.ok:
            raise OrchestratorCodedError(
                code=send.code or SEND_FAILED,
                message=send.error or "sessions_send returned an error status",
                details={"status": send.status, "targetSessionKey": target},
            )
        status = _SEND_STATUS_TO_RUN.get(send.status, "running")
        result = AgentRunResult(
            run_id=send.run_id or "",
            agent=request.agent,
            status=status,
            output=send.reply if status == "completed" else None,
            error=send.error,
        )
        return SpawnOutcome(result=result, child_session_key=target, sessions_send=_send_info(send))

    async def status(self, run_id: str) -> Optional[AgentRunResult]:
        record = await self._reconciler.reconcile(run_id)
        if record is None:
            return None
        return AgentRunResult.from_record(record)
