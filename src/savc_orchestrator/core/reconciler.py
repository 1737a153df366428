"""
RunReconciler：对 real 后端做有界轮询，并把结果合并进 RunRegistry。

两层策略：
- 记录已是终态（completed/failed/timeout）：直接返回，不再调用后端
- 非终态：最多调用一次 `agent.wait`（短窗口 + soft-timeout），状态变化后才 patch

完成后的 output 回填（读取子会话最近一条 assistant 回复）是可降级步骤：
读取失败时返回 `Fallback(此前 output)`，不会让状态查询失败。
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from savc_orchestrator.backends.real_session_adapter import RealSessionAdapter, RealWaitResult
from savc_orchestrator.core.contracts import TERMINAL_STATUSES, RunRecord
from savc_orchestrator.core.outcomes import Fallback, Ok, Outcome
from savc_orchestrator.state.run_registry import RunRegistry

logger = logging.getLogger(__name__)

DEFAULT_STATUS_POLL_MS = 250
DEFAULT_HISTORY_LIMIT = 80


class RunReconciler:
    """
    real 后端的 wait/status 协调器。

    参数：
    - registry：run 记录表（唯一的状态存储）
    - adapter：远端适配器
    - status_poll_ms：单次状态查询的轮询窗口
    - history_limit：回填 output 时读取的历史条数
    """

    def __init__(
        self,
        registry: RunRegistry,
        adapter: RealSessionAdapter,
        *,
        status_poll_ms: int = DEFAULT_STATUS_POLL_MS,
        history_limit: int = DEFAULT_HISTORY_LIMIT,
    ) -> None:
        self._registry = registry
        self._adapter = adapter
        self._status_poll_ms = int(status_poll_ms)
        self._history_limit = int(history_limit)

    async def backfill_output(self, prior: Optional[str], child_session_key: Optional[str]) -> Outcome[Optional[str]]:
        """
        读取子会话最近回复作为 output。

        返回：
        - Ok(reply)：读取成功（reply 可能为 None，表示历史中没有 assistant 消息）
        - Fallback(prior)：没有子会话或读取失败
        """

        if not child_session_key:
            return Fallback(prior, error="no child session")
        try:
            reply = await self._adapter.read_latest_reply(child_session_key, limit=self._history_limit)
        except Exception as exc:
            logger.warning("reply backfill failed: session=%s error=%s", child_session_key, exc)
            return Fallback(prior, error=str(exc))
        return Ok(reply)

    def _merge(self, record: RunRecord, waited: RealWaitResult, output: Optional[str]) -> Optional[RunRecord]:
        fields: Dict[str, Any] = {
            "status": waited.status,
            "output": output,
            "error": waited.error,
            "duration_ms": waited.duration_ms,
        }
        # 远端给出任一时间戳时整体替换本地的一对，避免本地 start 与远端 end 混算 duration；
        # 两者都缺失时保留已有值
        if waited.started_at is not None or waited.ended_at is not None:
            fields["started_at"] = waited.started_at
            fields["ended_at"] = waited.ended_at
        return self._registry.patch(record.run_id, fields)

    async def reconcile(self, run_id: str) -> Optional[RunRecord]:
        """
        状态查询用的一次有界协调。

        返回：
        - None：registry 中没有该 runId
        - 终态记录：原样返回（不调用后端）
        - 否则：轮询一次；状态仍为 running 时原样返回，变化时回填 output 并 patch
        """

        current = self._registry.get(run_id)
        if current is None:
            return None
        if current.status in TERMINAL_STATUSES:
            return current

        waited = await self._adapter.wait(
            current.run_id,
            self._status_poll_ms,
            treat_timeout_as_running=True,
        )
        if waited.status == "running":
            return current

        output = current.output
        if not output and waited.status == "completed" and current.child_session_key:
            output = (await self.backfill_output(current.output, current.child_session_key)).value
        updated = self._merge(current, waited, output)
        return updated if updated is not None else current

    async def settle(self, run_id: str, timeout_ms: int) -> Optional[RunRecord]:
        """
        spawn 后的初次等待（远端 `timeout` 视为终态）。

        说明：
        - `agent.wait` 的传输异常向上抛出，由调用方转换为错误码
        - completed 时回填 output；回填失败则 output 为空
        """

        current = self._registry.get(run_id)
        if current is None:
            return None
        waited = await self._adapter.wait(current.run_id, timeout_ms, treat_timeout_as_running=False)
        output: Optional[str] = None
        if waited.status == "completed":
            outcome = await self.backfill_output(None, current.child_session_key)
            output = outcome.value
        updated = self._merge(current, waited, output)
        return updated if updated is not None else current
