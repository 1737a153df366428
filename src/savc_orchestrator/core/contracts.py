"""
核心数据契约（run 状态词表 / RunRecord / 状态查询结果 / 调用方会话上下文）。

说明：
- 内部字段使用 snake_case；`to_dict()` 输出 wire 口径的 camelCase 键（runId/durationMs/...）。
- 状态词表固定为 `accepted|running|completed|failed|timeout`；查询不到时使用 `not_found` 哨兵。
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, FrozenSet, Mapping, Optional, Tuple

from savc_orchestrator.core.utils import is_finite_number, read_optional_string, read_string

RUN_STATUSES: Tuple[str, ...] = ("accepted", "running", "completed", "failed", "timeout")
TERMINAL_STATUSES: FrozenSet[str] = frozenset({"completed", "failed", "timeout"})
NOT_FOUND_STATUS = "not_found"
UNKNOWN_AGENT = "unknown"


def to_run_status(value: Any, fallback: str) -> str:
    """把任意输入归一化为规范状态；不在词表内则返回 fallback。"""

    raw = str(value or "").strip().lower()
    if raw in RUN_STATUSES:
        return raw
    return fallback


@dataclass
class RunRecord:
    """
    一次被追踪的委派执行（registry 中的一行）。

    字段：
    - run_id：全局唯一；赋值后不可变
    - agent：目标 expert 名
    - status：规范状态词表之一
    - child_session_key：仅 real 后端存在
    - output / error：最终文本输出 / 失败原因
    - started_at / ended_at：epoch 毫秒
    - duration_ms：未显式提供时由 started_at/ended_at 推导（>= 0）
    """

    run_id: str
    agent: str
    status: str = "running"
    child_session_key: Optional[str] = None
    output: Optional[str] = None
    error: Optional[str] = None
    started_at: Optional[float] = None
    ended_at: Optional[float] = None
    duration_ms: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        """输出 wire 口径（camelCase）。"""

        return {
            "runId": self.run_id,
            "agent": self.agent,
            "status": self.status,
            "childSessionKey": self.child_session_key,
            "output": self.output,
            "error": self.error,
            "startedAt": self.started_at,
            "endedAt": self.ended_at,
            "durationMs": self.duration_ms,
        }


@dataclass(frozen=True)
class AgentRunResult:
    """状态查询结果：`{runId, agent, status, output, durationMs, error}`。"""

    run_id: str
    agent: str
    status: str
    output: Optional[str] = None
    duration_ms: Optional[float] = None
    error: Optional[str] = None

    @classmethod
    def from_record(cls, record: RunRecord) -> "AgentRunResult":
        """从 registry 记录构造结果（duration 非有限值时置空）。"""

        return cls(
            run_id=record.run_id,
            agent=record.agent,
            status=record.status,
            output=record.output,
            duration_ms=record.duration_ms if is_finite_number(record.duration_ms) else None,
            error=record.error,
        )

    @classmethod
    def from_snapshot(cls, snapshot: Mapping[str, Any]) -> "AgentRunResult":
        """
        从 lifecycle 快照（dict，camelCase 键）构造结果。

        说明：
        - 快照来自外部协作方，字段类型不可信：output/error 统一转字符串，缺省为 None。
        """

        output = snapshot.get("output")
        error = snapshot.get("error")
        duration = snapshot.get("durationMs")
        return cls(
            run_id=str(snapshot.get("runId") or ""),
            agent=str(snapshot.get("agent") or UNKNOWN_AGENT),
            status=str(snapshot.get("status") or "unknown"),
            output=None if output is None else str(output),
            duration_ms=duration if is_finite_number(duration) else None,
            error=None if error is None else str(error),
        )

    @classmethod
    def not_found(cls, run_id: str) -> "AgentRunResult":
        """查询不到时的显式哨兵。"""

        return cls(run_id=run_id, agent=UNKNOWN_AGENT, status=NOT_FOUND_STATUS)

    def to_dict(self) -> Dict[str, Any]:
        """输出 wire 口径（camelCase）。"""

        return {
            "runId": self.run_id,
            "agent": self.agent,
            "status": self.status,
            "output": self.output,
            "durationMs": self.duration_ms,
            "error": self.error,
        }


@dataclass(frozen=True)
class SessionContext:
    """
    调用方会话上下文（仅 real 后端需要）。

    字段：
    - session_key / agent_id：必填；缺任一项视为“无会话上下文”
    - channel / account_id：可选
    """

    session_key: str
    agent_id: str
    channel: Optional[str] = None
    account_id: Optional[str] = None

    @classmethod
    def resolve(
        cls,
        *,
        session_key: Any = None,
        agent_id: Any = None,
        channel: Any = None,
        account_id: Any = None,
    ) -> Optional["SessionContext"]:
        """从宽松输入解析上下文；session_key 或 agent_id 为空时返回 None。"""

        key = read_string(session_key)
        agent = read_string(agent_id)
        if not key or not agent:
            return None
        return cls(
            session_key=key,
            agent_id=agent,
            channel=read_optional_string(channel),
            account_id=read_optional_string(account_id),
        )
