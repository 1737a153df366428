"""
Real Backend Adapter：把远端会话式能力面翻译成本地的类型化 lifecycle。

远端能力：
- sessions_spawn：创建子会话并启动一次 run
- sessions_send：向已有会话发消息（轻量桥接）
- 通用定时 RPC：`agent.wait` / `chat.history`

说明：
- 远端响应形态至少有两种：`details` 为结构化 object，或 `content[]` 第一个 text 项内是 JSON 字符串。
  本模块按固定顺序尝试解包，全部失败时按空 object 处理（fail-closed，不抛异常）。
- spawn 的业务失败以 `ok=False` 结果返回；send 的传输异常同样转换为结构化失败。
- wait/read 的传输异常向上抛出，由调用方（reconciler）决定如何降级。
"""

from __future__ import annotations

import json
import logging
import math
from dataclasses import dataclass
from typing import Any, Callable, List, Mapping, Optional, Sequence

from savc_orchestrator.backends.protocol import GatewayCall, SessionsToolFactory
from savc_orchestrator.core.contracts import SessionContext
from savc_orchestrator.core.errors import SEND_FAILED, SEND_FORBIDDEN, SPAWN_FAILED, SPAWN_FORBIDDEN
from savc_orchestrator.core.outcomes import PayloadResult, Unparseable, Unwrapped, payload_or_empty
from savc_orchestrator.core.utils import (
    compute_duration_ms,
    is_finite_number,
    now_ms,
    read_string,
    read_text_value,
    round_half_up,
)

logger = logging.getLogger(__name__)

SEND_OK_STATUSES = frozenset({"ok", "accepted", "timeout"})
DEFAULT_SEND_TIMEOUT_SECONDS = 10
DEFAULT_HISTORY_LIMIT = 50
DEFAULT_HISTORY_TIMEOUT_MS = 10_000
DEFAULT_WAIT_MARGIN_MS = 2_000


def _read_field(result: Any, name: str) -> Any:
    """同时兼容 dict 与带属性的对象。"""

    if isinstance(result, Mapping):
        return result.get(name)
    return getattr(result, name, None)


def unwrap_payload(result: Any) -> PayloadResult:
    """
    从 sessions 工具结果中解包 JSON object。

    尝试顺序：
    1) `details` 为 object
    2) `content[]` 中第一个 `type == "text"` 且 text 为字符串的项，其 text 可解析为 JSON object
    """

    details = _read_field(result, "details")
    if isinstance(details, Mapping):
        return Unwrapped(payload=dict(details), source="details")

    content = _read_field(result, "content")
    if not isinstance(content, (list, tuple)):
        return Unparseable("no details object and no content list")
    first_text: Optional[str] = None
    for item in content:
        if _read_field(item, "type") == "text" and isinstance(_read_field(item, "text"), str):
            first_text = _read_field(item, "text")
            break
    if not first_text:
        return Unparseable("no text item in content")
    try:
        parsed = json.loads(first_text)
    except ValueError:
        return Unparseable("content text is not valid JSON")
    if not isinstance(parsed, dict):
        return Unparseable("content JSON is not an object")
    return Unwrapped(payload=parsed, source="content")


def map_wait_status(status: str, *, treat_timeout_as_running: bool) -> str:
    """
    把远端自由格式状态映射到规范词表。

    - `ok` -> completed
    - `error` -> failed
    - `timeout` -> timeout（`treat_timeout_as_running=True` 时为 running）
    - 其它 -> running
    """

    normalized = status.lower()
    if normalized == "ok":
        return "completed"
    if normalized == "error":
        return "failed"
    if normalized == "timeout":
        return "running" if treat_timeout_as_running else "timeout"
    return "running"


def _text_fragment(item: Any) -> str:
    if isinstance(item, str):
        return item.strip()
    if not isinstance(item, Mapping):
        return ""
    if isinstance(item.get("text"), str):
        return item["text"].strip()
    if isinstance(item.get("value"), str):
        return item["value"].strip()
    return ""


def extract_assistant_text(messages: Sequence[Any]) -> Optional[str]:
    """从消息列表末尾向前找最近一条 assistant 消息的文本；找不到返回 None。"""

    for message in reversed(list(messages)):
        if not isinstance(message, Mapping):
            continue
        if read_string(message.get("role")) != "assistant":
            continue

        content = message.get("content")
        if isinstance(content, str) and content.strip():
            return content.strip()
        if isinstance(content, list):
            parts = [p for p in (_text_fragment(item) for item in content) if p]
            if parts:
                return "\n".join(parts).strip()

        fallback = read_text_value(message.get("text"))
        if fallback:
            return fallback
    return None


@dataclass(frozen=True)
class RealSpawnResult:
    """sessions_spawn 结果（ok=False 时 code/error 有值）。"""

    ok: bool
    run_id: Optional[str] = None
    child_session_key: Optional[str] = None
    status: Optional[str] = None
    warning: Optional[str] = None
    code: Optional[str] = None
    error: Optional[str] = None


@dataclass(frozen=True)
class RealSendResult:
    """sessions_send 结果（`ok|accepted|timeout` 视为非失败）。"""

    ok: bool
    status: str
    run_id: Optional[str] = None
    reply: Optional[str] = None
    error: Optional[str] = None
    code: Optional[str] = None


@dataclass(frozen=True)
class RealWaitResult:
    """`agent.wait` 结果（状态已映射到规范词表）。"""

    run_id: str
    status: str
    error: Optional[str] = None
    started_at: Optional[float] = None
    ended_at: Optional[float] = None
    duration_ms: Optional[int] = None


class RealSessionAdapter:
    """
    远端会话式后端适配器。

    参数：
    - sessions_tools：按调用方上下文创建 sessions_spawn / sessions_send 工具
    - gateway：通用定时 RPC 调用
    - wait_margin_ms：`agent.wait` 传输层超时在等待窗口之上追加的余量
    - history_timeout_ms：`chat.history` 传输层超时
    - send_timeout_seconds：sessions_send 未给出有限超时时使用的默认值
    - clock：生成 call id 用的毫秒时钟（测试可注入）
    """

    def __init__(
        self,
        *,
        sessions_tools: SessionsToolFactory,
        gateway: GatewayCall,
        wait_margin_ms: int = DEFAULT_WAIT_MARGIN_MS,
        history_timeout_ms: int = DEFAULT_HISTORY_TIMEOUT_MS,
        send_timeout_seconds: int = DEFAULT_SEND_TIMEOUT_SECONDS,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self._sessions_tools = sessions_tools
        self._gateway = gateway
        self._wait_margin_ms = int(wait_margin_ms)
        self._history_timeout_ms = int(history_timeout_ms)
        self._send_timeout_seconds = int(send_timeout_seconds)
        self._clock = clock

    async def spawn(
        self,
        *,
        session: SessionContext,
        target_agent: str,
        task: str,
        timeout_ms: int,
        label: Optional[str] = None,
    ) -> RealSpawnResult:
        """
        通过 sessions_spawn 启动子会话 run。

        参数：
        - session：调用方会话上下文（作为 requester）
        - target_agent：目标 expert 名（远端 agentId）
        - task：下发任务文本
        - timeout_ms：run 超时；换算为整秒（向上取整，最少 1s）
        - label：子会话 label

        说明：
        - 成功要求 `status == "accepted"` 且 runId / childSessionKey 均非空
        - `status == "forbidden"` 映射为 `SPAWN_FORBIDDEN`，其它失败为 `SPAWN_FAILED`
        """

        tool = self._sessions_tools("spawn", session)
        raw = await tool.execute(
            f"savc-spawn-{self._clock()}",
            {
                "task": task,
                "agentId": target_agent,
                "label": label,
                "cleanup": "keep",
                "runTimeoutSeconds": max(1, math.ceil(timeout_ms / 1000)),
            },
        )
        unwrapped = unwrap_payload(raw)
        if isinstance(unwrapped, Unparseable):
            logger.debug("sessions_spawn payload unparseable: %s", unwrapped.reason)
        payload = payload_or_empty(unwrapped)

        status = read_string(payload.get("status"))
        run_id = read_string(payload.get("runId"))
        child_session_key = read_string(payload.get("childSessionKey"))
        warning = read_string(payload.get("warning")) or None

        if status != "accepted" or not run_id or not child_session_key:
            return RealSpawnResult(
                ok=False,
                code=SPAWN_FORBIDDEN if status == "forbidden" else SPAWN_FAILED,
                error=read_string(payload.get("error")) or "sessions_spawn did not return an accepted run",
                status=status or None,
            )
        return RealSpawnResult(
            ok=True,
            run_id=run_id,
            child_session_key=child_session_key,
            status="accepted",
            warning=warning,
        )

    async def send(
        self,
        *,
        session: SessionContext,
        target_session_key: str,
        message: str,
        timeout_seconds: Any = None,
    ) -> RealSendResult:
        """
        通过 sessions_send 向已有会话发消息。

        参数：
        - session：调用方会话上下文
        - target_session_key：目标会话
        - message：消息正文
        - timeout_seconds：有限数值取 `max(0, round(x))`，否则使用构造时的默认值（10）

        说明：
        - 工具执行抛异常时返回 `SEND_FAILED`（status=error），不向上抛
        - 缺失 status 视为 `error`
        """

        timeout = (
            max(0, round_half_up(timeout_seconds))
            if is_finite_number(timeout_seconds)
            else self._send_timeout_seconds
        )
        tool = self._sessions_tools("send", session)
        try:
            raw = await tool.execute(
                f"savc-send-{self._clock()}",
                {
                    "sessionKey": target_session_key,
                    "message": message,
                    "timeoutSeconds": timeout,
                },
            )
        except Exception as exc:
            logger.warning("sessions_send failed: target=%s error=%s", target_session_key, exc)
            return RealSendResult(ok=False, code=SEND_FAILED, status="error", error=str(exc))

        payload = payload_or_empty(unwrap_payload(raw))
        status = read_string(payload.get("status")) or "error"
        run_id = read_string(payload.get("runId")) or None
        reply = read_text_value(payload.get("reply")) or None
        error_text = read_string(payload.get("error")) or None

        if status in SEND_OK_STATUSES:
            return RealSendResult(ok=True, status=status, run_id=run_id, reply=reply, error=error_text)
        return RealSendResult(
            ok=False,
            code=SEND_FORBIDDEN if status == "forbidden" else SEND_FAILED,
            status=status,
            run_id=run_id,
            reply=reply,
            error=error_text or "sessions_send returned an error status",
        )

    async def wait(
        self,
        run_id: str,
        timeout_ms: float,
        *,
        treat_timeout_as_running: bool = False,
    ) -> RealWaitResult:
        """
        调用 `agent.wait` 等待 run。

        参数：
        - run_id：远端 runId
        - timeout_ms：请求的等待窗口（`max(0, round(t))`）
        - treat_timeout_as_running：True 时远端 `timeout` 映射为 running（soft-timeout）

        说明：
        - 传输层超时为 `max(margin, round(t) + margin)`，避免把合法的“仍在运行”响应截断
        """

        window = round_half_up(timeout_ms)
        payload = await self._gateway.call(
            "agent.wait",
            {"runId": run_id, "timeoutMs": max(0, window)},
            timeout_ms=max(self._wait_margin_ms, window + self._wait_margin_ms),
        )
        payload = payload if isinstance(payload, Mapping) else {}

        started_at = payload.get("startedAt") if is_finite_number(payload.get("startedAt")) else None
        ended_at = payload.get("endedAt") if is_finite_number(payload.get("endedAt")) else None
        return RealWaitResult(
            run_id=run_id,
            status=map_wait_status(
                read_string(payload.get("status")) or "running",
                treat_timeout_as_running=treat_timeout_as_running,
            ),
            error=read_string(payload.get("error")) or None,
            started_at=started_at,
            ended_at=ended_at,
            duration_ms=compute_duration_ms(started_at, ended_at),
        )

    async def read_latest_reply(self, session_key: str, *, limit: Any = None) -> Optional[str]:
        """
        读取会话最近一条 assistant 回复。

        参数：
        - session_key：子会话 key
        - limit：历史窗口；有限数值取 `max(1, round(x))`，否则 50
        """

        n = max(1, round_half_up(limit)) if is_finite_number(limit) else DEFAULT_HISTORY_LIMIT
        payload = await self._gateway.call(
            "chat.history",
            {"sessionKey": session_key, "limit": n},
            timeout_ms=self._history_timeout_ms,
        )
        messages: List[Any] = []
        if isinstance(payload, Mapping) and isinstance(payload.get("messages"), list):
            messages = payload["messages"]
        return extract_assistant_text(messages)
