"""
内置工具：savc_spawn_expert（委派一个 expert agent 执行任务）。

说明：
- 参数按 camelCase 接收；未知参数直接拒绝（INVALID_PARAMS）
- 字段值保持宽松（字符串数字、"true"/"false" 等），由编排服务统一解析
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from savc_orchestrator.core.errors import INVALID_PARAMS, SPAWN_FAILED, OrchestratorCodedError
from savc_orchestrator.tools.protocol import ToolCall, ToolResult, ToolSpec
from savc_orchestrator.tools.registry import OrchestratorToolContext

TOOL_NAME = "savc_spawn_expert"


class _SpawnExpertArgs(BaseModel):
    """savc_spawn_expert 输入参数。"""

    model_config = ConfigDict(extra="forbid")

    agent: Any = None
    task: Any = None
    wait: Any = None
    timeout_ms: Any = Field(default=None, alias="timeoutMs")
    label: Any = None
    recall_query: Any = Field(default=None, alias="recallQuery")
    recall_limit: Any = Field(default=None, alias="recallLimit")
    persist_memory: Any = Field(default=None, alias="persistMemory")
    use_sessions_send: Any = Field(default=None, alias="useSessionsSend")
    target_session_key: Any = Field(default=None, alias="targetSessionKey")
    handoff_message: Any = Field(default=None, alias="handoffMessage")
    handoff_timeout_seconds: Any = Field(default=None, alias="handoffTimeoutSeconds")


SAVC_SPAWN_EXPERT_SPEC = ToolSpec(
    name=TOOL_NAME,
    description="委派一个 expert agent 执行任务（可选等待完成、语义召回与 sessions_send 桥接）。",
    parameters={
        "type": "object",
        "properties": {
            "agent": {"type": "string", "description": "expert 名称"},
            "task": {"type": "string", "description": "任务文本"},
            "wait": {"type": "boolean"},
            "timeoutMs": {"type": "integer", "minimum": 1},
            "label": {"type": "string"},
            "recallQuery": {"type": "string"},
            "recallLimit": {"type": "integer", "minimum": 1},
            "persistMemory": {"type": "boolean"},
            "useSessionsSend": {"type": "boolean"},
            "targetSessionKey": {"type": "string"},
            "handoffMessage": {"type": "string"},
            "handoffTimeoutSeconds": {"type": "integer", "minimum": 1},
        },
        "required": ["agent", "task"],
        "additionalProperties": False,
    },
)


def _failure(code: str, message: str) -> ToolResult:
    return ToolResult.failure(code, message, summary=f"{TOOL_NAME} failed: {message}")


async def spawn_expert(call: ToolCall, ctx: OrchestratorToolContext) -> ToolResult:
    """
    执行 savc_spawn_expert。

    返回：
    - 成功：data 为 `SpawnReport.to_dict()`
    - 失败：INVALID_PARAMS（参数）/ 编排层错误码 / SPAWN_FAILED（其它异常）
    """

    try:
        args = _SpawnExpertArgs.model_validate(call.args)
    except ValidationError as e:
        return _failure(INVALID_PARAMS, str(e))

    try:
        report = await ctx.spawner.spawn(
            agent=args.agent,
            task=args.task,
            session=ctx.session(),
            wait=args.wait,
            timeout_ms=args.timeout_ms,
            label=args.label,
            recall_query=args.recall_query,
            recall_limit=args.recall_limit,
            persist_memory=args.persist_memory,
            use_sessions_send=args.use_sessions_send,
            target_session_key=args.target_session_key,
            handoff_message=args.handoff_message,
            handoff_timeout_seconds=args.handoff_timeout_seconds,
        )
    except OrchestratorCodedError as e:
        return _failure(e.code, e.message)
    except Exception as e:
        return _failure(SPAWN_FAILED, str(e))

    result = report.result
    return ToolResult.success(
        report.to_dict(),
        summary=f"{TOOL_NAME} => runId={result.run_id}, status={result.status}, agent={result.agent}",
    )
