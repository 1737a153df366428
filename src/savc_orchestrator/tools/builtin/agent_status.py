"""内置工具：savc_agent_status（按 runId 查询一次 run 状态）。"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from savc_orchestrator.core.errors import INVALID_PARAMS, STATUS_FAILED, OrchestratorCodedError
from savc_orchestrator.tools.protocol import ToolCall, ToolResult, ToolSpec
from savc_orchestrator.tools.registry import OrchestratorToolContext

TOOL_NAME = "savc_agent_status"


class _AgentStatusArgs(BaseModel):
    model_config = ConfigDict(extra="forbid")

    run_id: Any = Field(default=None, alias="runId")


SAVC_AGENT_STATUS_SPEC = ToolSpec(
    name=TOOL_NAME,
    description="查询一次 expert run 的状态；未知 runId 返回 not_found 而不是报错。",
    parameters={
        "type": "object",
        "properties": {"runId": {"type": "string", "description": "spawn 返回的 runId"}},
        "required": ["runId"],
        "additionalProperties": False,
    },
)


async def agent_status(call: ToolCall, ctx: OrchestratorToolContext) -> ToolResult:
    """执行 savc_agent_status；后端异常收敛为 STATUS_FAILED。"""

    try:
        args = _AgentStatusArgs.model_validate(call.args)
    except ValidationError as e:
        return ToolResult.failure(INVALID_PARAMS, str(e), summary=f"{TOOL_NAME} failed: {e}")

    try:
        result = await ctx.status.query(args.run_id)
    except OrchestratorCodedError as e:
        return ToolResult.failure(e.code, e.message, summary=f"{TOOL_NAME} failed: {e.message}")
    except Exception as e:
        return ToolResult.failure(STATUS_FAILED, str(e), summary=f"{TOOL_NAME} failed: {e}")

    return ToolResult.success(
        result.to_dict(),
        summary=f"{TOOL_NAME} => runId={result.run_id}, status={result.status}",
    )
