"""
Tool 协议（ToolSpec / ToolCall / ToolDetails / ToolResult）。

本模块只定义最小协议：
- ToolSpec：注册表条目（JSON schema 形参）
- ToolCall：执行输入（call_id/name/args）
- ToolDetails：统一 envelope `{ok, code, error, data}`
- ToolResult：执行输出（一行文本摘要 content + 结构化 details）
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

OK_CODE = "ok"


class ToolSpec(BaseModel):
    """
    Tool 注册信息。

    字段：
    - name：工具名（全局唯一，稳定）
    - description：工具说明
    - parameters：JSON Schema（必须为 object schema）
    """

    model_config = ConfigDict(extra="forbid")

    name: str
    description: str
    parameters: Dict[str, Any] = Field(default_factory=dict)


class ToolCall(BaseModel):
    """Tool 调用（call_id / name / 已解析的 args）。"""

    model_config = ConfigDict(extra="forbid")

    call_id: str
    name: str
    args: Dict[str, Any] = Field(default_factory=dict)


class ToolDetails(BaseModel):
    """
    统一 envelope。

    约束：
    - ok=True 时 code 为 `ok`、error 为 None
    - ok=False 时 data 为 None，code 为稳定错误码
    """

    model_config = ConfigDict(extra="forbid")

    ok: bool
    code: str
    error: Optional[str] = None
    data: Optional[Dict[str, Any]] = None


class ToolResult(BaseModel):
    """
    Tool 执行结果。

    字段：
    - content：一行文本摘要（面向调用方/日志）
    - details：`ToolDetails` envelope
    """

    model_config = ConfigDict(extra="forbid")

    content: str
    details: ToolDetails

    @property
    def ok(self) -> bool:
        return self.details.ok

    @classmethod
    def success(cls, data: Dict[str, Any], *, summary: str) -> "ToolResult":
        """便捷构造：成功结果。"""

        return cls(content=summary, details=ToolDetails(ok=True, code=OK_CODE, error=None, data=data))

    @classmethod
    def failure(cls, code: str, error: str, *, summary: Optional[str] = None) -> "ToolResult":
        """便捷构造：失败结果（summary 缺省为 error）。"""

        return cls(
            content=summary if summary is not None else error,
            details=ToolDetails(ok=False, code=code, error=error, data=None),
        )

    def to_payload(self) -> Dict[str, Any]:
        """序列化为宿主期望的 `{content: [{type, text}], details}` 形状。"""

        return {
            "content": [{"type": "text", "text": self.content}],
            "details": self.details.model_dump(),
        }
