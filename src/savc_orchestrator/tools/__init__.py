"""Tools 子包：工具协议、注册表与内置工具。"""

from savc_orchestrator.tools.protocol import ToolCall, ToolDetails, ToolResult, ToolSpec
from savc_orchestrator.tools.registry import OrchestratorToolContext, ToolRegistry

__all__ = [
    "ToolSpec",
    "ToolCall",
    "ToolDetails",
    "ToolResult",
    "ToolRegistry",
    "OrchestratorToolContext",
]
