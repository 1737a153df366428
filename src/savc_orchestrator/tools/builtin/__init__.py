"""
内置工具集合（savc_spawn_expert / savc_agent_status）。

通过 `register_builtin_tools(registry)` 一次性注册。
"""

from __future__ import annotations

from savc_orchestrator.core.errors import SPAWN_FAILED, STATUS_FAILED
from savc_orchestrator.tools.builtin.agent_status import SAVC_AGENT_STATUS_SPEC, agent_status
from savc_orchestrator.tools.builtin.spawn_expert import SAVC_SPAWN_EXPERT_SPEC, spawn_expert
from savc_orchestrator.tools.registry import ToolRegistry

_BUILTIN_TOOL_ENTRIES = [
    (SAVC_SPAWN_EXPERT_SPEC, spawn_expert, SPAWN_FAILED),
    (SAVC_AGENT_STATUS_SPEC, agent_status, STATUS_FAILED),
]


def register_builtin_tools(registry: ToolRegistry) -> None:
    """把内置工具注册到 registry（重复注册抛 ValueError）。"""

    for spec, handler, fallback_code in _BUILTIN_TOOL_ENTRIES:
        registry.register(spec, handler, fallback_code=fallback_code)


__all__ = ["register_builtin_tools", "SAVC_SPAWN_EXPERT_SPEC", "SAVC_AGENT_STATUS_SPEC"]
