"""expert 定义发现（YAML 目录）。"""

from __future__ import annotations

from savc_orchestrator.agents.registry import YamlAgentRegistry

__all__ = ["YamlAgentRegistry"]
