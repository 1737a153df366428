"""
savc_orchestrator：expert agent 委派编排（mock / real 双后端）。

推荐用法：`from savc_orchestrator import OrchestratorPlugin`
"""

from __future__ import annotations

from savc_orchestrator.config.loader import OrchestratorConfig, load_config
from savc_orchestrator.plugin import OrchestratorPlugin
from savc_orchestrator.tools.protocol import ToolResult

__version__ = "0.1.0"

__all__ = ["OrchestratorPlugin", "OrchestratorConfig", "ToolResult", "load_config", "__version__"]
