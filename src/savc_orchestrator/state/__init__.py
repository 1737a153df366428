"""进程内状态（run 记录表）。"""

from __future__ import annotations

from savc_orchestrator.state.run_registry import RunRegistry

__all__ = ["RunRegistry"]
