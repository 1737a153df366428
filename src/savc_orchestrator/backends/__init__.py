"""
执行后端（mock / real）与外部协作方契约。

入口：`savc_orchestrator.backends.factory.build_backend`
"""

from __future__ import annotations
