from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict

import pytest

from savc_orchestrator.core.memory_context import MemoryContext, build_task_with_memory


class _Broken:
    async def search(self, query: str, **kwargs: Any) -> Dict[str, Any]:
        raise RuntimeError("index offline")

    async def store(self, text: str, metadata: Any = None, options: Any = None) -> Any:
        raise RuntimeError("disk full")


def test_build_task_with_memory_format_and_cap() -> None:
    assert build_task_with_memory("t", []) == "t"
    assert build_task_with_memory("t", ["  ", ""]) == "t"
    assert build_task_with_memory("t", ["a", " b "]) == "[相关记忆]\n- a\n- b\n\n[用户请求]\nt"

    many = build_task_with_memory("t", [f"m{i}" for i in range(30)])
    assert many.count("\n- ") == 20
    assert "- m19" in many
    assert "- m20" not in many


def test_recall_and_persist_failures_degrade(caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.WARNING, logger="savc_orchestrator.core.memory_context")
    ctx = MemoryContext(_Broken(), workspace="/ws", min_score=0.3, persist_enabled=True)

    recalled = asyncio.run(ctx.recall("t", query="t", limit=3))
    assert recalled.final_task == "t"
    assert recalled.recall_count == 0
    assert "memory recall failed: index offline" in caplog.text

    assert asyncio.run(ctx.persist("x")) == (False, "disk full")


def test_auto_capture_requires_capability_and_persistence() -> None:
    ctx = MemoryContext(_Broken(), workspace=None, min_score=0.3, persist_enabled=True)
    assert asyncio.run(ctx.auto_capture(["a"], agent="x")).attempted is False

    off = MemoryContext(None, workspace=None, min_score=0.3, persist_enabled=False)
    assert asyncio.run(off.persist("x")) == (False, None)
    assert asyncio.run(off.recall("t", query="t", limit=1)).final_task == "t"
