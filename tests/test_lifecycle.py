from __future__ import annotations

import asyncio
from typing import Any, Mapping

import pytest

from savc_orchestrator.backends.lifecycle import InProcessLifecycle

FAST = {"name": "coder", "limits": {"mock_delay_ms": 1}}


def test_spawn_and_wait_completes_with_builtin_executor() -> None:
    async def _run() -> Any:
        lc = InProcessLifecycle()
        run_id = await lc.spawn_agent(FAST, "hello")
        return await lc.wait_for_agent(run_id)

    snap = asyncio.run(_run())
    assert snap["status"] == "completed"
    assert snap["output"] == "coder: hello"
    assert snap["agent"] == "coder"
    assert snap["durationMs"] is not None


def test_fail_marker_fails_run() -> None:
    async def _run() -> Any:
        lc = InProcessLifecycle()
        return await lc.wait_for_agent(await lc.spawn_agent(FAST, "please [FAIL] now"))

    snap = asyncio.run(_run())
    assert snap["status"] == "failed"
    assert snap["error"] == "mock executor failure"


def test_run_timeout_from_explicit_option() -> None:
    async def _slow(agent_def: Mapping[str, Any], task: str, run_id: str) -> str:
        await asyncio.sleep(1)
        return "late"

    async def _run() -> Any:
        lc = InProcessLifecycle(executor=_slow)
        return await lc.wait_for_agent(await lc.spawn_agent(FAST, "t", timeout_ms=20))

    snap = asyncio.run(_run())
    assert snap["status"] == "timeout"
    assert snap["error"] == "timeout after 20ms"


def test_run_timeout_from_agent_limits() -> None:
    async def _run() -> Any:
        lc = InProcessLifecycle()
        await lc.spawn_agent({"name": "x", "limits": {"timeout_seconds": 2, "mock_delay_ms": 1}}, "t", run_id="fixed")
        return lc, await lc.wait_for_agent("fixed")

    lc, snap = asyncio.run(_run())
    assert snap["runId"] == "fixed"
    assert lc._runs["fixed"].timeout_ms == 2000


def test_bounded_wait_returns_running_snapshot_with_wait_timeout() -> None:
    async def _run() -> Any:
        lc = InProcessLifecycle()
        run_id = await lc.spawn_agent({"name": "x", "limits": {"mock_delay_ms": 500}}, "t")
        snap = await lc.wait_for_agent(run_id, 10)
        await lc.cancel_agent(run_id)
        return snap

    snap = asyncio.run(_run())
    assert snap["status"] == "running"
    assert snap["error"] == "wait timeout after 10ms"


def test_cancel_and_unknown_ids() -> None:
    async def _run() -> Any:
        lc = InProcessLifecycle()
        run_id = await lc.spawn_agent({"name": "x", "limits": {"mock_delay_ms": 500}}, "t")
        first = await lc.cancel_agent(run_id)
        second = await lc.cancel_agent(run_id)
        missing = await lc.cancel_agent("nope")
        return lc.get_status(run_id), first, second, missing, lc.get_status("nope")

    status, first, second, missing, none = asyncio.run(_run())
    assert status["status"] == "failed"
    assert status["error"] == "cancelled by caller"
    assert first["cancelled"] is True
    assert second["reason"] == "already-failed"
    assert missing["reason"] == "not-found"
    assert none is None


def test_wait_unknown_run_raises_key_error() -> None:
    with pytest.raises(KeyError):
        asyncio.run(InProcessLifecycle().wait_for_agent("nope"))


def test_set_executor_replaces_and_restores_default() -> None:
    async def _custom(agent_def: Mapping[str, Any], task: str, run_id: str) -> str:
        return f"custom:{run_id}"

    async def _run() -> Any:
        lc = InProcessLifecycle()
        lc.set_executor(_custom)
        a = await lc.wait_for_agent(await lc.spawn_agent(FAST, "t", run_id="r1"))
        lc.set_executor(None)
        b = await lc.wait_for_agent(await lc.spawn_agent(FAST, "t"))
        return a, b

    a, b = asyncio.run(_run())
    assert a["output"] == "custom:r1"
    assert b["output"] == "coder: t"


def test_loop_shutdown_keeps_run_running_and_next_loop_resumes_it() -> None:
    lc = InProcessLifecycle()
    run_id = asyncio.run(lc.spawn_agent({"name": "x", "limits": {"mock_delay_ms": 30}}, "t"))

    assert lc.get_status(run_id)["status"] == "running"  # type: ignore[index]

    snap = asyncio.run(lc.wait_for_agent(run_id))
    assert snap["status"] == "completed"
    assert snap["output"] == "x: t"
    assert snap["error"] is None


def test_wait_on_cancelled_run_returns_snapshot() -> None:
    async def _run() -> Any:
        lc = InProcessLifecycle()
        run_id = await lc.spawn_agent({"name": "x", "limits": {"mock_delay_ms": 500}}, "t")
        await lc.cancel_agent(run_id)
        return await lc.wait_for_agent(run_id)

    snap = asyncio.run(_run())
    assert snap["status"] == "failed"
    assert snap["error"] == "cancelled by caller"
