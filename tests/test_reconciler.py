from __future__ import annotations

import asyncio
from typing import Any, Dict, List

from savc_orchestrator.backends.real_session_adapter import RealSessionAdapter
from savc_orchestrator.core.contracts import RunRecord
from savc_orchestrator.core.outcomes import Fallback, Ok
from savc_orchestrator.core.reconciler import RunReconciler
from savc_orchestrator.state.run_registry import RunRegistry


class _Gateway:
    """按 method 返回预置响应；history 可配置为抛异常。"""

    def __init__(self, *, wait: Dict[str, Any], history: Any = None) -> None:
        self.wait = wait
        self.history = history
        self.calls: List[str] = []

    async def call(self, method: str, params: Dict[str, Any], *, timeout_ms: int) -> Dict[str, Any]:
        self.calls.append(method)
        if method == "agent.wait":
            return self.wait
        if isinstance(self.history, Exception):
            raise self.history
        return self.history or {"messages": []}


def _unused_factory(kind: str, context: Any) -> Any:
    raise AssertionError("sessions tools must not be used by the reconciler")


def _setup(gateway: _Gateway) -> tuple[RunRegistry, RunReconciler]:
    reg = RunRegistry()
    adapter = RealSessionAdapter(sessions_tools=_unused_factory, gateway=gateway)
    return reg, RunReconciler(reg, adapter, status_poll_ms=250, history_limit=80)


def test_reconcile_unknown_run_returns_none_without_calls() -> None:
    gw = _Gateway(wait={"status": "ok"})
    _reg, rec = _setup(gw)
    assert asyncio.run(rec.reconcile("missing")) is None
    assert gw.calls == []


def test_reconcile_terminal_record_makes_no_backend_call() -> None:
    gw = _Gateway(wait={"status": "ok"})
    reg, rec = _setup(gw)
    reg.upsert(RunRecord(run_id="r1", agent="a", status="failed", error="x"))

    got = asyncio.run(rec.reconcile("r1"))

    assert got is not None
    assert got.status == "failed"
    assert gw.calls == []


def test_reconcile_soft_timeout_keeps_record_unchanged() -> None:
    gw = _Gateway(wait={"status": "timeout"})
    reg, rec = _setup(gw)
    reg.ensure(run_id="r1", agent="a", status="accepted", child_session_key="c")

    got = asyncio.run(rec.reconcile("r1"))

    assert got is not None
    assert got.status == "accepted"
    assert gw.calls == ["agent.wait"]


def test_reconcile_completion_backfills_output_once() -> None:
    gw = _Gateway(
        wait={"status": "ok", "startedAt": 10, "endedAt": 60},
        history={"messages": [{"role": "assistant", "content": "final answer"}]},
    )
    reg, rec = _setup(gw)
    reg.ensure(run_id="r1", agent="a", status="running", child_session_key="c")

    got = asyncio.run(rec.reconcile("r1"))

    assert got is not None
    assert got.status == "completed"
    assert got.output == "final answer"
    assert got.duration_ms == 50
    assert gw.calls == ["agent.wait", "chat.history"]

    asyncio.run(rec.reconcile("r1"))
    assert gw.calls == ["agent.wait", "chat.history"]


def test_reconcile_backfill_failure_still_completes() -> None:
    gw = _Gateway(wait={"status": "ok"}, history=RuntimeError("history down"))
    reg, rec = _setup(gw)
    reg.ensure(run_id="r1", agent="a", child_session_key="c")

    got = asyncio.run(rec.reconcile("r1"))

    assert got is not None
    assert got.status == "completed"
    assert got.output is None


def test_reconcile_error_status_maps_to_failed_without_history() -> None:
    gw = _Gateway(wait={"status": "error", "error": "crashed"})
    reg, rec = _setup(gw)
    reg.ensure(run_id="r1", agent="a", child_session_key="c")

    got = asyncio.run(rec.reconcile("r1"))

    assert got is not None
    assert got.status == "failed"
    assert got.error == "crashed"
    assert gw.calls == ["agent.wait"]


def test_settle_treats_remote_timeout_as_terminal() -> None:
    gw = _Gateway(wait={"status": "timeout"})
    reg, rec = _setup(gw)
    reg.ensure(run_id="r1", agent="a", status="accepted", child_session_key="c")

    got = asyncio.run(rec.settle("r1", 1000))

    assert got is not None
    assert got.status == "timeout"


def test_backfill_output_outcomes() -> None:
    gw = _Gateway(wait={}, history=RuntimeError("nope"))
    _reg, rec = _setup(gw)

    no_child = asyncio.run(rec.backfill_output("prior", None))
    assert isinstance(no_child, Fallback)
    assert no_child.value == "prior"

    failed = asyncio.run(rec.backfill_output("prior", "c"))
    assert isinstance(failed, Fallback)
    assert failed.error == "nope"

    gw.history = {"messages": [{"role": "assistant", "content": "r"}]}
    ok = asyncio.run(rec.backfill_output(None, "c"))
    assert isinstance(ok, Ok)
    assert ok.value == "r"


def test_settle_with_remote_end_only_does_not_mix_clocks() -> None:
    gw = _Gateway(wait={"status": "error", "endedAt": 5000})
    reg, rec = _setup(gw)
    reg.ensure(run_id="r1", agent="a", status="accepted", child_session_key="c", started_at=1_792_416_320_987)

    got = asyncio.run(rec.settle("r1", 1000))

    assert got is not None
    assert got.status == "failed"
    assert got.started_at is None
    assert got.ended_at == 5000
    assert got.duration_ms is None


def test_reconcile_without_remote_timestamps_keeps_local_start() -> None:
    gw = _Gateway(wait={"status": "error", "error": "boom"})
    reg, rec = _setup(gw)
    reg.ensure(run_id="r1", agent="a", status="running", child_session_key="c", started_at=100)

    got = asyncio.run(rec.reconcile("r1"))

    assert got is not None
    assert got.status == "failed"
    assert got.started_at == 100
    assert got.ended_at is None
    assert got.duration_ms is None
