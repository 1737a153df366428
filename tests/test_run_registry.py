from __future__ import annotations

import pytest

from savc_orchestrator.core.contracts import RunRecord
from savc_orchestrator.core.errors import RunRegistryError
from savc_orchestrator.state.run_registry import RunRegistry


def test_upsert_rejects_blank_run_id() -> None:
    reg = RunRegistry()
    with pytest.raises(RunRegistryError):
        reg.upsert(RunRecord(run_id="   ", agent="vibe-coder"))
    assert len(reg) == 0


def test_upsert_normalizes_invalid_status_to_running_and_derives_duration() -> None:
    reg = RunRegistry()
    stored = reg.upsert(RunRecord(run_id="r1", agent="a", status="weird", started_at=1000, ended_at=1450))

    assert stored.status == "running"
    assert stored.duration_ms == 450


def test_get_returns_copy_not_internal_reference() -> None:
    reg = RunRegistry()
    reg.upsert(RunRecord(run_id="r1", agent="a"))

    got = reg.get("r1")
    assert got is not None
    got.status = "completed"
    assert reg.get("r1").status == "running"  # type: ignore[union-attr]


def test_get_blank_or_unknown_returns_none() -> None:
    reg = RunRegistry()
    assert reg.get("") is None
    assert reg.get(None) is None
    assert reg.get("missing") is None


def test_patch_unknown_run_is_noop() -> None:
    reg = RunRegistry()
    assert reg.patch("missing", {"status": "completed"}) is None
    assert reg.list() == []


def test_patch_invalid_status_keeps_previous_status() -> None:
    reg = RunRegistry()
    reg.upsert(RunRecord(run_id="r1", agent="a", status="accepted"))

    patched = reg.patch("r1", {"status": "bogus", "output": "hi"})
    assert patched is not None
    assert patched.status == "accepted"
    assert patched.output == "hi"


def test_patch_ignores_run_id_and_unknown_fields() -> None:
    reg = RunRegistry()
    reg.upsert(RunRecord(run_id="r1", agent="a"))

    patched = reg.patch("r1", {"run_id": "r2", "nope": 1, "status": "completed"})
    assert patched is not None
    assert patched.run_id == "r1"
    assert patched.status == "completed"
    assert reg.get("r2") is None


def test_patch_rederives_duration_from_timestamps() -> None:
    reg = RunRegistry()
    reg.upsert(RunRecord(run_id="r1", agent="a", started_at=100))

    patched = reg.patch("r1", {"ended_at": 350, "status": "completed"})
    assert patched is not None
    assert patched.duration_ms == 250


def test_ensure_is_idempotent_and_keeps_existing() -> None:
    reg = RunRegistry()
    first = reg.ensure(run_id="r1", agent="a", status="accepted", child_session_key="agent:a:subagent:1")
    reg.patch("r1", {"status": "completed"})
    second = reg.ensure(run_id="r1", agent="other", status="accepted")

    assert first.status == "accepted"
    assert second.status == "completed"
    assert second.agent == "a"
    assert len(reg) == 1


def test_ensure_defaults_to_running() -> None:
    reg = RunRegistry()
    assert reg.ensure(run_id="r1", agent="a").status == "running"


def test_list_and_clear() -> None:
    reg = RunRegistry()
    reg.ensure(run_id="r1", agent="a")
    reg.ensure(run_id="r2", agent="b")
    assert reg.list() == ["r1", "r2"]

    reg.clear()
    assert reg.list() == []


def test_record_to_dict_uses_wire_keys() -> None:
    rec = RunRecord(run_id="r1", agent="a", child_session_key="k", duration_ms=5)
    d = rec.to_dict()
    assert d["runId"] == "r1"
    assert d["childSessionKey"] == "k"
    assert d["durationMs"] == 5


def test_patch_explicit_duration_overrides_derivation() -> None:
    reg = RunRegistry()
    reg.upsert(RunRecord(run_id="r1", agent="a"))

    derived = reg.patch("r1", {"status": "completed", "started_at": 10, "ended_at": 20})
    assert derived is not None
    assert derived.duration_ms == 10

    reg.upsert(RunRecord(run_id="r2", agent="a"))
    explicit = reg.patch("r2", {"started_at": 10, "ended_at": 20, "duration_ms": 3})
    assert explicit is not None
    assert explicit.duration_ms == 3


def test_upsert_then_get_returns_equal_record() -> None:
    reg = RunRegistry()
    record = RunRecord(
        run_id="r1",
        agent="vibe-coder",
        status="completed",
        child_session_key="agent:vibe-coder:subagent:1",
        output="done",
        error=None,
        started_at=1000,
        ended_at=1300,
        duration_ms=300,
    )

    stored = reg.upsert(record)

    assert stored == record
    assert reg.get("r1") == stored
    assert reg.get("r1") is not stored
