from __future__ import annotations

import asyncio
import json
from typing import Any, Dict, List, Optional, Tuple

from savc_orchestrator.config.loader import load_config_dicts
from savc_orchestrator.plugin import OrchestratorPlugin
from savc_orchestrator.tools.protocol import ToolResult

SESSION_KW = {"session_key": "agent:main:main", "agent_id": "main"}

AGENTS = {
    "vibe-coder": {"name": "vibe-coder", "model": {"primary": "x"}, "triggers": {}, "limits": {"mock_delay_ms": 1}},
    "memory": {"name": "memory", "model": {"primary": "x"}, "triggers": {}, "limits": {"mock_delay_ms": 1}},
}


class _Agents:
    def __init__(self) -> None:
        self.reloads = 0

    def discover_agents(self, agents_dir: Optional[str] = None, *, force_reload: bool = False) -> List[Dict[str, Any]]:
        if force_reload:
            self.reloads += 1
        return list(AGENTS.values())

    def get_agent(self, name: str) -> Optional[Dict[str, Any]]:
        found = AGENTS.get(name)
        return dict(found) if found is not None else None


class _Memory:
    def __init__(self, matches: List[str]) -> None:
        self.matches = matches
        self.searches: List[Tuple[str, int]] = []
        self.stored: List[Tuple[str, Dict[str, Any]]] = []
        self.captured: List[Dict[str, Any]] = []

    async def search(self, query: str, *, workspace: Any = None, limit: int = 3, min_score: float = 0.0) -> Dict[str, Any]:
        self.searches.append((query, limit))
        return {"matches": [{"text": m} for m in self.matches]}

    async def store(self, text: str, metadata: Any = None, options: Any = None) -> Any:
        self.stored.append((text, dict(metadata or {})))
        return {"id": "m1"}

    async def auto_capture(self, inputs: List[str], *, workspace: Any, source: str, limit: int) -> Dict[str, Any]:
        self.captured.append({"inputs": list(inputs), "source": source, "limit": limit})
        return {"stored": 1}


class _Tool:
    def __init__(self, owner: "_Sessions", kind: str) -> None:
        self._owner = owner
        self._kind = kind

    async def execute(self, call_id: str, args: Dict[str, Any]) -> Any:
        self._owner.calls.append((self._kind, args))
        payload = self._owner.spawn_payload if self._kind == "spawn" else self._owner.send_payload
        return {"content": [{"type": "text", "text": json.dumps(payload)}]}


class _Sessions:
    def __init__(self) -> None:
        self.spawn_payload: Dict[str, Any] = {
            "status": "accepted",
            "runId": "run-1",
            "childSessionKey": "agent:vibe-coder:subagent:abc",
        }
        self.send_payload: Dict[str, Any] = {"status": "ok", "runId": "send-1", "reply": "bridged reply"}
        self.calls: List[Tuple[str, Dict[str, Any]]] = []

    def __call__(self, kind: str, context: Any) -> _Tool:
        return _Tool(self, kind)

    def count(self, kind: str) -> int:
        return sum(1 for k, _ in self.calls if k == kind)


class _Gateway:
    def __init__(self, *, wait: Any = None, history: Any = None) -> None:
        self.wait = wait if wait is not None else {"status": "ok", "startedAt": 1, "endedAt": 21}
        self.history = history if history is not None else {"messages": [{"role": "assistant", "content": "expert done"}]}
        self.calls: List[str] = []

    async def call(self, method: str, params: Dict[str, Any], *, timeout_ms: int) -> Dict[str, Any]:
        self.calls.append(method)
        value = self.wait if method == "agent.wait" else self.history
        if isinstance(value, Exception):
            raise value
        return value


def _plugin(mode: str = "mock", **kwargs: Any) -> OrchestratorPlugin:
    cfg = load_config_dicts([{"spawn_mode": mode, "default_timeout_ms": 5000}])
    kwargs.setdefault("agents", _Agents())
    return OrchestratorPlugin(cfg, attach_log=False, **kwargs)


def _spawn(plugin: OrchestratorPlugin, args: Dict[str, Any], **session: Any) -> ToolResult:
    return asyncio.run(plugin.execute("savc_spawn_expert", args, **session))


def test_mock_spawn_splices_recalled_memory_into_task() -> None:
    memory = _Memory(["用户偏好 TypeScript", "  "])
    plugin = _plugin(memory=memory)

    res = _spawn(plugin, {"agent": "vibe-coder", "task": "写一个函数"})

    assert res.ok
    data = res.details.data or {}
    assert data["result"]["status"] == "completed"
    assert "[相关记忆]\n- 用户偏好 TypeScript\n\n[用户请求]\n写一个函数" in data["result"]["output"]
    assert data["memory"]["recallEnabled"] is True
    assert data["memory"]["recallCount"] == 1
    assert data["spawn"]["mode"] == "mock"
    assert data["spawn"]["sessionsSend"]["attempted"] is False
    assert memory.searches == [("写一个函数", 3)]
    assert res.content.startswith("savc_spawn_expert => runId=")


def test_mock_spawn_runs_auto_capture_after_completion() -> None:
    memory = _Memory([])
    res = _spawn(_plugin(memory=memory), {"agent": "vibe-coder", "task": "t", "recallQuery": "q", "recallLimit": "2"})

    assert res.ok
    assert memory.searches == [("q", 2)]
    assert len(memory.captured) == 1
    assert memory.captured[0]["source"] == "orchestrator-plugin:auto-capture:vibe-coder"
    assert memory.captured[0]["limit"] == 3
    assert (res.details.data or {})["memory"]["autoCapture"] == {"attempted": True, "stored": 1, "error": None}


def test_memory_agent_persists_task_once() -> None:
    memory = _Memory([])
    res = _spawn(_plugin(memory=memory), {"agent": "memory", "task": "记住我喜欢猫", "persistMemory": True})

    assert res.ok
    assert (res.details.data or {})["memory"]["persisted"] is True
    assert len(memory.stored) == 1
    text, meta = memory.stored[0]
    assert text == "记住我喜欢猫"
    assert meta["source"] == "orchestrator-plugin"
    assert meta["category"] == "episodic"
    assert meta["importance"] == 0.7


def test_non_memory_agent_never_persists() -> None:
    memory = _Memory([])
    _spawn(_plugin(memory=memory), {"agent": "vibe-coder", "task": "t", "persistMemory": True})
    assert memory.stored == []


def test_failed_mock_run_skips_memory_writes() -> None:
    memory = _Memory([])
    res = _spawn(_plugin(memory=memory), {"agent": "memory", "task": "boom [fail]", "persistMemory": True})

    assert res.ok
    data = res.details.data or {}
    assert data["result"]["status"] == "failed"
    assert data["result"]["error"] == "mock executor failure"
    assert memory.stored == []
    assert memory.captured == []


def test_unknown_agent_returns_agent_not_found() -> None:
    agents = _Agents()
    res = _spawn(_plugin(agents=agents), {"agent": "nobody", "task": "t"})

    assert not res.ok
    assert res.details.code == "AGENT_NOT_FOUND"
    assert res.details.error == "unknown agent: nobody"
    assert res.details.data is None
    assert agents.reloads == 1


def test_blank_agent_or_task_and_unknown_args_are_invalid_params() -> None:
    plugin = _plugin()
    res = _spawn(plugin, {"agent": "  ", "task": "t"})
    assert res.details.code == "INVALID_PARAMS"
    assert res.details.error == "agent and task are required"

    res = _spawn(plugin, {"agent": "vibe-coder", "task": "t", "bogus": 1})
    assert res.details.code == "INVALID_PARAMS"


def test_real_spawn_waits_once_and_backfills_reply() -> None:
    sessions = _Sessions()
    gw = _Gateway()
    plugin = _plugin("real", sessions_tools=sessions, gateway=gw)

    res = _spawn(plugin, {"agent": "vibe-coder", "task": "修复登录", "timeoutMs": 3000}, **SESSION_KW)

    assert res.ok
    data = res.details.data or {}
    assert data["result"] == {
        "runId": "run-1",
        "agent": "vibe-coder",
        "status": "completed",
        "output": "expert done",
        "durationMs": 20,
        "error": None,
    }
    assert "subagent" in data["spawn"]["childSessionKey"]
    assert data["spawn"]["backend"] == "real"
    assert sessions.count("spawn") == 1
    assert sessions.count("send") == 0
    assert gw.calls == ["agent.wait", "chat.history"]
    spawn_args = sessions.calls[0][1]
    assert spawn_args["label"] == "savc-vibe-coder"
    assert spawn_args["runTimeoutSeconds"] == 3


def test_real_spawn_without_wait_returns_accepted() -> None:
    sessions = _Sessions()
    gw = _Gateway()
    res = _spawn(_plugin("real", sessions_tools=sessions, gateway=gw), {"agent": "vibe-coder", "task": "t", "wait": False}, **SESSION_KW)

    assert res.ok
    assert (res.details.data or {})["result"]["status"] == "accepted"
    assert gw.calls == []


def test_real_spawn_without_session_context_fails_before_any_call() -> None:
    sessions = _Sessions()
    memory = _Memory(["m"])
    res = _spawn(_plugin("real", sessions_tools=sessions, gateway=_Gateway(), memory=memory), {"agent": "vibe-coder", "task": "t"}, session_key="s")

    assert not res.ok
    assert res.details.code == "MISSING_SESSION_CONTEXT"
    assert sessions.calls == []
    assert memory.searches == []


def test_real_spawn_forbidden_maps_code() -> None:
    sessions = _Sessions()
    sessions.spawn_payload = {"status": "forbidden", "error": "agent not allowed"}
    res = _spawn(_plugin("real", sessions_tools=sessions, gateway=_Gateway()), {"agent": "vibe-coder", "task": "t"}, **SESSION_KW)

    assert not res.ok
    assert res.details.code == "SPAWN_FORBIDDEN"
    assert res.content == "savc_spawn_expert failed: agent not allowed"


def test_real_initial_wait_failure_is_run_wait_failed() -> None:
    gw = _Gateway(wait=RuntimeError("gateway down"))
    res = _spawn(_plugin("real", sessions_tools=_Sessions(), gateway=gw), {"agent": "vibe-coder", "task": "t"}, **SESSION_KW)

    assert not res.ok
    assert res.details.code == "RUN_WAIT_FAILED"
    assert res.details.error == "gateway down"


def test_sessions_send_bridge_messages_existing_session_only() -> None:
    sessions = _Sessions()
    gw = _Gateway()
    res = _spawn(
        _plugin("real", sessions_tools=sessions, gateway=gw),
        {"agent": "vibe-coder", "task": "继续", "useSessionsSend": True, "targetSessionKey": "agent:vibe-coder:subagent:old"},
        **SESSION_KW,
    )

    assert res.ok
    data = res.details.data or {}
    assert data["result"]["status"] == "completed"
    assert data["result"]["output"] == "bridged reply"
    assert data["spawn"]["childSessionKey"] == "agent:vibe-coder:subagent:old"
    assert data["spawn"]["sessionsSend"]["attempted"] is True
    assert data["spawn"]["sessionsSend"]["runId"] == "send-1"
    assert sessions.count("spawn") == 0
    assert sessions.calls[0][1] == {
        "sessionKey": "agent:vibe-coder:subagent:old",
        "message": "继续",
        "timeoutSeconds": 10,
    }
    assert gw.calls == []


def test_sessions_send_bridge_failure_surfaces_send_failed() -> None:
    sessions = _Sessions()
    sessions.send_payload = {"status": "error", "error": "session gone"}
    res = _spawn(
        _plugin("real", sessions_tools=sessions, gateway=_Gateway()),
        {"agent": "vibe-coder", "task": "t", "useSessionsSend": True, "targetSessionKey": "k"},
        **SESSION_KW,
    )

    assert not res.ok
    assert res.details.code == "SEND_FAILED"
    assert res.details.error == "session gone"


def test_handoff_after_spawn_sends_coordination_message() -> None:
    sessions = _Sessions()
    sessions.send_payload = {"status": "accepted"}
    res = _spawn(
        _plugin("real", sessions_tools=sessions, gateway=_Gateway()),
        {"agent": "vibe-coder", "task": "t", "useSessionsSend": True, "timeoutMs": 4500},
        **SESSION_KW,
    )

    assert res.ok
    assert [k for k, _ in sessions.calls] == ["spawn", "send"]
    send_args = sessions.calls[1][1]
    assert send_args["sessionKey"] == "agent:vibe-coder:subagent:abc"
    assert send_args["message"].splitlines()[:3] == ["[协调消息]", "runId=run-1", "targetAgent=vibe-coder"]
    assert send_args["timeoutSeconds"] == 5
    assert (res.details.data or {})["spawn"]["sessionsSend"]["status"] == "accepted"


def test_handoff_failure_is_metadata_only() -> None:
    sessions = _Sessions()
    sessions.send_payload = {"status": "forbidden"}
    res = _spawn(
        _plugin("real", sessions_tools=sessions, gateway=_Gateway()),
        {"agent": "vibe-coder", "task": "t", "useSessionsSend": True, "handoffMessage": "hello"},
        **SESSION_KW,
    )

    assert res.ok
    send = (res.details.data or {})["spawn"]["sessionsSend"]
    assert send["attempted"] is True
    assert send["ok"] is False
    assert sessions.calls[1][1]["message"] == "hello"
