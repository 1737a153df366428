"""MockBackend：把 spawn/status 直接委派给本地 lifecycle 协作方。"""

from __future__ import annotations

from typing import Optional

from savc_orchestrator.backends.protocol import LifecycleModule, SpawnOutcome, SpawnRequest
from savc_orchestrator.core.contracts import AgentRunResult


class MockBackend:
    """
    本地模拟后端。

    说明：
    - 不使用 RunRegistry；状态以 lifecycle 快照为准
    - sessions_send 桥接只在 real 后端生效，这里始终为 `attempted=False`
    """

    name = "mock"
    requires_session = False

    def __init__(self, lifecycle: LifecycleModule) -> None:
        self._lifecycle = lifecycle

    async def spawn(self, request: SpawnRequest) -> SpawnOutcome:
        run_id = await self._lifecycle.spawn_agent(
            request.agent_def,
            request.final_task,
            timeout_ms=request.timeout_ms,
            spawn_mode=self.name,
        )
        if request.wait:
            snapshot = await self._lifecycle.wait_for_agent(run_id, request.timeout_ms)
            return SpawnOutcome(result=AgentRunResult.from_snapshot(snapshot))

        snapshot = self._lifecycle.get_status(run_id)
        if snapshot:
            return SpawnOutcome(result=AgentRunResult.from_snapshot(snapshot))
        return SpawnOutcome(result=AgentRunResult(run_id=run_id, agent=request.agent, status="running"))

    async def status(self, run_id: str) -> Optional[AgentRunResult]:
        snapshot = self._lifecycle.get_status(run_id)
        if not snapshot:
            return None
        return AgentRunResult.from_snapshot(snapshot)
