"""
InProcessLifecycle：基于 asyncio 的本地 lifecycle 模拟器（mock 后端的默认协作方）。

行为：
- `spawn_agent` 立即返回 runId，执行在后台 asyncio task 中进行
- 默认 executor：按 `limits.mock_delay_ms`（默认 20ms）sleep 后返回 `<agent>: <task>`；
  任务文本包含 `[fail]`（大小写不敏感）时失败（`mock executor failure`）
- 超时：显式 timeout_ms > `limits.timeout_seconds` > 60s；超时后状态为 `timeout`
- 快照为 camelCase dict（`runId/agent/task/status/output/error/durationMs/startedAt/endedAt`）

约束：
- 必须在运行中的事件循环内调用 `spawn_agent`（它会 `asyncio.create_task`）
- 运行记录只在内存中保存；不做跨进程持久化
- 事件循环关闭导致的 task 取消不是终态：run 保持 running，下一次在新事件循环里
  `wait_for_agent/get_status` 时按剩余超时窗口重新驱动；只有 `cancel_agent` 会把 run 记为取消
"""

from __future__ import annotations

import asyncio
import logging
import re
import uuid
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional

from savc_orchestrator.core.utils import compute_duration_ms, now_ms, read_string, to_positive_int

logger = logging.getLogger(__name__)

Executor = Callable[[Mapping[str, Any], str, str], Awaitable[str]]

DEFAULT_MOCK_DELAY_MS = 20
DEFAULT_RUN_TIMEOUT_MS = 60_000
_FAIL_MARKER = re.compile(r"\[fail\]", re.IGNORECASE)


def _limits(agent_def: Mapping[str, Any]) -> Mapping[str, Any]:
    limits = agent_def.get("limits") if isinstance(agent_def, Mapping) else None
    return limits if isinstance(limits, Mapping) else {}


async def builtin_executor(agent_def: Mapping[str, Any], task: str, run_id: str) -> str:
    """默认模拟执行器（延迟 + `[fail]` 标记失败）。"""

    delay_ms = to_positive_int(_limits(agent_def).get("mock_delay_ms"), DEFAULT_MOCK_DELAY_MS)
    await asyncio.sleep(delay_ms / 1000)
    if _FAIL_MARKER.search(task):
        raise RuntimeError("mock executor failure")
    name = read_string(agent_def.get("name")) if isinstance(agent_def, Mapping) else ""
    return f"{name or 'agent'}: {task}"


@dataclass
class _LifecycleRun:
    run_id: str
    agent: str
    task: str
    timeout_ms: int
    started_at: int
    status: str = "running"
    output: Optional[str] = None
    error: Optional[str] = None
    ended_at: Optional[int] = None
    duration_ms: Optional[int] = None
    agent_def: Mapping[str, Any] = field(default_factory=dict, repr=False)
    driver: Optional["asyncio.Task[None]"] = field(default=None, repr=False)

    def finish(self, status: str, *, output: Optional[str] = None, error: Optional[str] = None, at: int) -> None:
        # 只允许从 running 进入终态一次
        if self.status != "running":
            return
        self.status = status
        self.output = output
        self.error = error
        self.ended_at = at
        self.duration_ms = compute_duration_ms(self.started_at, self.ended_at)

    def snapshot(self) -> Dict[str, Any]:
        return {
            "runId": self.run_id,
            "agent": self.agent,
            "task": self.task,
            "status": self.status,
            "output": self.output,
            "error": self.error,
            "durationMs": self.duration_ms,
            "startedAt": self.started_at,
            "endedAt": self.ended_at,
        }


class InProcessLifecycle:
    """
    本地 lifecycle 模拟器。

    参数：
    - executor：可选自定义执行器 `async (agent_def, task, run_id) -> output`
    - clock：毫秒时钟（测试可注入）
    """

    def __init__(self, *, executor: Optional[Executor] = None, clock: Callable[[], int] = now_ms) -> None:
        self._executor: Executor = executor or builtin_executor
        self._clock = clock
        self._runs: Dict[str, _LifecycleRun] = {}

    def set_executor(self, executor: Optional[Executor]) -> None:
        """替换执行器；传 None 恢复默认执行器。"""

        self._executor = executor or builtin_executor

    async def spawn_agent(
        self,
        agent_def: Mapping[str, Any],
        task: str,
        *,
        timeout_ms: Optional[int] = None,
        spawn_mode: Optional[str] = None,
        run_id: Optional[str] = None,
    ) -> str:
        """
        启动一次模拟执行并返回 runId。

        参数：
        - agent_def：expert 定义（读取 `name` 与 `limits`）
        - task：任务文本
        - timeout_ms：显式超时（正数优先）
        - spawn_mode：调用方后端模式（仅记录到日志）
        - run_id：可选显式 runId（默认 uuid4）
        """

        timeout = to_positive_int(timeout_ms, 0)
        if timeout <= 0:
            from_def = to_positive_int(_limits(agent_def).get("timeout_seconds"), 0)
            timeout = from_def * 1000 if from_def > 0 else DEFAULT_RUN_TIMEOUT_MS

        rid = read_string(run_id) or str(uuid.uuid4())
        run = _LifecycleRun(
            run_id=rid,
            agent=read_string(agent_def.get("name")) or "unknown",
            task=str(task or ""),
            timeout_ms=timeout,
            started_at=self._clock(),
            agent_def=agent_def,
        )
        self._runs[rid] = run
        run.driver = asyncio.create_task(self._drive(run, timeout))
        logger.debug("lifecycle spawn: runId=%s agent=%s timeoutMs=%s mode=%s", rid, run.agent, timeout, spawn_mode)
        return rid

    async def _drive(self, run: _LifecycleRun, window_ms: int) -> None:
        # CancelledError 原样上抛：取消语义只由 cancel_agent 记录
        try:
            output = await asyncio.wait_for(
                self._executor(run.agent_def, run.task, run.run_id),
                timeout=window_ms / 1000,
            )
        except asyncio.TimeoutError:
            run.finish("timeout", error=f"timeout after {run.timeout_ms}ms", at=self._clock())
        except Exception as exc:
            run.finish("failed", error=str(exc), at=self._clock())
        else:
            run.finish("completed", output=None if output is None else str(output), at=self._clock())

    def _require(self, run_id: str) -> _LifecycleRun:
        run = self._runs.get(run_id)
        if run is None:
            raise KeyError(f"unknown runId: {run_id}")
        return run

    def _resume_if_orphaned(self, run: _LifecycleRun) -> None:
        """driver 已结束但 run 仍是 running（原事件循环已关闭）时，在当前事件循环里按剩余窗口重启。"""

        if run.status != "running" or (run.driver is not None and not run.driver.done()):
            return
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            return
        remaining = run.timeout_ms - max(0, self._clock() - run.started_at)
        if remaining <= 0:
            run.finish("timeout", error=f"timeout after {run.timeout_ms}ms", at=self._clock())
            return
        logger.debug("lifecycle resume: runId=%s remainingMs=%s", run.run_id, remaining)
        run.driver = asyncio.create_task(self._drive(run, remaining))

    async def wait_for_agent(self, run_id: str, timeout_ms: int = 0) -> Dict[str, Any]:
        """
        等待 run 结束并返回快照。

        参数：
        - run_id：目标 runId（未知时抛 `KeyError`）
        - timeout_ms：<= 0 表示一直等到结束；否则最多等待该窗口，超时返回当前快照，
          且 error 为空时填入 `wait timeout after <n>ms`
        """

        run = self._require(run_id)
        self._resume_if_orphaned(run)
        driver = run.driver
        if driver is None or driver.done():
            return run.snapshot()
        if not timeout_ms or timeout_ms <= 0:
            await asyncio.wait({driver})
            return run.snapshot()

        done, _ = await asyncio.wait({driver}, timeout=timeout_ms / 1000)
        snapshot = run.snapshot()
        if not done:
            snapshot["error"] = run.error or f"wait timeout after {timeout_ms}ms"
        return snapshot

    async def cancel_agent(self, run_id: str) -> Dict[str, Any]:
        """取消运行中的 run（终态为 failed + `cancelled by caller`）。"""

        run = self._runs.get(run_id)
        if run is None:
            return {"runId": run_id, "cancelled": False, "reason": "not-found"}
        if run.status != "running":
            return {"runId": run_id, "cancelled": False, "reason": f"already-{run.status}"}
        run.finish("failed", error="cancelled by caller", at=self._clock())
        if run.driver is not None and not run.driver.done():
            run.driver.cancel()
        return {"runId": run_id, "cancelled": True, "reason": "ok"}

    def get_status(self, run_id: str) -> Optional[Dict[str, Any]]:
        """返回快照；未知 runId 返回 None。"""

        run = self._runs.get(run_id)
        if run is None:
            return None
        self._resume_if_orphaned(run)
        return run.snapshot()
