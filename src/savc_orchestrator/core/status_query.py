"""StatusQueryService：mock / real 共用的单次状态查询入口。"""

from __future__ import annotations

from typing import Any

from savc_orchestrator.backends.protocol import ExecutionBackend
from savc_orchestrator.core.contracts import AgentRunResult
from savc_orchestrator.core.errors import INVALID_PARAMS, OrchestratorCodedError
from savc_orchestrator.core.utils import read_string


class StatusQueryService:
    """按 runId 查询状态；查询不到时返回 `not_found` 哨兵而不是报错。"""

    def __init__(self, backend: ExecutionBackend) -> None:
        self._backend = backend

    async def query(self, run_id: Any) -> AgentRunResult:
        """
        查询一次状态。

        异常：
        - OrchestratorCodedError(INVALID_PARAMS)：runId 为空
        - 其它异常（后端不可达等）原样抛出，由工具边界转换为 `STATUS_FAILED`
        """

        key = read_string(run_id)
        if not key:
            raise OrchestratorCodedError(code=INVALID_PARAMS, message="runId is required")
        result = await self._backend.status(key)
        return result if result is not None else AgentRunResult.not_found(key)
