"""
RunRegistry：进程内 run 记录表（按 runId 键控的 upsert/patch 账本）。

说明：
- 只在单进程/单事件循环内使用；不做跨进程持久化，也不做跨进程协调。
- 所有读写都返回副本，调用方拿不到内部对象的引用（避免跨 await 边界的撕裂读）。
- registry 不强制状态只能前进；调用方（reconciler）负责只把状态往前推。
- 同一 runId 的并发写入按 last-write-wins 处理（无 compare-and-swap）。
"""

from __future__ import annotations

import dataclasses
from typing import Any, Dict, List, Mapping, Optional

from savc_orchestrator.core.contracts import RunRecord, to_run_status
from savc_orchestrator.core.errors import RunRegistryError
from savc_orchestrator.core.utils import compute_duration_ms, is_finite_number

_PATCHABLE_FIELDS = frozenset(
    f.name for f in dataclasses.fields(RunRecord) if f.name != "run_id"
)


def _clone(record: RunRecord) -> RunRecord:
    """返回记录的独立副本。"""

    return dataclasses.replace(record)


class RunRegistry:
    """
    run 记录表（最小实现）。

    约束：
    - 每个 runId 恰好一条记录；写入是幂等 upsert
    - 非法状态字符串不会落库：create 时回退为 `running`，patch 时保留旧状态
    - 除 `upsert` 的 runId 必填校验外，其它操作对非法输入一律降级为 None/no-op
    """

    def __init__(self) -> None:
        self._runs: Dict[str, RunRecord] = {}

    def get(self, run_id: Any) -> Optional[RunRecord]:
        """按 runId 读取记录副本；id 为空或不存在时返回 None。"""

        key = str(run_id or "").strip()
        if not key:
            return None
        record = self._runs.get(key)
        return _clone(record) if record is not None else None

    def upsert(self, record: RunRecord) -> RunRecord:
        """
        写入（覆盖）一条记录并返回存储副本。

        参数：
        - record：待写入记录；`run_id` 必须非空

        异常：
        - `RunRegistryError`：run_id 为空白
        """

        run_id = str(record.run_id or "").strip()
        if not run_id:
            raise RunRegistryError("runId is required")
        duration = record.duration_ms
        if not is_finite_number(duration):
            duration = compute_duration_ms(record.started_at, record.ended_at)
        normalized = dataclasses.replace(
            record,
            run_id=run_id,
            status=to_run_status(record.status, "running"),
            duration_ms=duration,
        )
        self._runs[run_id] = normalized
        return _clone(normalized)

    def patch(self, run_id: Any, fields: Mapping[str, Any]) -> Optional[RunRecord]:
        """
        把部分字段合并到已有记录上。

        参数：
        - run_id：目标 runId；不存在时返回 None（no-op）
        - fields：字段名为 RunRecord 的 snake_case 属性；`run_id` 与未知键被忽略

        说明：
        - 非法状态回退为“旧状态”（而不是 running）
        - 合并后 duration_ms 不是有限数值时，按 started_at/ended_at 重新推导
        """

        current = self.get(run_id)
        if current is None:
            return None
        updates = {k: v for k, v in fields.items() if k in _PATCHABLE_FIELDS}
        next_status = updates.get("status")
        updates["status"] = to_run_status(
            next_status if next_status is not None else current.status,
            current.status,
        )
        merged = dataclasses.replace(current, **updates)
        if not is_finite_number(merged.duration_ms):
            merged.duration_ms = compute_duration_ms(merged.started_at, merged.ended_at)
        self._runs[current.run_id] = merged
        return _clone(merged)

    def ensure(
        self,
        *,
        run_id: str,
        agent: str,
        status: Optional[str] = None,
        child_session_key: Optional[str] = None,
        started_at: Optional[float] = None,
    ) -> RunRecord:
        """保证记录存在：已存在则原样返回，否则以 `running`（默认）创建。"""

        existing = self.get(run_id)
        if existing is not None:
            return existing
        return self.upsert(
            RunRecord(
                run_id=run_id,
                agent=agent,
                status=status or "running",
                child_session_key=child_session_key,
                started_at=started_at,
                output=None,
                error=None,
                duration_ms=None,
            )
        )

    def list(self) -> List[str]:
        """返回所有 runId（插入顺序）。"""

        return list(self._runs.keys())

    def clear(self) -> None:
        """清空全部记录（仅用于测试隔离）。"""

        self._runs.clear()

    def __len__(self) -> int:
        return len(self._runs)
