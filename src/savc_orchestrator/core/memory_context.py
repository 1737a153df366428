"""
记忆增强（spawn 前召回 + 完成后持久化 / auto-capture）。

说明：
- 本模块不理解记忆内部结构，只依赖 `SemanticMemory` 协作方的 search/store/auto_capture。
- 所有增强步骤失败时都降级（记录日志 + 在结果里体现），不会让 spawn 失败。
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence

from savc_orchestrator.backends.protocol import SemanticMemory
from savc_orchestrator.core.utils import is_finite_number

logger = logging.getLogger(__name__)

MEMORY_BLOCK_MAX_LINES = 20
PERSIST_SOURCE = "orchestrator-plugin"
PERSIST_CATEGORY = "episodic"
PERSIST_IMPORTANCE = 0.7
AUTO_CAPTURE_LIMIT = 3


def _match_texts(recall: Any) -> List[str]:
    matches = recall.get("matches") if isinstance(recall, Mapping) else None
    if not isinstance(matches, (list, tuple)):
        return []
    texts: List[str] = []
    for item in matches:
        text = item.get("text") if isinstance(item, Mapping) else None
        cleaned = str(text or "").strip()
        if cleaned:
            texts.append(cleaned)
    return texts


def build_task_with_memory(task: str, matches: Sequence[str]) -> str:
    """
    把召回文本拼进任务。

    格式：
    ```
    [相关记忆]
    - m1
    - m2

    [用户请求]
    <task>
    ```
    无有效匹配时原样返回 task；最多 20 行。
    """

    lines = [f"- {t}" for t in (s.strip() for s in matches) if t][:MEMORY_BLOCK_MAX_LINES]
    if not lines:
        return task
    block = "\n".join(lines)
    return f"[相关记忆]\n{block}\n\n[用户请求]\n{task}"


@dataclass
class RecallResult:
    """召回结果：final_task 为增强后的任务文本。"""

    final_task: str
    recall_count: int = 0


@dataclass
class AutoCaptureResult:
    attempted: bool = False
    stored: int = 0
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"attempted": self.attempted, "stored": self.stored, "error": self.error}


@dataclass
class MemoryReport:
    """spawn 结果中 `memory` 字段的内容。"""

    recall_enabled: bool
    recall_count: int = 0
    persisted: bool = False
    persisted_error: Optional[str] = None
    auto_capture: AutoCaptureResult = field(default_factory=AutoCaptureResult)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "recallEnabled": self.recall_enabled,
            "recallCount": self.recall_count,
            "persisted": self.persisted,
            "persistedError": self.persisted_error,
            "autoCapture": self.auto_capture.to_dict(),
        }


class MemoryContext:
    """
    语义记忆增强器。

    参数：
    - memory：语义记忆协作方；None 时所有步骤都是 no-op
    - workspace：传给协作方的工作区（core_path）
    - min_score：召回最低分
    - persist_enabled：是否允许 store / auto-capture
    """

    def __init__(
        self,
        memory: Optional[SemanticMemory],
        *,
        workspace: Optional[str],
        min_score: float,
        persist_enabled: bool,
    ) -> None:
        self._memory = memory
        self._workspace = workspace
        self._min_score = min_score
        self._persist_enabled = persist_enabled

    async def recall(self, task: str, *, query: str, limit: int) -> RecallResult:
        """召回 top-K 并拼进任务；协作方缺失或查询失败时任务不变。"""

        if self._memory is None or not query:
            return RecallResult(final_task=task)
        try:
            recalled = await self._memory.search(
                query,
                workspace=self._workspace,
                limit=limit,
                min_score=self._min_score,
            )
        except Exception as exc:
            logger.warning("memory recall failed: %s", exc, exc_info=True)
            return RecallResult(final_task=task)
        texts = _match_texts(recalled)
        return RecallResult(final_task=build_task_with_memory(task, texts), recall_count=len(texts))

    async def persist(self, text: str) -> tuple[bool, Optional[str]]:
        """
        写入一条 episodic 记忆。

        返回：
        - (persisted, error)；未启用或协作方缺失时为 (False, None)
        """

        if self._memory is None or not self._persist_enabled:
            return False, None
        try:
            await self._memory.store(
                text,
                {
                    "workspace": self._workspace,
                    "source": PERSIST_SOURCE,
                    "category": PERSIST_CATEGORY,
                    "importance": PERSIST_IMPORTANCE,
                },
                {"workspace": self._workspace},
            )
        except Exception as exc:
            logger.warning("memory persist failed: %s", exc, exc_info=True)
            return False, str(exc)
        return True, None

    async def auto_capture(self, inputs: Sequence[str], *, agent: str) -> AutoCaptureResult:
        """完成后的 auto-capture；协作方不支持或持久化关闭时 attempted=False。"""

        result = AutoCaptureResult()
        capture = getattr(self._memory, "auto_capture", None)
        if self._memory is None or not self._persist_enabled or not callable(capture):
            return result
        result.attempted = True
        try:
            out = await capture(
                list(inputs),
                workspace=self._workspace,
                source=f"{PERSIST_SOURCE}:auto-capture:{agent}",
                limit=AUTO_CAPTURE_LIMIT,
            )
        except Exception as exc:
            logger.warning("memory auto-capture failed: agent=%s error=%s", agent, exc)
            result.error = str(exc)
            return result
        stored = out.get("stored") if isinstance(out, Mapping) else None
        result.stored = int(stored) if is_finite_number(stored) else 0
        return result
