"""
显式结果类型（替代“用异常做控制流”）。

- `Unwrapped | Unparseable`：远端 payload 解包结果
- `Ok | Fallback`：可降级的增强步骤（例如完成后回填 output）结果
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Generic, Optional, TypeVar, Union

T = TypeVar("T")


@dataclass(frozen=True)
class Unwrapped:
    """成功解包出的 JSON object。"""

    payload: Dict[str, Any] = field(default_factory=dict)
    source: str = "details"


@dataclass(frozen=True)
class Unparseable:
    """所有解包策略均失败（调用方按空 object 处理）。"""

    reason: str = "no parseable payload"


PayloadResult = Union[Unwrapped, Unparseable]


def payload_or_empty(result: PayloadResult) -> Dict[str, Any]:
    """fail-closed：解包失败时返回空 dict。"""

    if isinstance(result, Unwrapped):
        return dict(result.payload)
    return {}


@dataclass(frozen=True)
class Ok(Generic[T]):
    """增强步骤成功，value 为新值。"""

    value: T


@dataclass(frozen=True)
class Fallback(Generic[T]):
    """增强步骤失败或无结果，value 为此前已知值（可见的 no-op）。"""

    value: T
    error: Optional[str] = None


Outcome = Union[Ok[T], Fallback[T]]
