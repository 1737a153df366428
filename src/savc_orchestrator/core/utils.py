"""共享工具函数（宽松类型读取 + 时间 + 数值归一化）。"""

from __future__ import annotations

import math
import time
from typing import Any, Optional


def now_ms() -> int:
    """返回当前 epoch 毫秒。"""
    return int(time.time() * 1000)


def is_finite_number(value: Any) -> bool:
    """判断 value 是否为有限数值（bool 不算数值）。"""

    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value)


def round_half_up(value: float) -> int:
    """四舍五入到整数（.5 向上取整，与远端 ms/秒换算口径一致）。"""

    return int(math.floor(float(value) + 0.5))


def read_string(value: Any) -> str:
    """读取字符串并去掉两侧空白；非字符串返回空串。"""

    return value.strip() if isinstance(value, str) else ""


def read_optional_string(value: Any) -> Optional[str]:
    """读取非空字符串；空白或非字符串返回 None。"""

    text = read_string(value)
    return text or None


def read_text_value(value: Any) -> str:
    """读取文本值：字符串去空白，有限数值转字符串，其它返回空串。"""

    if isinstance(value, str):
        return value.strip()
    if is_finite_number(value):
        return str(value)
    return ""


def to_bool(value: Any, fallback: bool) -> bool:
    """只接受真正的 bool；其它值一律返回 fallback。"""

    if isinstance(value, bool):
        return value
    return fallback


def to_positive_int(value: Any, fallback: int) -> int:
    """
    将 value 解析为正整数（四舍五入）。

    规则：
    - 有限正数：直接取整
    - 数字字符串：解析后按同样规则处理
    - 其它（含 0 / 负数 / 无法解析）：返回 fallback
    """

    if is_finite_number(value) and value > 0:
        return round_half_up(value)
    if isinstance(value, str):
        try:
            parsed = float(value.strip())
        except ValueError:
            return fallback
        if math.isfinite(parsed) and parsed > 0:
            return round_half_up(parsed)
    return fallback


def compute_duration_ms(started_at: Any, ended_at: Any) -> Optional[int]:
    """两端时间戳都有限时返回 `max(0, ended - started)`，否则返回 None。"""

    if not is_finite_number(started_at) or not is_finite_number(ended_at):
        return None
    return max(0, round_half_up(ended_at - started_at))


def read_number(value: Any, fallback: float) -> float:
    """读取有限数值（接受数字字符串）；无法解析时返回 fallback。"""

    if is_finite_number(value):
        return float(value)
    if isinstance(value, str):
        try:
            parsed = float(value.strip())
        except ValueError:
            return fallback
        if math.isfinite(parsed):
            return parsed
    return fallback
