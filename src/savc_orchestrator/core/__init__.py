"""编排核心（数据契约、错误码、spawn 编排、状态协调）。"""

from __future__ import annotations
