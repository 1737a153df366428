"""
配置加载器（YAML）。

默认配置：`savc_orchestrator/assets/default.yaml`

设计目标：
- 支持加载多个 YAML，并按顺序做深度合并（后者覆盖前者）。
- 使用 pydantic 做 schema 校验；默认拒绝未知字段（避免拼写错误与误配置被静默吞掉）。
- 数值/开关字段按宽松口径归一化（数字字符串可用；非法值回退默认值），与工具参数的解析口径一致。
"""

from __future__ import annotations

from copy import deepcopy
from pathlib import Path
from typing import Any, Dict, Literal, Mapping, MutableMapping, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator

from savc_orchestrator.core.utils import read_number, read_optional_string, round_half_up, to_bool

DEFAULT_LOG_FILE = "memory/procedural/orchestrator.log"


def _deep_merge(base: MutableMapping[str, Any], overlay: Mapping[str, Any]) -> MutableMapping[str, Any]:
    """
    深度合并两个 dict（overlay 覆盖 base）。

    合并规则：
    - dict + dict：递归合并
    - 其它类型：overlay 直接覆盖
    - list：整体覆盖（不做去重/拼接）
    """

    for key, overlay_value in overlay.items():
        if (
            key in base
            and isinstance(base[key], dict)
            and isinstance(overlay_value, Mapping)
        ):
            _deep_merge(base[key], overlay_value)  # type: ignore[arg-type]
            continue
        base[key] = deepcopy(overlay_value)
    return base


def _positive_int(value: Any, fallback: int) -> int:
    """`max(1, round(x))`；无法解析时使用 fallback。"""

    return max(1, round_half_up(read_number(value, fallback)))


class OrchestratorMemoryConfig(BaseModel):
    """语义记忆相关开关（召回 + 持久化）。"""

    model_config = ConfigDict(extra="forbid")

    recall_enabled: bool = True
    recall_top_k: int = Field(default=3, ge=1)
    min_score: float = Field(default=0.3, ge=0.0, le=1.0)
    persist_enabled: bool = True

    @field_validator("recall_enabled", mode="before")
    @classmethod
    def _recall_enabled(cls, v: Any) -> bool:
        return to_bool(v, True)

    @field_validator("persist_enabled", mode="before")
    @classmethod
    def _persist_enabled(cls, v: Any) -> bool:
        return to_bool(v, True)

    @field_validator("recall_top_k", mode="before")
    @classmethod
    def _recall_top_k(cls, v: Any) -> int:
        return _positive_int(v, 3)

    @field_validator("min_score", mode="before")
    @classmethod
    def _min_score(cls, v: Any) -> float:
        # 超出 [0,1] 的值夹紧而不是报错
        return max(0.0, min(1.0, read_number(v, 0.3)))


class OrchestratorRealConfig(BaseModel):
    """
    real 后端的轮询/读取参数。

    说明：
    - `status_poll_ms`：单次状态查询的有界轮询窗口（soft-timeout 语义）
    - `wait_margin_ms`：`agent.wait` 传输层超时在等待窗口之上追加的余量
    - `history_limit` / `history_timeout_ms`：完成后回填 output 时读取的 chat 历史窗口
    - `send_timeout_seconds`：sessions_send 默认超时
    """

    model_config = ConfigDict(extra="forbid")

    status_poll_ms: int = Field(default=250, ge=0)
    wait_margin_ms: int = Field(default=2000, ge=0)
    history_limit: int = Field(default=80, ge=1)
    history_timeout_ms: int = Field(default=10_000, ge=1)
    send_timeout_seconds: int = Field(default=10, ge=0)


class OrchestratorGatewayConfig(BaseModel):
    """HTTP gateway 连接配置（通用 RPC 调用）。"""

    model_config = ConfigDict(extra="forbid")

    base_url: str = "http://127.0.0.1:18789"
    token_env: str = "OPENCLAW_GATEWAY_TOKEN"


class OrchestratorConfig(BaseModel):
    """编排层配置根对象。"""

    model_config = ConfigDict(extra="forbid")

    config_version: int = Field(default=1, ge=1)
    spawn_mode: Literal["mock", "real"] = "mock"
    core_path: Optional[str] = None
    agents_dir: Optional[str] = None
    default_wait: bool = True
    default_timeout_ms: int = Field(default=60_000, ge=1)
    log_file: str = DEFAULT_LOG_FILE
    memory: OrchestratorMemoryConfig = Field(default_factory=OrchestratorMemoryConfig)
    real: OrchestratorRealConfig = Field(default_factory=OrchestratorRealConfig)
    gateway: OrchestratorGatewayConfig = Field(default_factory=OrchestratorGatewayConfig)

    @field_validator("spawn_mode", mode="before")
    @classmethod
    def _spawn_mode(cls, v: Any) -> str:
        # 只有显式 `real` 才启用远端后端
        return "real" if read_optional_string(v) == "real" else "mock"

    @field_validator("core_path", "agents_dir", mode="before")
    @classmethod
    def _optional_path(cls, v: Any) -> Optional[str]:
        return read_optional_string(v)

    @field_validator("default_wait", mode="before")
    @classmethod
    def _default_wait(cls, v: Any) -> bool:
        return to_bool(v, True)

    @field_validator("default_timeout_ms", mode="before")
    @classmethod
    def _default_timeout_ms(cls, v: Any) -> int:
        return _positive_int(v, 60_000)

    @field_validator("log_file", mode="before")
    @classmethod
    def _log_file(cls, v: Any) -> str:
        return read_optional_string(v) or DEFAULT_LOG_FILE

    def resolve_agents_dir(self) -> Optional[Path]:
        """agents 目录：显式配置优先，否则 `<core_path>/agents`；均缺失返回 None。"""

        if self.agents_dir:
            p = Path(self.agents_dir).expanduser()
            if not p.is_absolute() and self.core_path:
                p = Path(self.core_path).expanduser() / p
            return p
        if self.core_path:
            return Path(self.core_path).expanduser() / "agents"
        return None

    def resolve_log_file(self) -> Optional[Path]:
        """日志文件：绝对路径原样返回；相对路径相对 core_path（缺 core_path 时返回 None）。"""

        p = Path(self.log_file).expanduser()
        if p.is_absolute():
            return p
        if not self.core_path:
            return None
        return Path(self.core_path).expanduser() / p


def _load_yaml_file(path: Path) -> Dict[str, Any]:
    """读取 YAML 文件为 dict；空文件返回空 dict。"""

    if not path.exists():
        raise FileNotFoundError(f"配置文件不存在：{path}")
    data = yaml.safe_load(path.read_text(encoding="utf-8"))
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"配置文件根节点必须为 mapping(dict)：{path}")
    return data


def load_config_dicts(config_dicts: list[Dict[str, Any]]) -> OrchestratorConfig:
    """
    加载并合并多个 dict 配置，返回校验后的 `OrchestratorConfig`。

    参数：
    - config_dicts：按顺序做深度合并（后者覆盖前者）
    """

    merged: Dict[str, Any] = {}
    for overlay in config_dicts:
        if not overlay:
            continue
        _deep_merge(merged, overlay)
    return OrchestratorConfig.model_validate(merged)


def load_config(config_paths: list[Path]) -> OrchestratorConfig:
    """
    加载并合并多个配置文件，返回校验后的 `OrchestratorConfig`。

    参数：
    - config_paths：YAML 路径列表；按顺序合并（后者覆盖前者）
    """

    overlays: list[Dict[str, Any]] = []
    for path in config_paths:
        overlays.append(_load_yaml_file(Path(path)))
    return load_config_dicts(overlays)
