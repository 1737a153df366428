"""
Bootstrap Layer（配置发现/.env/环境变量覆盖/来源追踪）。

设计目标：
- 编排核心无隐式 I/O：`SpawnOrchestrator` 不会自动读取 `.env` / 自动发现 overlays
- 提供可选 bootstrap 入口：宿主进程可复用，并能回答“某个字段的值从哪来”
"""

from __future__ import annotations

import os
from copy import deepcopy
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple

import yaml

from savc_orchestrator.config.defaults import load_default_config_dict
from savc_orchestrator.config.loader import OrchestratorConfig, load_config_dicts

ENV_FILE_VAR = "SAVC_ORCHESTRATOR_ENV_FILE"
CONFIG_PATHS_VAR = "SAVC_ORCHESTRATOR_CONFIG_PATHS"

# env 覆盖：变量名 -> dotted 配置路径
ENV_OVERRIDES: Tuple[Tuple[str, str], ...] = (
    ("SAVC_ORCHESTRATOR_SPAWN_MODE", "spawn_mode"),
    ("SAVC_ORCHESTRATOR_DEFAULT_TIMEOUT_MS", "default_timeout_ms"),
    ("SAVC_ORCHESTRATOR_GATEWAY_URL", "gateway.base_url"),
)


def _get_env_nonempty(key: str, *, env: Optional[Mapping[str, str]] = None) -> Optional[str]:
    """读取 env 并返回非空白字符串（否则视为未设置）。"""

    v = (env if env is not None else os.environ).get(key)
    if v is None:
        return None
    s = str(v).strip()
    return s or None


def _split_paths(raw: str) -> list[str]:
    """将逗号/分号分隔的路径串切分为片段列表（去空白与空项，保序）。"""

    parts: list[str] = []
    for chunk in raw.replace(";", ",").split(","):
        s = chunk.strip()
        if s:
            parts.append(s)
    return parts


def _parse_env_text(text: str) -> Dict[str, str]:
    """解析 `.env` 风格文本为键值字典（best-effort）。

    支持的最小语法：
    - 忽略空行与 `#` 注释行
    - 可选前缀 `export `
    - `KEY=VALUE`，并去掉 VALUE 两侧的单/双引号
    """
    out: Dict[str, str] = {}
    for raw in text.splitlines():
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        if line.startswith("export "):
            line = line[len("export ") :].strip()
        if "=" not in line:
            continue
        k, v = line.split("=", 1)
        k = k.strip()
        v = v.strip()
        if not k:
            continue
        if (v.startswith('"') and v.endswith('"')) or (v.startswith("'") and v.endswith("'")):
            v = v[1:-1]
        out[k] = v
    return out


def load_dotenv_if_present(
    *,
    workspace_root: Path,
    override: bool = False,
    env: Optional[Mapping[str, str]] = None,
) -> Tuple[Optional[Path], Dict[str, str]]:
    """
    约定发现并解析 `.env`：
    1) 若设置 `SAVC_ORCHESTRATOR_ENV_FILE`，加载其指向的文件（相对路径相对 workspace_root）
    2) 否则若 `<workspace_root>/.env` 存在，加载之

    参数：
    - workspace_root：工作区根目录（相对路径锚点）
    - override：是否覆盖已存在 env（默认 False）
    - env：用于判断“已存在”的 env 映射（默认 os.environ）

    返回：
    - (env_file_path_or_none, env_vars_to_inject)

    说明：
    - 本函数不修改 `os.environ`；调用方决定注入目标。
    """

    base_env = env if env is not None else os.environ
    ws = Path(workspace_root).resolve()
    p = _get_env_nonempty(ENV_FILE_VAR, env=base_env)
    if p:
        env_path = Path(p).expanduser()
        if not env_path.is_absolute():
            env_path = (ws / env_path).resolve()
        if not env_path.exists():
            raise ValueError(f"env file not found: {env_path}")
    else:
        env_path = (ws / ".env").resolve()
        if not env_path.exists():
            return None, {}

    data = _parse_env_text(env_path.read_text(encoding="utf-8"))
    if not override:
        data = {k: v for k, v in data.items() if k not in base_env}
    return env_path, data


def discover_overlay_paths(*, workspace_root: Path, env: Optional[Mapping[str, str]] = None) -> list[Path]:
    """
    overlay 路径发现规则（固定，顺序稳定）：
    1) 默认 overlay：`<workspace_root>/config/orchestrator.yaml`（存在时）
    2) `SAVC_ORCHESTRATOR_CONFIG_PATHS`（逗号/分号分隔；作为显式 overlay）
    """

    ws = Path(workspace_root).resolve()
    overlays: list[Path] = []

    default_overlay = (ws / "config" / "orchestrator.yaml").resolve()
    if default_overlay.exists():
        overlays.append(default_overlay)

    raw = _get_env_nonempty(CONFIG_PATHS_VAR, env=env) or ""
    for p in _split_paths(raw):
        pp = Path(p).expanduser()
        pp = pp.resolve() if pp.is_absolute() else (ws / pp).resolve()
        overlays.append(pp)

    # 去重（按 canonical path；保序）
    seen: set[Path] = set()
    uniq: list[Path] = []
    for p in overlays:
        if p in seen:
            continue
        seen.add(p)
        uniq.append(p)
    return uniq


def _record_leaf_sources(value: Any, *, prefix: str, sources: Dict[str, str], label: str) -> None:
    """递归记录 mapping 的叶子字段来源（mapping 向下展开；其它值视为叶子）。"""

    if isinstance(value, Mapping):
        for k, v in value.items():
            path = f"{prefix}.{k}" if prefix else str(k)
            _record_leaf_sources(v, prefix=path, sources=sources, label=label)
        return
    sources[prefix] = label


def _deep_merge_with_sources(
    base: Dict[str, Any],
    overlay: Mapping[str, Any],
    *,
    sources: Dict[str, str],
    label: str,
    prefix: str = "",
) -> None:
    """将 overlay 深度合并到 base，并同步写入叶子字段 sources。"""

    for key, overlay_value in overlay.items():
        k = str(key)
        path = f"{prefix}.{k}" if prefix else k

        if k in base and isinstance(base[k], dict) and isinstance(overlay_value, Mapping):
            _deep_merge_with_sources(base[k], overlay_value, sources=sources, label=label, prefix=path)  # type: ignore[arg-type]
            continue

        base[k] = deepcopy(overlay_value)
        _record_leaf_sources(overlay_value, prefix=path, sources=sources, label=label)


def _load_yaml_mapping(path: Path) -> Dict[str, Any]:
    """读取 overlay YAML 并确保根节点是 mapping(dict)；文件不存在同样报错。"""

    if not path.exists():
        raise ValueError(f"overlay config not found: {path}")
    obj = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    if not isinstance(obj, dict):
        raise ValueError(f"overlay config root must be a mapping(dict): {path}")
    return obj


def _dotted_overlay(path: str, value: Any) -> Dict[str, Any]:
    """把 `a.b.c=value` 展开成嵌套 dict。"""

    out: Dict[str, Any] = {}
    node = out
    parts = path.split(".")
    for part in parts[:-1]:
        node = node.setdefault(part, {})
    node[parts[-1]] = value
    return out


@dataclass(frozen=True)
class ResolvedOrchestratorConfig:
    """bootstrap 解析后的有效配置（含来源追踪）。

    字段：
    - config：校验后的 `OrchestratorConfig`
    - overlay_paths：参与合并的 overlay 文件路径列表（字符串化）
    - env_file：实际加载的 .env 路径（若无则为 None）
    - sources：叶子字段来源（`embedded_default` / `overlay:<path>` / `env:<NAME>`）
    """

    config: OrchestratorConfig
    overlay_paths: list[str]
    env_file: Optional[str]
    sources: Dict[str, str]


def resolve_orchestrator_config(
    *,
    workspace_root: Path,
    env: Optional[Mapping[str, str]] = None,
) -> ResolvedOrchestratorConfig:
    """
    解析有效配置（env > overlays > embedded default），并返回来源追踪。

    参数：
    - workspace_root：工作区根目录
    - env：进程环境（默认 os.environ；测试可注入）
    """

    ws = Path(workspace_root).resolve()
    base_env: Dict[str, str] = dict(env if env is not None else os.environ)
    env_file, dotenv_env = load_dotenv_if_present(workspace_root=ws, override=False, env=base_env)
    effective_env = dict(base_env)
    effective_env.update(dotenv_env)

    overlay_paths = discover_overlay_paths(workspace_root=ws, env=effective_env)
    entries: list[Tuple[str, Dict[str, Any]]] = [("embedded_default", load_default_config_dict())]
    for p in overlay_paths:
        entries.append((f"overlay:{p}", _load_yaml_mapping(p)))
    for name, dotted in ENV_OVERRIDES:
        v = _get_env_nonempty(name, env=effective_env)
        if v is not None:
            entries.append((f"env:{name}", _dotted_overlay(dotted, v)))

    merged: Dict[str, Any] = {}
    sources: Dict[str, str] = {}
    for label, d in entries:
        _deep_merge_with_sources(merged, d, sources=sources, label=label)

    cfg = load_config_dicts([d for _, d in entries])
    return ResolvedOrchestratorConfig(
        config=cfg,
        overlay_paths=[str(p) for p in overlay_paths],
        env_file=str(env_file) if env_file is not None else None,
        sources=sources,
    )
