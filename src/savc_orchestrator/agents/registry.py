"""
YamlAgentRegistry：从目录加载 expert 定义（`*.yaml` / `*.yml`）。

定义文件最小 schema：
- `name`：非空字符串
- `model`：mapping
- `triggers`：mapping（`intents` / `keywords` 归一化为字符串列表；逗号分隔字符串也可）

其余字段原样保留；`label` 缺省为 name，`description` 缺省为空串，`file` 为来源路径。
"""

from __future__ import annotations

import copy
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

logger = logging.getLogger(__name__)


def _normalize_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        items = [str(item).strip() for item in value]
    else:
        items = [item.strip() for item in str(value).split(",")]
    return [item for item in items if item]


def validate_agent_definition(definition: Any, file_path: Path) -> Dict[str, Any]:
    """
    校验并归一化单个 expert 定义。

    异常：
    - ValueError：根节点不是 mapping，或缺少 name/model/triggers
    """

    if not isinstance(definition, dict):
        raise ValueError(f"invalid yaml object: {file_path}")
    name = str(definition.get("name") or "").strip()
    if not name:
        raise ValueError(f"missing required field name: {file_path}")
    if not isinstance(definition.get("model"), dict):
        raise ValueError(f"missing required field model: {file_path}")
    triggers = definition.get("triggers")
    if not isinstance(triggers, dict):
        raise ValueError(f"missing required field triggers: {file_path}")

    out = dict(definition)
    out["name"] = name
    out["description"] = str(definition.get("description") or "").strip()
    out["label"] = str(definition.get("label") or name).strip()
    out["triggers"] = {
        **triggers,
        "intents": _normalize_list(triggers.get("intents")),
        "keywords": _normalize_list(triggers.get("keywords")),
    }
    out["file"] = str(file_path)
    return out


def load_agent_definitions(agents_dir: Path) -> List[Dict[str, Any]]:
    """按文件名排序加载目录下全部定义；目录不存在抛 `FileNotFoundError`。"""

    if not agents_dir.is_dir():
        raise FileNotFoundError(f"agents dir not found: {agents_dir}")
    files = sorted(
        p for p in agents_dir.iterdir() if p.is_file() and p.suffix.lower() in (".yaml", ".yml")
    )
    return [
        validate_agent_definition(yaml.safe_load(p.read_text(encoding="utf-8")), p)
        for p in files
    ]


class YamlAgentRegistry:
    """
    expert 定义注册表（内存索引 + 按需重载）。

    参数：
    - agents_dir：默认目录；`discover_agents` 可传入其它目录覆盖
    """

    def __init__(self, agents_dir: Optional[Path | str] = None) -> None:
        self._default_dir = Path(agents_dir) if agents_dir is not None else None
        self._loaded_dir: Optional[Path] = None
        self._definitions: List[Dict[str, Any]] = []
        self._by_name: Dict[str, Dict[str, Any]] = {}

    def discover_agents(
        self,
        agents_dir: Optional[Path | str] = None,
        *,
        force_reload: bool = False,
    ) -> List[Dict[str, Any]]:
        """
        加载（或复用）定义并返回副本列表。

        参数：
        - agents_dir：目标目录；缺省使用构造时的目录
        - force_reload：True 时无论目录是否变化都重新读取

        异常：
        - ValueError：未配置任何目录，或定义文件非法
        - FileNotFoundError：目录不存在
        """

        target = Path(agents_dir) if agents_dir is not None else self._default_dir
        if target is None:
            raise ValueError("agents dir is not configured")
        resolved = target.expanduser().resolve()
        if force_reload or self._loaded_dir != resolved:
            definitions = load_agent_definitions(resolved)
            self._loaded_dir = resolved
            self._definitions = definitions
            self._by_name = {d["name"]: d for d in definitions}
            logger.debug("agents discovered: dir=%s count=%d", resolved, len(definitions))
        return copy.deepcopy(self._definitions)

    def get_agent(self, name: str) -> Optional[Dict[str, Any]]:
        """按名查找定义（副本）；空名或不存在返回 None。"""

        key = str(name or "").strip()
        if not key:
            return None
        found = self._by_name.get(key)
        return copy.deepcopy(found) if found is not None else None

    def list_agents(self) -> List[str]:
        """返回已加载定义的名字（文件名顺序）。"""

        return [d["name"] for d in self._definitions]
