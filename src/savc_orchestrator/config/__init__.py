"""配置层（默认配置 + YAML overlays + pydantic 校验）。"""

from savc_orchestrator.config.defaults import load_default_config_dict
from savc_orchestrator.config.loader import OrchestratorConfig, load_config, load_config_dicts

__all__ = ["OrchestratorConfig", "load_config", "load_config_dicts", "load_default_config_dict"]
