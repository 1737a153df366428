"""按配置选定执行后端（启动时一次）。"""

from __future__ import annotations

import logging
from typing import Optional

from savc_orchestrator.backends.gateway_http import HttpGatewayClient
from savc_orchestrator.backends.lifecycle import InProcessLifecycle
from savc_orchestrator.backends.mock import MockBackend
from savc_orchestrator.backends.protocol import ExecutionBackend, GatewayCall, LifecycleModule, SessionsToolFactory
from savc_orchestrator.backends.real import RealBackend
from savc_orchestrator.backends.real_session_adapter import RealSessionAdapter
from savc_orchestrator.config.loader import OrchestratorConfig
from savc_orchestrator.core.reconciler import RunReconciler
from savc_orchestrator.state.run_registry import RunRegistry

logger = logging.getLogger(__name__)


def build_backend(
    config: OrchestratorConfig,
    *,
    lifecycle: Optional[LifecycleModule] = None,
    sessions_tools: Optional[SessionsToolFactory] = None,
    gateway: Optional[GatewayCall] = None,
    registry: Optional[RunRegistry] = None,
) -> ExecutionBackend:
    """
    构造执行后端。

    参数：
    - config：编排配置（`spawn_mode` 决定变体）
    - lifecycle：mock 变体的 lifecycle 协作方；缺省为 `InProcessLifecycle`
    - sessions_tools：real 变体必需（sessions_spawn / sessions_send 工具工厂）
    - gateway：real 变体的通用 RPC；缺省为 `HttpGatewayClient(config.gateway)`
    - registry：real 变体的 run 记录表；缺省新建

    异常：
    - ValueError：real 模式缺少 sessions_tools
    """

    if config.spawn_mode != "real":
        logger.debug("execution backend: mock")
        return MockBackend(lifecycle or InProcessLifecycle())

    if sessions_tools is None:
        raise ValueError("real spawn mode requires a sessions tool factory")
    real_cfg = config.real
    adapter = RealSessionAdapter(
        sessions_tools=sessions_tools,
        gateway=gateway or HttpGatewayClient(config.gateway),
        wait_margin_ms=real_cfg.wait_margin_ms,
        history_timeout_ms=real_cfg.history_timeout_ms,
        send_timeout_seconds=real_cfg.send_timeout_seconds,
    )
    run_registry = registry if registry is not None else RunRegistry()
    reconciler = RunReconciler(
        run_registry,
        adapter,
        status_poll_ms=real_cfg.status_poll_ms,
        history_limit=real_cfg.history_limit,
    )
    logger.debug("execution backend: real (gateway=%s)", config.gateway.base_url)
    return RealBackend(adapter, run_registry, reconciler=reconciler)
