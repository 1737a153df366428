"""
HttpGatewayClient：通用定时 RPC 调用的 HTTP 实现（httpx）。

协议：
- `POST {base_url}/rpc`，body 为 `{"method": ..., "params": {...}}`
- 成功：2xx 且 body 不是 `{"ok": false}`；返回 body 的 `result`（为 mapping 时），否则返回 body 本身
- 失败：网络错误 / 超时 / 非 2xx / `ok:false` 一律抛 `GatewayCallError`

说明：
- 每次调用使用独立的超时（毫秒），对应 wait/history 等调用方传入的 deadline。
- 不做自动重试；重试策略属于上层协作方。
"""

from __future__ import annotations

import os
from typing import Any, Dict, Mapping, Optional

import httpx

from savc_orchestrator.config.loader import OrchestratorGatewayConfig
from savc_orchestrator.core.errors import GatewayCallError


class HttpGatewayClient:
    """
    gateway HTTP 客户端。

    参数：
    - cfg：gateway 配置（base_url、token_env）
    - token：可选 token 覆盖（仅内存；优先于环境变量）
    - env：读取 token 的环境映射（默认 os.environ）
    - transport：可选 httpx transport（测试用 `httpx.MockTransport`）
    """

    def __init__(
        self,
        cfg: OrchestratorGatewayConfig,
        *,
        token: Optional[str] = None,
        env: Optional[Mapping[str, str]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._cfg = cfg
        self._token_override = token
        self._env = env
        self._transport = transport

    def _endpoint(self) -> str:
        """返回 `/rpc` 的完整 URL（基于 cfg.base_url 拼接）。"""

        base = self._cfg.base_url.rstrip("/")
        return f"{base}/rpc"

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        env = self._env if self._env is not None else os.environ
        token = self._token_override or str(env.get(self._cfg.token_env, "") or "").strip()
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    async def call(self, method: str, params: Dict[str, Any], *, timeout_ms: int) -> Dict[str, Any]:
        """
        发起一次 RPC 调用。

        参数：
        - method：RPC 方法名（例如 `agent.wait` / `chat.history`）
        - params：方法参数
        - timeout_ms：本次调用的传输层超时（毫秒）

        异常：
        - GatewayCallError：网络错误、超时、非 2xx，或 body 声明 `ok: false`
        """

        timeout = httpx.Timeout(max(1, int(timeout_ms)) / 1000)
        payload = {"method": method, "params": params}
        try:
            async with httpx.AsyncClient(timeout=timeout, transport=self._transport) as client:
                resp = await client.post(self._endpoint(), json=payload, headers=self._headers())
        except httpx.TimeoutException as exc:
            raise GatewayCallError(f"gateway call timed out: {method}", method=method) from exc
        except httpx.RequestError as exc:
            raise GatewayCallError(f"gateway request failed: {method}: {exc}", method=method) from exc

        if resp.status_code >= 400:
            raise GatewayCallError(
                f"gateway returned HTTP {resp.status_code}: {method}: {_error_text(resp)}",
                method=method,
                status_code=resp.status_code,
            )
        try:
            body = resp.json()
        except ValueError as exc:
            raise GatewayCallError(
                f"gateway returned non-JSON body: {method}", method=method, status_code=resp.status_code
            ) from exc
        if not isinstance(body, dict):
            raise GatewayCallError(
                f"gateway returned non-object body: {method}", method=method, status_code=resp.status_code
            )
        if body.get("ok") is False:
            raise GatewayCallError(
                f"gateway call failed: {method}: {_body_error(body)}",
                method=method,
                status_code=resp.status_code,
            )
        result = body.get("result")
        if isinstance(result, dict):
            return result
        return body


def _body_error(body: Mapping[str, Any]) -> str:
    err = body.get("error")
    if isinstance(err, Mapping):
        msg = err.get("message")
        if isinstance(msg, str) and msg.strip():
            return msg.strip()
    if isinstance(err, str) and err.strip():
        return err.strip()
    return "unknown error"


def _error_text(resp: httpx.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return resp.text[:200]
    if isinstance(body, Mapping):
        return _body_error(body)
    return str(body)[:200]
