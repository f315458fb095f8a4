"""HTTP transport construction for the local Client Portal gateway."""

from __future__ import annotations

import httpx

from ibkr_gateway.config import GatewayConfig

API_PREFIX = "/v1/api"


def gateway_base_url(host: str, port: int) -> str:
    return f"https://{host}:{port}{API_PREFIX}"


def build_gateway_client(
    cfg: GatewayConfig,
    *,
    host: str | None = None,
    port: int | None = None,
    timeout_seconds: float | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> httpx.AsyncClient:
    """Build an ``AsyncClient`` bound to the gateway API root.

    Certificate verification follows ``cfg.verify_tls``, which defaults to off:
    the gateway process presents a self-signed certificate for localhost. This
    trust exception applies to the gateway client only and must not be reused
    for any other endpoint.
    """
    timeout = timeout_seconds if timeout_seconds is not None else cfg.request_timeout_seconds
    return httpx.AsyncClient(
        base_url=gateway_base_url(host or cfg.host, port if port is not None else cfg.port),
        timeout=httpx.Timeout(timeout),
        verify=cfg.verify_tls,
        headers={"Accept": "application/json", "User-Agent": "ibkr-gateway-client"},
        transport=transport,
    )
