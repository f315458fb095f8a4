from __future__ import annotations

from collections.abc import Callable
import json
import os
from pathlib import Path
from typing import Any

import httpx
import pytest

from ibkr_gateway import config as ibkr_config
from ibkr_gateway.config import AppConfig, GatewayConfig
from ibkr_gateway.transport import API_PREFIX

Route = tuple[int, Any] | Callable[[httpx.Request], httpx.Response]


class FakeGateway:
    """In-memory Client Portal gateway behind ``httpx.MockTransport``.

    Routes are keyed by ``(method, path)`` with the ``/v1/api`` prefix removed.
    Several responses may be queued for one route; the last one repeats.
    """

    def __init__(self) -> None:
        self.authenticated = True
        self.requests: list[httpx.Request] = []
        self._routes: dict[tuple[str, str], list[Route]] = {}

    def add(self, method: str, path: str, *responses: Route) -> None:
        self._routes[(method.upper(), path)] = list(responses)

    def calls(self, method: str, path: str) -> list[httpx.Request]:
        return [req for req in self.requests if req.method == method.upper() and _api_path(req) == path]

    def json_body(self, request: httpx.Request) -> Any:
        return json.loads(request.content.decode("utf-8"))

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        key = (request.method, _api_path(request))
        queue = self._routes.get(key)
        if not queue:
            if key == ("GET", "/iserver/auth/status"):
                return httpx.Response(200, json={"authenticated": self.authenticated, "connected": True})
            if key == ("POST", "/tickle"):
                return httpx.Response(200, json={"session": "abc"})
            return httpx.Response(404, json={"error": f"no route for {key[0]} {key[1]}"})

        route = queue.pop(0) if len(queue) > 1 else queue[0]
        if callable(route):
            return route(request)
        status, payload = route
        return httpx.Response(status, json=payload)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


def _api_path(request: httpx.Request) -> str:
    path = request.url.path
    return path[len(API_PREFIX) :] if path.startswith(API_PREFIX) else path


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def app_config() -> AppConfig:
    return AppConfig(gateway=GatewayConfig(tickle_interval_seconds=3600.0))


@pytest.fixture
def fake_home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    home = tmp_path / "home"
    home.mkdir(parents=True)
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setattr(ibkr_config, "DEFAULT_CONFIG_JSON", home / "config.json")
    return home


@pytest.fixture(autouse=True)
def clear_ibkr_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for key in list(os.environ.keys()):
        if key.startswith("IBKR_"):
            monkeypatch.delenv(key, raising=False)
