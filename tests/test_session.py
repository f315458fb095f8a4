from __future__ import annotations

import asyncio

import httpx
import pytest

from conftest import FakeGateway
from ibkr_gateway.config import GatewayConfig
from ibkr_gateway.exceptions import ErrorCode, GatewayError
from ibkr_gateway.session import AUTH_STATUS_PATH, REAUTHENTICATE_PATH, TICKLE_PATH, SessionManager


def _cfg(**overrides: object) -> GatewayConfig:
    base: dict[str, object] = {"tickle_interval_seconds": 3600.0, "max_auth_attempts": 3}
    base.update(overrides)
    return GatewayConfig.model_validate(base)


@pytest.mark.asyncio
async def test_authenticate_marks_session_and_starts_keepalive(gateway: FakeGateway) -> None:
    session = SessionManager(_cfg(), transport=gateway.transport)
    try:
        await session.authenticate()

        assert session.authenticated is True
        assert session.auth_attempts == 0
        assert session.tickle_active is True
        assert gateway.calls("POST", REAUTHENTICATE_PATH) == []
    finally:
        await session.aclose()

    assert session.tickle_active is False


@pytest.mark.asyncio
async def test_authenticate_posts_reauthenticate_when_status_is_false(gateway: FakeGateway) -> None:
    gateway.authenticated = False
    gateway.add("POST", REAUTHENTICATE_PATH, (200, {"message": "triggered"}))
    session = SessionManager(_cfg(), transport=gateway.transport)
    try:
        await session.authenticate()
        assert session.authenticated is True
        assert len(gateway.calls("POST", REAUTHENTICATE_PATH)) == 1
    finally:
        await session.aclose()


@pytest.mark.asyncio
async def test_fourth_attempt_fails_without_network_after_three_failures(gateway: FakeGateway) -> None:
    gateway.add("GET", AUTH_STATUS_PATH, (500, {"error": "gateway down"}))
    session = SessionManager(_cfg(), transport=gateway.transport)
    try:
        codes: list[ErrorCode] = []
        for _ in range(3):
            with pytest.raises(GatewayError) as exc_info:
                await session.authenticate()
            codes.append(exc_info.value.code)

        assert codes == [ErrorCode.AUTH_PENDING, ErrorCode.AUTH_PENDING, ErrorCode.AUTH_EXHAUSTED]
        seen = len(gateway.requests)

        with pytest.raises(GatewayError) as exc_info:
            await session.authenticate()

        assert exc_info.value.code is ErrorCode.AUTH_EXHAUSTED
        assert len(gateway.requests) == seen
        assert session.authenticated is False
    finally:
        await session.aclose()


@pytest.mark.asyncio
async def test_reset_auth_attempts_allows_a_new_attempt(gateway: FakeGateway) -> None:
    gateway.add(
        "GET",
        AUTH_STATUS_PATH,
        (500, {"error": "down"}),
        (500, {"error": "down"}),
        (200, {"authenticated": True}),
    )
    session = SessionManager(_cfg(max_auth_attempts=2), transport=gateway.transport)
    try:
        for _ in range(2):
            with pytest.raises(GatewayError):
                await session.authenticate()
        assert session.state.exhausted is True

        await session.reset_auth_attempts()
        await session.authenticate()

        assert session.authenticated is True
    finally:
        await session.aclose()


@pytest.mark.asyncio
async def test_concurrent_callers_share_one_authentication_attempt(gateway: FakeGateway) -> None:
    release = asyncio.Event()

    async def _slow_status(request: httpx.Request) -> httpx.Response:
        await release.wait()
        return httpx.Response(200, json={"authenticated": True})

    async def _handler(request: httpx.Request) -> httpx.Response:
        gateway.requests.append(request)
        if request.url.path.endswith(AUTH_STATUS_PATH):
            return await _slow_status(request)
        return httpx.Response(200, json={})

    session = SessionManager(_cfg(), transport=httpx.MockTransport(_handler))
    try:
        callers = [asyncio.create_task(session.ensure_authenticated()) for _ in range(5)]
        while not gateway.requests:
            await asyncio.sleep(0)
        release.set()
        await asyncio.gather(*callers)

        status_calls = [req for req in gateway.requests if req.url.path.endswith(AUTH_STATUS_PATH)]
        assert len(status_calls) == 1
        assert session.authenticated is True
        assert session.auth_attempts == 0
    finally:
        await session.aclose()


@pytest.mark.asyncio
async def test_check_status_false_clears_flag_and_stops_keepalive(gateway: FakeGateway) -> None:
    session = SessionManager(_cfg(), transport=gateway.transport)
    try:
        assert await session.check_status() is True
        assert session.tickle_active is True

        gateway.authenticated = False
        assert await session.check_status() is False
        assert session.authenticated is False
        assert session.tickle_active is False

        assert await session.check_status() is False
        assert session.tickle_active is False
    finally:
        await session.aclose()


@pytest.mark.asyncio
async def test_check_status_never_raises_on_transport_failure() -> None:
    def _boom(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    session = SessionManager(_cfg(), transport=httpx.MockTransport(_boom))
    try:
        assert await session.check_status() is False
        assert session.status().last_error is not None
    finally:
        await session.aclose()


@pytest.mark.asyncio
async def test_tickle_failure_rechecks_status_and_reports_expiry(gateway: FakeGateway) -> None:
    session = SessionManager(_cfg(), transport=gateway.transport)
    try:
        await session.authenticate()
        gateway.add("POST", TICKLE_PATH, (401, {"error": "expired"}))
        gateway.authenticated = False

        assert await session.tickle() is False
        assert session.authenticated is False
        assert session.tickle_active is False
    finally:
        await session.aclose()


@pytest.mark.asyncio
async def test_keepalive_loop_pings_on_interval(gateway: FakeGateway) -> None:
    session = SessionManager(_cfg(tickle_interval_seconds=0.01), transport=gateway.transport)
    try:
        await session.authenticate()
        for _ in range(50):
            if gateway.calls("POST", TICKLE_PATH):
                break
            await asyncio.sleep(0.01)
        assert gateway.calls("POST", TICKLE_PATH)
    finally:
        await session.aclose()


@pytest.mark.asyncio
async def test_keepalive_loop_stops_itself_after_expiry(gateway: FakeGateway) -> None:
    session = SessionManager(_cfg(tickle_interval_seconds=0.01), transport=gateway.transport)
    try:
        await session.authenticate()
        gateway.add("POST", TICKLE_PATH, (401, {"error": "expired"}))
        gateway.authenticated = False

        for _ in range(100):
            if not session.tickle_active:
                break
            await asyncio.sleep(0.01)
        await asyncio.sleep(0.05)

        assert session.tickle_active is False
        assert session.authenticated is False
        assert len(gateway.calls("POST", TICKLE_PATH)) == 1
    finally:
        await session.aclose()


@pytest.mark.asyncio
async def test_set_endpoint_resets_state_and_cancels_keepalive(gateway: FakeGateway) -> None:
    session = SessionManager(_cfg(), transport=gateway.transport)
    try:
        await session.authenticate()
        session._state.auth_attempts = 2  # noqa: SLF001

        changed = await session.set_endpoint("localhost", 5001)

        assert changed is True
        assert session.port == 5001
        assert session.authenticated is False
        assert session.auth_attempts == 0
        assert session.tickle_active is False
        assert await session.set_endpoint("localhost", 5001) is False
    finally:
        await session.aclose()


@pytest.mark.asyncio
async def test_destroy_is_idempotent(gateway: FakeGateway) -> None:
    session = SessionManager(_cfg(), transport=gateway.transport)
    await session.authenticate()

    await session.destroy()
    await session.destroy()

    assert session.tickle_active is False
    await session.aclose()


@pytest.mark.asyncio
async def test_status_reports_endpoint_and_attempts(gateway: FakeGateway) -> None:
    session = SessionManager(_cfg(port=5002), transport=gateway.transport)
    try:
        await session.authenticate()
        status = session.status()
        assert status.authenticated is True
        assert status.port == 5002
        assert status.max_auth_attempts == 3
        assert status.authenticated_at is not None
    finally:
        await session.aclose()
