"""Gateway session state machine and keep-alive loop."""

from __future__ import annotations

import asyncio
from contextlib import suppress
from datetime import UTC, datetime
import logging
from typing import Any

import httpx

from ibkr_gateway.config import GatewayConfig
from ibkr_gateway.exceptions import ErrorCode, GatewayError
from ibkr_gateway.models.session import SessionState, SessionStatus
from ibkr_gateway.transport import build_gateway_client

logger = logging.getLogger(__name__)

AUTH_STATUS_PATH = "/iserver/auth/status"
REAUTHENTICATE_PATH = "/iserver/reauthenticate"
TICKLE_PATH = "/tickle"
LOGIN_SUGGESTION = "Log in to the gateway (or run `ibkr-gateway login`) and retry."

_STATUS_CHECK_ERRORS = (GatewayError, httpx.HTTPError, ValueError)


class SessionManager:
    """Owns the authenticated flag, the attempt counter and the keep-alive task.

    Status checks, re-authentication and tickles go over side-channel clients
    that never pass through the request pipeline, so probing the session can
    not recursively trigger authentication. State mutation is serialized with
    an ``asyncio.Lock`` and concurrent ``authenticate()`` calls share a single
    in-flight attempt.
    """

    def __init__(
        self,
        cfg: GatewayConfig,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._cfg = cfg
        self._transport = transport
        self._host = cfg.host
        self._port = cfg.port
        self._state = SessionState(
            max_auth_attempts=cfg.max_auth_attempts,
            tickle_interval_seconds=cfg.tickle_interval_seconds,
        )
        self._lock = asyncio.Lock()
        self._auth_task: asyncio.Task[None] | None = None
        self._tickle_task: asyncio.Task[None] | None = None
        self._authenticated_at: datetime | None = None
        self._last_error: str | None = None
        self._side_channel, self._tickle_channel = self._build_channels()

    @property
    def authenticated(self) -> bool:
        return self._state.authenticated

    @property
    def auth_attempts(self) -> int:
        return self._state.auth_attempts

    @property
    def tickle_active(self) -> bool:
        return self._tickle_task is not None and not self._tickle_task.done()

    @property
    def host(self) -> str:
        return self._host

    @property
    def port(self) -> int:
        return self._port

    @property
    def state(self) -> SessionState:
        return self._state.model_copy(update={"tickle_active": self.tickle_active})

    def status(self) -> SessionStatus:
        return SessionStatus(
            authenticated=self._state.authenticated,
            host=self._host,
            port=self._port,
            auth_attempts=self._state.auth_attempts,
            max_auth_attempts=self._state.max_auth_attempts,
            tickle_active=self.tickle_active,
            authenticated_at=self._authenticated_at,
            last_error=self._last_error,
        )

    async def check_status(self) -> bool:
        """Check the gateway and sync local state. Never raises on gateway failure."""
        try:
            payload = await self._fetch_status()
        except _STATUS_CHECK_ERRORS as exc:
            self._last_error = f"status check failed: {exc}"
            logger.warning("gateway status check failed: %s", exc)
            await self._mark_unauthenticated()
            return False

        if payload.get("authenticated") is True:
            await self._mark_authenticated()
            return True
        await self._mark_unauthenticated()
        return False

    async def ensure_authenticated(self) -> None:
        if self._state.authenticated:
            return
        await self._join_or_start_auth(only_if_needed=True)

    async def authenticate(self) -> None:
        """Authenticate, sharing one in-flight attempt between concurrent callers.

        Raises ``GatewayError`` with ``AUTH_PENDING`` when the attempt failed but
        the budget is not spent, or ``AUTH_EXHAUSTED`` once it is. An exhausted
        session fails immediately without touching the network until the
        counter is reset by a successful status check, ``reset_auth_attempts()`` or an
        endpoint change.
        """
        await self._join_or_start_auth(only_if_needed=False)

    async def _join_or_start_auth(self, *, only_if_needed: bool) -> None:
        async with self._lock:
            task = self._auth_task
            if task is None or task.done():
                if only_if_needed and self._state.authenticated:
                    return
                if self._state.exhausted:
                    raise GatewayError(
                        ErrorCode.AUTH_EXHAUSTED,
                        f"max authentication attempts ({self._state.max_auth_attempts}) exceeded",
                        details={"attempts": self._state.auth_attempts},
                        suggestion=LOGIN_SUGGESTION,
                    )
                self._state.auth_attempts += 1
                task = asyncio.create_task(self._authenticate_once(self._state.auth_attempts))
                self._auth_task = task
        try:
            await asyncio.shield(task)
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if not task.cancelled() or (current is not None and current.cancelling() > 0):
                raise
            # The shared attempt was cancelled by an endpoint change, not this caller.
            raise GatewayError(
                ErrorCode.AUTH_PENDING,
                "authentication interrupted by gateway endpoint change",
                details={"host": self._host, "port": self._port},
                suggestion="Retry; the session is re-established on the new endpoint.",
            ) from None

    async def reset_auth_attempts(self) -> None:
        async with self._lock:
            self._state.auth_attempts = 0

    async def tickle(self) -> bool:
        """Send one keep-alive ping; on failure recheck status and report whether the session survived."""
        try:
            response = await self._tickle_channel.post(TICKLE_PATH)
            response.raise_for_status()
            logger.debug("keep-alive ping sent host=%s port=%s", self._host, self._port)
            return True
        except httpx.HTTPError as exc:
            self._last_error = f"keep-alive ping failed: {exc}"
            logger.warning("keep-alive ping failed: %s", exc)

        alive = await self.check_status()
        if not alive:
            logger.warning("gateway session expired; keep-alive stopped")
        return alive

    async def set_endpoint(self, host: str, port: int) -> bool:
        """Point the session at a new gateway process. Returns True when the endpoint changed."""
        if host == self._host and port == self._port:
            return False

        logger.info("gateway endpoint changed %s:%s -> %s:%s", self._host, self._port, host, port)
        await self._cancel_auth_task()
        await self._stop_tickle()
        async with self._lock:
            self._state.authenticated = False
            self._state.auth_attempts = 0
            self._authenticated_at = None

        old_channels = (self._side_channel, self._tickle_channel)
        self._host = host
        self._port = port
        self._side_channel, self._tickle_channel = self._build_channels()
        for channel in old_channels:
            await channel.aclose()
        return True

    async def destroy(self) -> None:
        await self._cancel_auth_task()
        await self._stop_tickle()

    async def aclose(self) -> None:
        await self.destroy()
        await self._side_channel.aclose()
        await self._tickle_channel.aclose()

    def _build_channels(self) -> tuple[httpx.AsyncClient, httpx.AsyncClient]:
        side = build_gateway_client(
            self._cfg,
            host=self._host,
            port=self._port,
            transport=self._transport,
        )
        tickle = build_gateway_client(
            self._cfg,
            host=self._host,
            port=self._port,
            timeout_seconds=self._cfg.tickle_timeout_seconds,
            transport=self._transport,
        )
        return side, tickle

    async def _fetch_status(self) -> dict[str, Any]:
        response = await self._side_channel.get(AUTH_STATUS_PATH)
        response.raise_for_status()
        if not response.content:
            return {}
        payload = response.json()
        logger.debug("auth status response: %s", payload)
        return payload if isinstance(payload, dict) else {}

    async def _authenticate_once(self, attempt: int) -> None:
        limit = self._state.max_auth_attempts
        logger.info("authenticating with gateway (attempt %d/%d)", attempt, limit)
        try:
            payload = await self._fetch_status()
            if payload.get("authenticated") is True:
                logger.info("gateway session already authenticated")
                await self._mark_authenticated()
                return

            response = await self._side_channel.post(REAUTHENTICATE_PATH)
            response.raise_for_status()
        except _STATUS_CHECK_ERRORS as exc:
            self._last_error = f"authentication attempt {attempt}/{limit} failed: {exc}"
            logger.warning("authentication attempt %d/%d failed: %s", attempt, limit, exc)
            if attempt >= limit:
                raise GatewayError(
                    ErrorCode.AUTH_EXHAUSTED,
                    f"failed to authenticate with IB Gateway after {limit} attempts",
                    details={"attempts": attempt},
                    suggestion=LOGIN_SUGGESTION,
                ) from exc
            raise GatewayError(
                ErrorCode.AUTH_PENDING,
                "failed to authenticate with IB Gateway",
                details={"attempts": attempt, "max_attempts": limit},
                suggestion="Retry shortly; the gateway session may still be starting.",
            ) from exc

        logger.info("gateway re-authentication accepted")
        await self._mark_authenticated()

    async def _mark_authenticated(self) -> None:
        async with self._lock:
            was_authenticated = self._state.authenticated
            self._state.authenticated = True
            self._state.auth_attempts = 0
            if not was_authenticated:
                self._authenticated_at = datetime.now(UTC)
            self._last_error = None
        if not was_authenticated:
            logger.info("gateway session authenticated host=%s port=%s", self._host, self._port)
        self._start_tickle()

    async def _mark_unauthenticated(self) -> None:
        async with self._lock:
            was_authenticated = self._state.authenticated
            self._state.authenticated = False
            self._authenticated_at = None
        if was_authenticated:
            logger.info("gateway session lost host=%s port=%s", self._host, self._port)
        await self._stop_tickle()

    def _start_tickle(self) -> None:
        if self.tickle_active:
            return
        logger.info("starting keep-alive every %.0fs", self._state.tickle_interval_seconds)
        self._tickle_task = asyncio.create_task(self._tickle_loop())

    async def _stop_tickle(self) -> None:
        task = self._tickle_task
        self._tickle_task = None
        if task is None or task.done():
            return
        logger.info("stopping keep-alive")
        if task is asyncio.current_task():
            # The loop observes the cleared handle and returns on its own.
            return
        task.cancel()
        with suppress(asyncio.CancelledError):
            await task

    async def _tickle_loop(self) -> None:
        me = asyncio.current_task()
        try:
            while self._tickle_task is me:
                await asyncio.sleep(self._state.tickle_interval_seconds)
                if not await self.tickle():
                    return
        finally:
            if self._tickle_task is me:
                self._tickle_task = None

    async def _cancel_auth_task(self) -> None:
        task = self._auth_task
        self._auth_task = None
        if task is None or task.done():
            return
        task.cancel()
        with suppress(asyncio.CancelledError, GatewayError):
            await task
