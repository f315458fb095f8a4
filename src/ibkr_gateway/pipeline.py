"""Request pipeline: lazy authentication, correlation ids and failure classification."""

from __future__ import annotations

from contextlib import suppress
import logging
from typing import Any
import uuid

import httpx

from ibkr_gateway.classifier import is_authentication_error
from ibkr_gateway.config import GatewayConfig
from ibkr_gateway.exceptions import ErrorCode, GatewayError
from ibkr_gateway.session import LOGIN_SUGGESTION, SessionManager
from ibkr_gateway.transport import build_gateway_client

logger = logging.getLogger(__name__)

AUTH_REQUIRED_MESSAGE = "authentication required; log in to the IB Gateway and retry"
BODY_PREVIEW_CHARS = 500


def new_request_id() -> str:
    return uuid.uuid4().hex[:9]


class RequestPipeline:
    """Every business call to the gateway goes through ``request``.

    The session is authenticated lazily: only a call that finds it
    unauthenticated pays for the extra round trips. Failed calls are not
    retried here.
    """

    def __init__(
        self,
        cfg: GatewayConfig,
        session: SessionManager,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._cfg = cfg
        self._session = session
        self._transport = transport
        self._client = self._build_client()

    @property
    def session(self) -> SessionManager:
        return self._session

    async def rebind(self) -> None:
        """Rebuild the HTTP client after the session moved to a new endpoint."""
        old = self._client
        self._client = self._build_client()
        await old.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json_body: Any = None,
        operation: str,
    ) -> httpx.Response:
        request_id = new_request_id()

        try:
            await self._session.ensure_authenticated()
        except GatewayError as exc:
            logger.warning("request_id=%s %s %s aborted: %s", request_id, method, path, exc.message)
            raise GatewayError(
                exc.code,
                exc.message,
                details={**exc.details, "operation": operation, "request_id": request_id},
                suggestion=exc.suggestion,
            ) from exc

        logger.debug("request_id=%s %s %s params=%s", request_id, method, path, params)
        try:
            response = await self._client.request(method, path, params=params, json=json_body)
        except httpx.TimeoutException as exc:
            logger.warning("request_id=%s %s %s timed out", request_id, method, path)
            raise GatewayError(
                ErrorCode.TIMEOUT,
                f"{operation} timed out",
                details={"operation": operation, "path": path, "request_id": request_id, "error": str(exc)},
                suggestion="Retry; the gateway did not answer within the request timeout.",
            ) from exc
        except httpx.RequestError as exc:
            logger.warning("request_id=%s %s %s network error: %s", request_id, method, path, exc)
            raise GatewayError(
                ErrorCode.TRANSPORT_FAILURE,
                f"{operation} failed: {exc}",
                details={
                    "operation": operation,
                    "path": path,
                    "request_id": request_id,
                    "error_type": type(exc).__name__,
                },
                suggestion="Check that the IB Gateway is running and reachable.",
            ) from exc

        logger.debug("request_id=%s status=%s", request_id, response.status_code)
        if response.status_code >= 400:
            self._raise_http_error(response, operation=operation, path=path, request_id=request_id)
        return response

    async def request_json(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json_body: Any = None,
        operation: str,
    ) -> Any:
        response = await self.request(method, path, params=params, json_body=json_body, operation=operation)
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise GatewayError(
                ErrorCode.OPERATION_FAILED,
                f"{operation} failed: expected JSON response",
                details={"operation": operation, "path": path, "status_code": response.status_code},
            ) from exc

    def _build_client(self) -> httpx.AsyncClient:
        return build_gateway_client(
            self._cfg,
            host=self._session.host,
            port=self._session.port,
            transport=self._transport,
        )

    def _raise_http_error(self, response: httpx.Response, *, operation: str, path: str, request_id: str) -> None:
        status_code = response.status_code
        body: Any = None
        raw = response.text.strip()
        if response.content:
            with suppress(ValueError):
                body = response.json()
                raw = _extract_error_message(body) or raw

        details = {
            "operation": operation,
            "status_code": status_code,
            "path": path,
            "request_id": request_id,
            "body": body if body is not None else raw[:BODY_PREVIEW_CHARS],
        }
        logger.warning(
            "request_id=%s %s failed status=%s body=%s",
            request_id,
            path,
            status_code,
            raw[:BODY_PREVIEW_CHARS],
        )

        code = ErrorCode.OPERATION_FAILED
        suggestion: str | None = None
        if status_code == 429:
            code = ErrorCode.RATE_LIMITED
            suggestion = "Retry with lower request frequency."
        error = GatewayError(
            code,
            f"{operation} failed: {raw or response.reason_phrase}",
            details=details,
            suggestion=suggestion,
        )
        if is_authentication_error(error):
            raise GatewayError(
                ErrorCode.AUTH_REQUIRED,
                AUTH_REQUIRED_MESSAGE,
                details={**details, "original_message": error.message},
                suggestion=LOGIN_SUGGESTION,
            )
        raise error


def _extract_error_message(payload: Any) -> str | None:
    if isinstance(payload, dict):
        for key in ("error", "message", "Message", "error_description"):
            value = payload.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
            if isinstance(value, dict):
                nested = _extract_error_message(value)
                if nested:
                    return nested
    elif isinstance(payload, list):
        for item in payload:
            nested = _extract_error_message(item)
            if nested:
                return nested
    return None
