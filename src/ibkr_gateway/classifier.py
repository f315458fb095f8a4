"""Heuristic classification of gateway failures.

The gateway has no canonical shape for "session not authenticated": depending on
the endpoint it answers 401, 403, or 500, or a 200-series body with an ``error``
string. ``classify`` looks at the status code, the exception message and a few
known body fields. False positives (a 500 unrelated to auth) are tolerated: they
only change the message shown to the caller, never control flow.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

import httpx

from ibkr_gateway.exceptions import AUTH_ERROR_CODES, GatewayError

AUTH_STATUS_CODES = frozenset({401, 403, 500})
AUTH_MESSAGE_TOKENS = ("authentication", "authenticate", "unauthorized", "not authenticated", "login")


class ErrorKind(str, Enum):
    AUTHENTICATION = "authentication"
    UNKNOWN = "unknown"


def classify(error: Any) -> ErrorKind:
    if error is None:
        return ErrorKind.UNKNOWN

    if isinstance(error, GatewayError) and error.code in AUTH_ERROR_CODES:
        return ErrorKind.AUTHENTICATION

    status = _status_code(error)
    if status in AUTH_STATUS_CODES:
        return ErrorKind.AUTHENTICATION

    for text in (_message(error), *_body_messages(_response_body(error))):
        if _has_auth_token(text):
            return ErrorKind.AUTHENTICATION
    return ErrorKind.UNKNOWN


def is_authentication_error(error: Any) -> bool:
    return classify(error) is ErrorKind.AUTHENTICATION


def _has_auth_token(text: str | None) -> bool:
    if not text:
        return False
    lowered = text.lower()
    return any(token in lowered for token in AUTH_MESSAGE_TOKENS)


def _status_code(error: Any) -> int | None:
    if isinstance(error, GatewayError):
        value = error.details.get("status_code")
        return value if isinstance(value, int) else None
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code
    if isinstance(error, dict):
        value = error.get("status") or error.get("status_code")
        return value if isinstance(value, int) else None
    value = getattr(error, "status_code", None)
    return value if isinstance(value, int) else None


def _message(error: Any) -> str:
    if isinstance(error, GatewayError):
        return error.message
    if isinstance(error, dict):
        value = error.get("message")
        return value if isinstance(value, str) else ""
    return str(error)


def _response_body(error: Any) -> Any:
    if isinstance(error, GatewayError):
        return error.details.get("body")
    if isinstance(error, httpx.HTTPStatusError):
        try:
            return error.response.json()
        except Exception:
            return error.response.text
    if isinstance(error, dict):
        return error.get("body") or error.get("data")
    return None


def _body_messages(body: Any) -> list[str]:
    """Collect ``error`` and ``error.message`` strings from a gateway response body."""
    if isinstance(body, str):
        return [body]
    if not isinstance(body, dict):
        return []

    out: list[str] = []
    raw_error = body.get("error")
    if isinstance(raw_error, str):
        out.append(raw_error)
    elif isinstance(raw_error, dict):
        nested = raw_error.get("message")
        if isinstance(nested, str):
            out.append(nested)
    message = body.get("message")
    if isinstance(message, str):
        out.append(message)
    return out
