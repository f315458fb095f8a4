"""Error hierarchy and code mapping for the gateway client."""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    AUTH_REQUIRED = "AUTH_REQUIRED"
    AUTH_PENDING = "AUTH_PENDING"
    AUTH_EXHAUSTED = "AUTH_EXHAUSTED"
    SYMBOL_NOT_FOUND = "SYMBOL_NOT_FOUND"
    CONTRACT_NOT_FOUND = "CONTRACT_NOT_FOUND"
    ORDER_REJECTED = "ORDER_REJECTED"
    RATE_LIMITED = "RATE_LIMITED"
    TRANSPORT_FAILURE = "TRANSPORT_FAILURE"
    TIMEOUT = "TIMEOUT"
    GATEWAY_UNAVAILABLE = "GATEWAY_UNAVAILABLE"
    INVALID_ARGS = "INVALID_ARGS"
    OPERATION_FAILED = "OPERATION_FAILED"
    INTERNAL_ERROR = "INTERNAL_ERROR"


AUTH_ERROR_CODES = frozenset({ErrorCode.AUTH_REQUIRED, ErrorCode.AUTH_PENDING, ErrorCode.AUTH_EXHAUSTED})

EXIT_CODE_BY_ERROR: dict[ErrorCode, int] = {
    ErrorCode.INVALID_ARGS: 2,
    ErrorCode.GATEWAY_UNAVAILABLE: 3,
    ErrorCode.AUTH_REQUIRED: 4,
    ErrorCode.AUTH_PENDING: 4,
    ErrorCode.AUTH_EXHAUSTED: 4,
    ErrorCode.ORDER_REJECTED: 5,
    ErrorCode.TIMEOUT: 10,
}


class GatewayError(Exception):
    """Typed exception carried from the request pipeline up to the handler boundary."""

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        *,
        details: dict[str, Any] | None = None,
        suggestion: str | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details or {}
        self.suggestion = suggestion

    @property
    def is_auth_error(self) -> bool:
        return self.code in AUTH_ERROR_CODES

    @property
    def exit_code(self) -> int:
        return EXIT_CODE_BY_ERROR.get(self.code, 1)

    def with_context(self, context: str) -> "GatewayError":
        """Return a copy whose message is prefixed with the operation context."""
        if self.is_auth_error:
            return self
        return GatewayError(
            self.code,
            f"{context}: {self.message}",
            details=dict(self.details),
            suggestion=self.suggestion,
        )

    def to_error_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "code": self.code.value,
            "message": self.message,
            "details": self.details,
        }
        if self.suggestion:
            payload["suggestion"] = self.suggestion
        return payload
