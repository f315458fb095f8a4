"""Async client for the Interactive Brokers Client Portal gateway."""

from ibkr_gateway.client import AuthResult, Authenticator, GatewayClient, GatewayManager
from ibkr_gateway.config import AppConfig, load_config
from ibkr_gateway.exceptions import ErrorCode, GatewayError
from ibkr_gateway.handlers import OperationHandlers

__all__ = [
    "AppConfig",
    "AuthResult",
    "Authenticator",
    "ErrorCode",
    "GatewayClient",
    "GatewayError",
    "GatewayManager",
    "OperationHandlers",
    "load_config",
]
