"""Typed domain models."""

from ibkr_gateway.models.contracts import Contract, Expiration, OptionChain, OptionContract, Right, SecType
from ibkr_gateway.models.orders import (
    ConfirmationExchange,
    OptionOrder,
    OrderAction,
    OrderModification,
    OrderRequest,
    OrderResult,
    OrderType,
    StockOrder,
)
from ibkr_gateway.models.portfolio import PortfolioSummary, PositionSummary, SecTypeBucket
from ibkr_gateway.models.session import SessionState, SessionStatus

__all__ = [
    "ConfirmationExchange",
    "Contract",
    "Expiration",
    "OptionChain",
    "OptionContract",
    "OptionOrder",
    "OrderAction",
    "OrderModification",
    "OrderRequest",
    "OrderResult",
    "OrderType",
    "PortfolioSummary",
    "PositionSummary",
    "Right",
    "SecType",
    "SecTypeBucket",
    "SessionState",
    "SessionStatus",
    "StockOrder",
]
