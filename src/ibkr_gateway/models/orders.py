"""Order request and execution result models."""

from __future__ import annotations

from enum import Enum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, Field, field_validator


class OrderAction(str, Enum):
    BUY = "BUY"
    SELL = "SELL"


class OrderType(str, Enum):
    MARKET = "MKT"
    LIMIT = "LMT"
    STOP = "STP"


class OrderBase(BaseModel):
    account_id: str
    symbol: str
    action: OrderAction
    order_type: OrderType
    quantity: float = Field(gt=0)
    price: float | None = None
    stop_price: float | None = None
    suppress_confirmations: bool = False

    @field_validator("symbol")
    @classmethod
    def _normalize_symbol(cls, value: str) -> str:
        return value.upper().strip()

    def missing_price_field(self) -> str | None:
        if self.order_type is OrderType.LIMIT and self.price is None:
            return "price"
        if self.order_type is OrderType.STOP and self.stop_price is None:
            return "stop_price"
        return None


class StockOrder(OrderBase):
    kind: Literal["stock"] = "stock"


class OptionOrder(OrderBase):
    kind: Literal["option"] = "option"
    expiration: str
    strike: float
    right: str
    conid: int | None = None

    @field_validator("right")
    @classmethod
    def _validate_right(cls, value: str) -> str:
        normalized = value.upper().strip()
        if normalized not in {"C", "P", "CALL", "PUT"}:
            raise ValueError("right must be one of C, P, CALL, PUT")
        return normalized


OrderRequest = Annotated[StockOrder | OptionOrder, Field(discriminator="kind")]


class ConfirmationExchange(BaseModel):
    reply_id: str
    message_ids: list[str]
    message: list[str] = Field(default_factory=list)


class OrderResult(BaseModel):
    """Gateway response to an order submission or confirmation reply."""

    response: Any = None
    confirmed: bool = False
    confirmation: ConfirmationExchange | None = None
    conid: int | None = None
    approximate_contract: bool = False

    @property
    def requires_confirmation(self) -> bool:
        return self.confirmation is not None


class OrderModification(BaseModel):
    quantity: float | None = None
    price: float | None = None
    stop_price: float | None = None

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {}
        if self.quantity is not None:
            payload["quantity"] = self.quantity
        if self.price is not None:
            payload["price"] = self.price
        if self.stop_price is not None:
            payload["auxPrice"] = self.stop_price
        return payload
