"""Caller-facing operations.

Every coroutine here is total: it returns ``{"ok": True, "data": ...}`` or
``{"ok": False, "error": {...}}`` and never raises. Failures classified as
authentication problems all carry the same remediation message pointing at
the gateway login page, whichever operation hit them.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
import logging
from typing import Any

from pydantic import BaseModel, ValidationError

from ibkr_gateway.classifier import is_authentication_error
from ibkr_gateway.client import GatewayClient
from ibkr_gateway.exceptions import ErrorCode, GatewayError
from ibkr_gateway.models.orders import OptionOrder, OrderBase, OrderModification, StockOrder

logger = logging.getLogger(__name__)


def auth_required_message(login_url: str, *, headless_mode: bool) -> str:
    mode = "headless mode" if headless_mode else "browser mode"
    return (
        "Authentication required. Use the 'authenticate' operation (or `ibkr-gateway login`) "
        f"to complete the authentication process (configured for {mode}) at {login_url}."
    )


def to_jsonable(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if isinstance(value, list):
        return [to_jsonable(item) for item in value]
    if isinstance(value, dict):
        return {key: to_jsonable(item) for key, item in value.items()}
    return value


class OperationHandlers:
    def __init__(self, client: GatewayClient) -> None:
        self._client = client

    @property
    def client(self) -> GatewayClient:
        return self._client

    async def authenticate(self) -> dict[str, Any]:
        return await self._run("authenticate", self._client.authenticate)

    async def status(self) -> dict[str, Any]:
        return await self._run("status", self._client.status)

    async def get_account_info(self) -> dict[str, Any]:
        return await self._run("account_info", self._client.account_info)

    async def get_positions(self, account_id: str | None = None) -> dict[str, Any]:
        return await self._run("positions", lambda: self._client.positions(account_id))

    async def get_market_data(
        self,
        symbol: str,
        fields: str | list[str] | None = None,
        conid: int | None = None,
        exchange: str | None = None,
    ) -> dict[str, Any]:
        return await self._run("market_data", lambda: self._client.market_data(symbol, fields, conid, exchange))

    async def get_quote(self, symbol: str) -> dict[str, Any]:
        return await self._run("quote", lambda: self._client.quote(symbol))

    async def get_historical_data(
        self,
        symbol: str,
        conid: int | None = None,
        period: str | None = None,
        bar: str | None = None,
        outside_rth: bool | None = None,
    ) -> dict[str, Any]:
        return await self._run(
            "historical_data",
            lambda: self._client.historical_data(symbol, conid, period, bar, outside_rth),
        )

    async def get_options_chain(self, symbol: str, conid: int | None = None) -> dict[str, Any]:
        return await self._run("options_chain", lambda: self._client.options_chain(symbol, conid))

    async def find_option_contract(
        self,
        symbol: str,
        expiration: str | None = None,
        strike: float | str | None = None,
        right: str | None = None,
        delta: float | None = None,
    ) -> dict[str, Any]:
        return await self._run(
            "find_option_contract",
            lambda: self._client.find_option_contract(symbol, expiration, strike, right, delta),
        )

    async def get_portfolio_summary(self, account_id: str | None = None) -> dict[str, Any]:
        return await self._run("portfolio_summary", lambda: self._client.portfolio_summary(account_id))

    async def place_stock_order(self, **params: Any) -> dict[str, Any]:
        async def call() -> Any:
            order = _validated_order(StockOrder, params)
            return await self._client.place_stock_order(order)

        return await self._run("place_stock_order", call)

    async def place_option_order(self, **params: Any) -> dict[str, Any]:
        async def call() -> Any:
            order = _validated_order(OptionOrder, params)
            return await self._client.place_option_order(order)

        return await self._run("place_option_order", call)

    async def get_order_status(self, order_id: str) -> dict[str, Any]:
        return await self._run("order_status", lambda: self._client.order_status(order_id))

    async def get_live_orders(self, account_id: str | None = None) -> dict[str, Any]:
        return await self._run("live_orders", lambda: self._client.live_orders(account_id))

    async def confirm_order(self, reply_id: str, message_ids: list[str]) -> dict[str, Any]:
        async def call() -> Any:
            if not reply_id or not message_ids:
                raise GatewayError(ErrorCode.INVALID_ARGS, "reply_id and message_ids are required")
            return await self._client.confirm_order(reply_id, message_ids)

        return await self._run("confirm_order", call)

    async def cancel_order(self, order_id: str, account_id: str) -> dict[str, Any]:
        return await self._run("cancel_order", lambda: self._client.cancel_order(order_id, account_id))

    async def modify_order(
        self,
        order_id: str,
        account_id: str,
        quantity: float | None = None,
        price: float | None = None,
        stop_price: float | None = None,
    ) -> dict[str, Any]:
        async def call() -> Any:
            modifications = OrderModification(quantity=quantity, price=price, stop_price=stop_price)
            return await self._client.modify_order(order_id, account_id, modifications)

        return await self._run("modify_order", call)

    async def search_contracts(
        self,
        query: str,
        sec_type: str | None = None,
        exchange: str | None = None,
        currency: str | None = None,
        limit: int = 10,
    ) -> dict[str, Any]:
        return await self._run(
            "search_contracts",
            lambda: self._client.search_contracts(query, sec_type, exchange, currency, limit),
        )

    async def get_contract_details(self, conid: int) -> dict[str, Any]:
        return await self._run("contract_details", lambda: self._client.contract_details(conid))

    async def get_pnl(self, account_id: str | None = None) -> dict[str, Any]:
        return await self._run("pnl", lambda: self._client.pnl(account_id))

    async def get_trades_history(self, account_id: str | None = None, days: int = 7) -> dict[str, Any]:
        return await self._run("trades_history", lambda: self._client.trades_history(account_id, days))

    async def _run(self, operation: str, call: Callable[[], Awaitable[Any]]) -> dict[str, Any]:
        try:
            await self._client.ensure_ready()
            data = await call()
        except GatewayError as exc:
            return self._failure(operation, exc)
        except Exception as exc:
            logger.exception("unexpected failure in %s", operation)
            if is_authentication_error(exc):
                return self._failure(operation, GatewayError(ErrorCode.AUTH_REQUIRED, str(exc)))
            error = GatewayError(
                ErrorCode.INTERNAL_ERROR,
                f"{operation} failed: {exc}",
                details={"operation": operation, "error_type": type(exc).__name__},
            )
            return {"ok": False, "error": error.to_error_payload()}
        return {"ok": True, "data": to_jsonable(data)}

    def _failure(self, operation: str, exc: GatewayError) -> dict[str, Any]:
        details = dict(exc.details)
        details.setdefault("operation", operation)
        if exc.is_auth_error or is_authentication_error(exc):
            details["login_url"] = self._client.login_url
            details["reason"] = exc.message
            code = exc.code if exc.is_auth_error else ErrorCode.AUTH_REQUIRED
            exc = GatewayError(
                code,
                auth_required_message(self._client.login_url, headless_mode=self._client.headless_mode),
                details=details,
                suggestion=exc.suggestion,
            )
        else:
            exc = GatewayError(exc.code, exc.message, details=details, suggestion=exc.suggestion)
        logger.info("%s failed code=%s message=%s", operation, exc.code.value, exc.message)
        return {"ok": False, "error": exc.to_error_payload()}


def _validated_order(model: type[OrderBase], params: dict[str, Any]) -> Any:
    try:
        order = model.model_validate(params)
    except ValidationError as exc:
        raise GatewayError(
            ErrorCode.INVALID_ARGS,
            "invalid order request",
            details={"errors": exc.errors(include_url=False, include_context=False)},
        ) from exc
    missing = order.missing_price_field()
    if missing is not None:
        raise GatewayError(
            ErrorCode.INVALID_ARGS,
            f"{missing} is required for {order.order_type.value} orders",
            details={"field": missing, "order_type": order.order_type.value},
        )
    return order
