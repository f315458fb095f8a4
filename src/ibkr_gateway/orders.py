"""Order submission and the two-phase confirmation protocol."""

from __future__ import annotations

import logging
from typing import Any

from ibkr_gateway.contracts import ContractResolver
from ibkr_gateway.exceptions import ErrorCode, GatewayError
from ibkr_gateway.models.contracts import SecType
from ibkr_gateway.models.orders import (
    ConfirmationExchange,
    OptionOrder,
    OrderBase,
    OrderModification,
    OrderResult,
    OrderType,
    StockOrder,
)
from ibkr_gateway.pipeline import RequestPipeline

logger = logging.getLogger(__name__)

ORDERS_PATH = "/iserver/account/{account_id}/orders"
ORDER_PATH = "/iserver/account/{account_id}/order/{order_id}"
ORDER_STATUS_PATH = "/iserver/account/order/status/{order_id}"
LIVE_ORDERS_PATH = "/iserver/account/orders"
REPLY_PATH = "/iserver/reply/{reply_id}"
DEFAULT_TIF = "DAY"


class OrderExecutionEngine:
    """Builds order payloads, submits them and completes confirmation hand-offs.

    A failed submission is never retried: resubmitting a market or limit
    order risks a duplicate fill. No order state is kept locally.
    """

    def __init__(self, pipeline: RequestPipeline, resolver: ContractResolver) -> None:
        self._pipeline = pipeline
        self._resolver = resolver

    async def place_stock_order(self, order: StockOrder) -> OrderResult:
        contract = await self._resolver.resolve_symbol(order.symbol, SecType.STK)
        logger.info(
            "placing stock order %s %s %s x%s conid=%s",
            order.action.value,
            order.order_type.value,
            order.symbol,
            order.quantity,
            contract.conid,
        )
        return await self._submit(order, contract.conid)

    async def place_option_order(self, order: OptionOrder) -> OrderResult:
        approximate = False
        if order.conid is not None:
            conid = order.conid
            logger.info("using provided option conid %s", conid)
        else:
            right = normalize_right(order.right)
            expiration = normalize_expiration(order.expiration)
            logger.info("searching option %s %s %s%s", order.symbol, expiration, order.strike, right)

            underlying = await self._resolver.resolve_symbol(order.symbol, SecType.STK)
            logger.debug("underlying %s conid=%s", order.symbol, underlying.conid)

            contract = await self._resolver.approximate_option_contract(order.symbol)
            if contract is None:
                raise GatewayError(
                    ErrorCode.CONTRACT_NOT_FOUND,
                    f"option contract not found for {order.symbol} {expiration} {order.strike}{right}",
                    details={"symbol": order.symbol, "expiration": expiration, "strike": order.strike, "right": right},
                    suggestion="Pass the option conid directly if you know the contract id.",
                )
            conid = contract.conid
            approximate = True
            logger.info("using option conid %s for %s (approximate match)", conid, order.symbol)

        result = await self._submit(order, conid)
        result.approximate_contract = approximate
        return result

    async def confirm_order(self, reply_id: str, message_ids: list[str]) -> OrderResult:
        """Acknowledge the disclosures the gateway attached to an order.

        ``message_ids`` must be exactly the list the gateway returned.
        """
        logger.info("confirming order reply_id=%s message_ids=%s", reply_id, message_ids)
        response = await self._pipeline.request_json(
            "POST",
            REPLY_PATH.format(reply_id=reply_id),
            json_body={"confirmed": True, "messageIds": list(message_ids)},
            operation="confirm_order",
        )
        _raise_if_rejected(response, operation="confirm_order")
        follow_up = extract_confirmation(response)
        return OrderResult(response=response, confirmed=follow_up is None, confirmation=follow_up)

    async def cancel_order(self, order_id: str, account_id: str) -> Any:
        logger.info("cancelling order %s account=%s", order_id, account_id)
        response = await self._pipeline.request_json(
            "DELETE",
            ORDER_PATH.format(account_id=account_id, order_id=order_id),
            operation="cancel_order",
        )
        _raise_if_rejected(response, operation="cancel_order")
        return response

    async def modify_order(self, order_id: str, account_id: str, modifications: OrderModification) -> Any:
        payload = modifications.to_payload()
        if not payload:
            raise GatewayError(
                ErrorCode.INVALID_ARGS,
                "modify_order requires at least one of quantity, price, stop_price",
            )
        logger.info("modifying order %s account=%s fields=%s", order_id, account_id, sorted(payload))
        response = await self._pipeline.request_json(
            "POST",
            ORDER_PATH.format(account_id=account_id, order_id=order_id),
            json_body=payload,
            operation="modify_order",
        )
        _raise_if_rejected(response, operation="modify_order")
        return response

    async def order_status(self, order_id: str) -> Any:
        return await self._pipeline.request_json(
            "GET",
            ORDER_STATUS_PATH.format(order_id=order_id),
            operation="order_status",
        )

    async def live_orders(self, account_id: str | None = None) -> Any:
        params = {"accountId": account_id} if account_id else None
        return await self._pipeline.request_json("GET", LIVE_ORDERS_PATH, params=params, operation="live_orders")

    async def _submit(self, order: OrderBase, conid: int) -> OrderResult:
        payload = build_order_payload(order, conid)
        try:
            response = await self._pipeline.request_json(
                "POST",
                ORDERS_PATH.format(account_id=order.account_id),
                json_body={"orders": [payload]},
                operation="place_order",
            )
        except GatewayError as exc:
            status_code = exc.details.get("status_code")
            if exc.code is ErrorCode.OPERATION_FAILED and isinstance(status_code, int) and 400 <= status_code < 500:
                raise GatewayError(
                    ErrorCode.ORDER_REJECTED,
                    exc.message,
                    details=exc.details,
                    suggestion=exc.suggestion,
                ) from exc
            raise
        _raise_if_rejected(response, operation="place_order")

        confirmation = extract_confirmation(response)
        if confirmation is not None and order.suppress_confirmations:
            logger.info("order requires confirmation; confirming automatically reply_id=%s", confirmation.reply_id)
            result = await self.confirm_order(confirmation.reply_id, confirmation.message_ids)
            result.conid = conid
            return result
        return OrderResult(response=response, confirmation=confirmation, conid=conid)


def build_order_payload(order: OrderBase, conid: int) -> dict[str, Any]:
    """Single-order body shared by the stock and option paths.

    ``price`` is attached only to LMT orders and ``auxPrice`` only to STP
    orders, and either is omitted when the request did not supply it.
    """
    payload: dict[str, Any] = {
        "conid": int(conid),
        "orderType": order.order_type.value,
        "side": order.action.value,
        "quantity": _quantity(order.quantity),
        "tif": DEFAULT_TIF,
    }
    if order.order_type is OrderType.LIMIT and order.price is not None:
        payload["price"] = float(order.price)
    if order.order_type is OrderType.STOP and order.stop_price is not None:
        payload["auxPrice"] = float(order.stop_price)
    return payload


def extract_confirmation(response: Any) -> ConfirmationExchange | None:
    rows = response if isinstance(response, list) else [response]
    if not rows or not isinstance(rows[0], dict):
        return None
    first = rows[0]
    reply_id = first.get("id")
    message = first.get("message")
    message_ids = first.get("messageIds")
    if not reply_id or not message or not message_ids:
        return None
    return ConfirmationExchange(
        reply_id=str(reply_id),
        message_ids=[str(item) for item in message_ids] if isinstance(message_ids, list) else [str(message_ids)],
        message=[str(item) for item in message] if isinstance(message, list) else [str(message)],
    )


def normalize_expiration(value: str) -> str:
    """Expand ``YYMMDD`` to ``YYYYMMDD``; two-digit years below 50 are 20xx, the rest 19xx."""
    raw = value.strip()
    if len(raw) == 6 and raw.isdigit():
        year = int(raw[:2])
        full_year = 2000 + year if year < 50 else 1900 + year
        return f"{full_year}{raw[2:]}"
    return raw


def normalize_right(value: str) -> str:
    normalized = value.upper().strip()
    if normalized == "CALL":
        return "C"
    if normalized == "PUT":
        return "P"
    return normalized


def _raise_if_rejected(response: Any, *, operation: str) -> None:
    rows = response if isinstance(response, list) else [response]
    for row in rows:
        if isinstance(row, dict) and isinstance(row.get("error"), str) and row["error"].strip():
            raise GatewayError(
                ErrorCode.ORDER_REJECTED,
                f"{operation} rejected: {row['error'].strip()}",
                details={"operation": operation, "response": response},
            )


def _quantity(value: float) -> int | float:
    return int(value) if float(value).is_integer() else float(value)
