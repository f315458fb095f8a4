"""Order entry, confirmation and lifecycle commands."""

from __future__ import annotations

import typer

from ibkr_gateway.cli._common import build_typer, invoke, parse_csv_items
from ibkr_gateway.models.orders import OrderAction, OrderType

order_app = build_typer("Order entry and lifecycle commands.")


@order_app.command("stock", help="Place a stock order (market by default; LMT needs --price, STP needs --stop).")
def stock(
    ctx: typer.Context,
    account: str = typer.Argument(..., help="Account id."),
    symbol: str = typer.Argument(..., help="Ticker symbol."),
    action: OrderAction = typer.Argument(..., case_sensitive=False, help="BUY or SELL."),
    qty: float = typer.Argument(..., min=0.000001, help="Order quantity (> 0)."),
    order_type: OrderType = typer.Option(OrderType.MARKET, "--type", case_sensitive=False, help="MKT, LMT, STP."),
    price: float | None = typer.Option(None, "--price", help="Limit price (LMT)."),
    stop: float | None = typer.Option(None, "--stop", help="Stop trigger price (STP)."),
    yes: bool = typer.Option(False, "--yes", "-y", help="Acknowledge gateway confirmation prompts automatically."),
) -> None:
    params = {
        "account_id": account,
        "symbol": symbol,
        "action": action.value,
        "order_type": order_type.value,
        "quantity": qty,
        "price": price,
        "stop_price": stop,
        "suppress_confirmations": yes,
    }
    invoke(ctx, lambda handlers: handlers.place_stock_order(**params))


@order_app.command("option", help="Place an option order by conid, or by an approximate contract search.")
def option(
    ctx: typer.Context,
    account: str = typer.Argument(..., help="Account id."),
    symbol: str = typer.Argument(..., help="Underlying ticker symbol."),
    action: OrderAction = typer.Argument(..., case_sensitive=False, help="BUY or SELL."),
    qty: float = typer.Argument(..., min=0.000001, help="Number of contracts (> 0)."),
    expiration: str = typer.Option(..., "--expiration", help="YYYYMMDD or YYMMDD."),
    strike: float = typer.Option(..., "--strike", help="Strike price."),
    right: str = typer.Option(..., "--right", help="C/CALL or P/PUT."),
    conid: int | None = typer.Option(None, "--conid", help="Exact option contract id; skips the search."),
    order_type: OrderType = typer.Option(OrderType.MARKET, "--type", case_sensitive=False, help="MKT, LMT, STP."),
    price: float | None = typer.Option(None, "--price", help="Limit price (LMT)."),
    stop: float | None = typer.Option(None, "--stop", help="Stop trigger price (STP)."),
    yes: bool = typer.Option(False, "--yes", "-y", help="Acknowledge gateway confirmation prompts automatically."),
) -> None:
    params = {
        "account_id": account,
        "symbol": symbol,
        "action": action.value,
        "order_type": order_type.value,
        "quantity": qty,
        "price": price,
        "stop_price": stop,
        "suppress_confirmations": yes,
        "expiration": expiration,
        "strike": strike,
        "right": right,
        "conid": conid,
    }
    invoke(ctx, lambda handlers: handlers.place_option_order(**params))


@order_app.command("confirm", help="Acknowledge the messages the gateway attached to an order.")
def confirm(
    ctx: typer.Context,
    reply_id: str = typer.Argument(..., help="Reply id from the order response."),
    message_ids: str = typer.Argument(..., help="Comma-separated message ids, exactly as returned."),
) -> None:
    ids = parse_csv_items(message_ids, field_name="message_ids")
    invoke(ctx, lambda handlers: handlers.confirm_order(reply_id, ids))


@order_app.command("cancel", help="Cancel an open order.")
def cancel(
    ctx: typer.Context,
    order_id: str = typer.Argument(..., help="Gateway order id."),
    account: str = typer.Option(..., "--account", help="Account id."),
) -> None:
    invoke(ctx, lambda handlers: handlers.cancel_order(order_id, account))


@order_app.command("modify", help="Modify quantity or prices of an open order.")
def modify(
    ctx: typer.Context,
    order_id: str = typer.Argument(..., help="Gateway order id."),
    account: str = typer.Option(..., "--account", help="Account id."),
    qty: float | None = typer.Option(None, "--qty", help="New quantity."),
    price: float | None = typer.Option(None, "--price", help="New limit price."),
    stop: float | None = typer.Option(None, "--stop", help="New stop price."),
) -> None:
    invoke(ctx, lambda handlers: handlers.modify_order(order_id, account, qty, price, stop))


@order_app.command("status", help="Show gateway status for one order.")
def status(
    ctx: typer.Context,
    order_id: str = typer.Argument(..., help="Gateway order id."),
) -> None:
    invoke(ctx, lambda handlers: handlers.get_order_status(order_id))


@order_app.command("list", help="List live orders.")
def list_orders(
    ctx: typer.Context,
    account: str | None = typer.Option(None, "--account", help="Account id filter."),
) -> None:
    invoke(ctx, lambda handlers: handlers.get_live_orders(account))
