"""Market data and contract lookup commands."""

from __future__ import annotations

import typer

from ibkr_gateway.cli._common import invoke, parse_csv_items


def quote(
    ctx: typer.Context,
    symbol: str = typer.Argument(..., help="Ticker symbol."),
) -> None:
    invoke(ctx, lambda handlers: handlers.get_quote(symbol))


def snapshot(
    ctx: typer.Context,
    symbol: str = typer.Argument(..., help="Ticker symbol."),
    fields: str = typer.Option(
        "detailed",
        "--fields",
        help="Preset (basic, detailed, options, fundamentals, all) or comma-separated field codes.",
    ),
    conid: int | None = typer.Option(None, "--conid", help="Contract id; skips symbol search."),
) -> None:
    field_spec: str | list[str] = fields
    if "," in fields or fields.strip().isdigit():
        field_spec = parse_csv_items(fields, field_name="fields")
    invoke(ctx, lambda handlers: handlers.get_market_data(symbol, field_spec, conid))


def history(
    ctx: typer.Context,
    symbol: str = typer.Argument(..., help="Ticker symbol."),
    period: str | None = typer.Option(None, "--period", help="Gateway period, e.g. 1d, 1w, 1m."),
    bar: str | None = typer.Option(None, "--bar", help="Bar size, e.g. 5min, 1h, 1d."),
    outside_rth: bool = typer.Option(False, "--outside-rth", help="Include data outside regular hours."),
    conid: int | None = typer.Option(None, "--conid", help="Contract id; skips symbol search."),
) -> None:
    invoke(ctx, lambda handlers: handlers.get_historical_data(symbol, conid, period, bar, outside_rth))


def chain(
    ctx: typer.Context,
    symbol: str = typer.Argument(..., help="Underlying ticker symbol."),
    conid: int | None = typer.Option(None, "--conid", help="Underlying contract id."),
) -> None:
    invoke(ctx, lambda handlers: handlers.get_options_chain(symbol, conid))


def find_option(
    ctx: typer.Context,
    symbol: str = typer.Argument(..., help="Underlying ticker symbol."),
    expiration: str | None = typer.Option(None, "--expiration", help="Month token such as JAN25."),
    strike: float | None = typer.Option(None, "--strike", help="Target strike; middle strike when omitted."),
    right: str = typer.Option("C", "--right", help="C/CALL or P/PUT."),
    delta: float | None = typer.Option(None, "--delta", help="Accepted but not used for selection."),
) -> None:
    invoke(ctx, lambda handlers: handlers.find_option_contract(symbol, expiration, strike, right, delta))


def search(
    ctx: typer.Context,
    query: str = typer.Argument(..., help="Symbol or company name."),
    sec_type: str | None = typer.Option(None, "--sec-type", help="STK, OPT, FUT, CASH, BOND."),
    exchange: str | None = typer.Option(None, "--exchange", help="Exchange filter."),
    currency: str | None = typer.Option(None, "--currency", help="Currency filter, applied locally."),
    limit: int = typer.Option(10, "--limit", min=1, help="Maximum results."),
) -> None:
    invoke(ctx, lambda handlers: handlers.search_contracts(query, sec_type, exchange, currency, limit))


def contract(
    ctx: typer.Context,
    conid: int = typer.Argument(..., help="Contract id."),
) -> None:
    invoke(ctx, lambda handlers: handlers.get_contract_details(conid))
