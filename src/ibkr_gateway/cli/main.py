"""Root Typer app and command registration."""

from __future__ import annotations

import typer

from ibkr_gateway.cli import market, orders, portfolio
from ibkr_gateway.cli._common import CLIState, build_typer, configure_logging, invoke
from ibkr_gateway.config import load_config

app = build_typer(
    """Command-line client for a local IBKR Client Portal gateway.

    Examples:
      ibkr-gateway status
      ibkr-gateway quote AAPL
      ibkr-gateway find-option SPY --strike 450 --right P
      ibkr-gateway order stock U1234567 AAPL BUY 10 --type LMT --price 180
    """
)

app.add_typer(orders.order_app, name="order")

app.command("quote", help="Last, bid, ask and volume for one symbol.")(market.quote)
app.command("snapshot", help="Market data snapshot with a field preset or explicit field codes.")(market.snapshot)
app.command("history", help="Historical bars for one symbol.")(market.history)
app.command("chain", help="Options chain for the first few expiration months.")(market.chain)
app.command("find-option", help="Approximate option contract selection from the chain.")(market.find_option)
app.command("search", help="Search contracts by symbol or name.")(market.search)
app.command("contract", help="Contract details for a conid.")(market.contract)
app.command("accounts", help="Accounts and their summaries.")(portfolio.accounts)
app.command("positions", help="Open positions.")(portfolio.positions)
app.command("summary", help="Aggregated portfolio summary.")(portfolio.summary)
app.command("pnl", help="Account P&L summaries.")(portfolio.pnl)
app.command("trades", help="Recent executions.")(portfolio.trades)


@app.callback()
def root(
    ctx: typer.Context,
    host: str | None = typer.Option(None, "--host", help="Gateway host (overrides config)."),
    port: int | None = typer.Option(None, "--port", help="Gateway port (overrides config)."),
) -> None:
    cfg = load_config()
    if host:
        cfg.gateway.host = host
    if port is not None:
        cfg.gateway.port = port
    configure_logging(cfg.logging)
    ctx.obj = CLIState(config=cfg)


@app.command("status", help="Check the gateway session.")
def status(ctx: typer.Context) -> None:
    invoke(ctx, lambda handlers: handlers.status())


@app.command("login", help="Authenticate the gateway session, or print where to log in.")
def login(ctx: typer.Context) -> None:
    invoke(ctx, lambda handlers: handlers.authenticate())


def run() -> None:
    app()
