"""Account, position and P&L commands."""

from __future__ import annotations

import typer

from ibkr_gateway.cli._common import invoke


def accounts(ctx: typer.Context) -> None:
    invoke(ctx, lambda handlers: handlers.get_account_info())


def positions(
    ctx: typer.Context,
    account: str | None = typer.Option(None, "--account", help="Account id; all positions when omitted."),
) -> None:
    invoke(ctx, lambda handlers: handlers.get_positions(account))


def summary(
    ctx: typer.Context,
    account: str | None = typer.Option(None, "--account", help="Account id; first account when omitted."),
) -> None:
    invoke(ctx, lambda handlers: handlers.get_portfolio_summary(account))


def pnl(
    ctx: typer.Context,
    account: str | None = typer.Option(None, "--account", help="Account id; every account when omitted."),
) -> None:
    invoke(ctx, lambda handlers: handlers.get_pnl(account))


def trades(
    ctx: typer.Context,
    account: str | None = typer.Option(None, "--account", help="Account id filter."),
    days: int = typer.Option(7, "--days", min=0, help="Look-back window in days; 0 disables the filter."),
) -> None:
    invoke(ctx, lambda handlers: handlers.get_trades_history(account, days))
