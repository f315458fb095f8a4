"""Typer command-line front end."""

from ibkr_gateway.cli.main import app, run

__all__ = ["app", "run"]
