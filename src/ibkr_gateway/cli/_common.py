"""Shared CLI context, rendering and handler invocation helpers."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from difflib import get_close_matches
import json
import logging
from typing import Any

import click
import typer
from typer.core import TyperGroup

from ibkr_gateway.client import GatewayClient
from ibkr_gateway.config import AppConfig, LoggingConfig
from ibkr_gateway.exceptions import EXIT_CODE_BY_ERROR, ErrorCode
from ibkr_gateway.handlers import OperationHandlers

HELP_CONTEXT_SETTINGS = {
    "help_option_names": ["-h", "--help"],
    "max_content_width": 110,
}

HandlerCall = Callable[[OperationHandlers], Awaitable[dict[str, Any]]]


@dataclass
class CLIState:
    config: AppConfig


class SuggestionGroup(TyperGroup):
    """Click command group that appends close-match suggestions for unknown commands."""

    def resolve_command(
        self,
        ctx: click.Context,
        args: list[str],
    ) -> tuple[str | None, click.Command | None, list[str]]:
        try:
            return super().resolve_command(ctx, args)
        except click.UsageError as exc:
            if args:
                attempted = args[0]
                matches = get_close_matches(attempted, list(self.list_commands(ctx)), n=3, cutoff=0.45)
                if matches:
                    exc.message = f"{exc.message}\n\nDid you mean: {', '.join(matches)}"
            raise


def build_typer(help_text: str) -> typer.Typer:
    """Create Typer apps with consistent help ergonomics across command groups."""

    return typer.Typer(
        help=help_text,
        cls=SuggestionGroup,
        no_args_is_help=True,
        rich_markup_mode="markdown",
        context_settings=HELP_CONTEXT_SETTINGS,
    )


def get_state(ctx: typer.Context) -> CLIState:
    value = ctx.obj
    if not isinstance(value, CLIState):
        raise RuntimeError("CLI context not initialized")
    return value


def configure_logging(cfg: LoggingConfig) -> None:
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if cfg.log_file is not None:
        cfg.log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(cfg.log_file))
    logging.basicConfig(
        level=getattr(logging, cfg.level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
        handlers=handlers,
    )


def run_async(awaitable: Any) -> Any:
    return asyncio.run(awaitable)


def print_output(data: Any) -> None:
    print(json.dumps(data, default=str, separators=(",", ":")))


async def call_handlers(cfg: AppConfig, call: HandlerCall) -> dict[str, Any]:
    async with GatewayClient(cfg) as client:
        return await call(OperationHandlers(client))


def invoke(ctx: typer.Context, call: HandlerCall) -> None:
    """Run one handler operation, print its data, and exit non-zero on failure."""
    state = get_state(ctx)
    result = run_async(call_handlers(state.config, call))
    if result.get("ok"):
        print_output(result.get("data"))
        return
    handle_error(result)


def handle_error(result: dict[str, Any]) -> None:
    error = result.get("error") or {}
    print_output({"ok": False, "error": error})
    raise typer.Exit(code=exit_code_for(error.get("code")))


def exit_code_for(code: str | None) -> int:
    try:
        return EXIT_CODE_BY_ERROR.get(ErrorCode(code), 1)
    except ValueError:
        return 1


def parse_csv_items(raw: str, *, field_name: str) -> list[str]:
    values = [value.strip() for value in raw.split(",") if value.strip()]
    if not values:
        raise typer.BadParameter(f"{field_name} must contain at least one value")
    return values
