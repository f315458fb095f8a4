"""High-level gateway client wiring the session, pipeline and domain services."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterator
from contextlib import contextmanager
import logging
from types import TracebackType
from typing import Any

import httpx
from pydantic import BaseModel

from ibkr_gateway.config import AppConfig, AuthConfig
from ibkr_gateway.contracts import ContractResolver
from ibkr_gateway.exceptions import ErrorCode, GatewayError
from ibkr_gateway.market_data import MarketDataService
from ibkr_gateway.models.contracts import OptionChain, OptionContract
from ibkr_gateway.models.orders import OptionOrder, OrderModification, OrderResult, StockOrder
from ibkr_gateway.models.portfolio import PortfolioSummary
from ibkr_gateway.models.session import SessionStatus
from ibkr_gateway.orders import OrderExecutionEngine
from ibkr_gateway.pipeline import RequestPipeline
from ibkr_gateway.portfolio import PortfolioService
from ibkr_gateway.session import LOGIN_SUGGESTION, SessionManager

logger = logging.getLogger(__name__)


class GatewayManager(ABC):
    """Starts or locates the local gateway process."""

    @abstractmethod
    async def ensure_ready(self) -> None:
        raise NotImplementedError

    @abstractmethod
    def current_port(self) -> int:
        raise NotImplementedError


class AuthResult(BaseModel):
    success: bool
    message: str = ""


class Authenticator(ABC):
    """Submits credentials to the gateway login page (browser automation or interactive)."""

    @abstractmethod
    async def authenticate(self, login_url: str, auth: AuthConfig) -> AuthResult:
        raise NotImplementedError


@contextmanager
def error_context(context: str) -> Iterator[None]:
    """Prefix non-authentication failures with the symbol, order or conid involved."""
    try:
        yield
    except GatewayError as exc:
        if exc.is_auth_error:
            raise
        raise exc.with_context(context) from exc


class GatewayClient:
    """One gateway session plus the services that share it.

    Use as an async context manager, or call ``aclose()`` to stop the
    keep-alive task and release both HTTP clients.
    """

    def __init__(
        self,
        cfg: AppConfig,
        *,
        manager: GatewayManager | None = None,
        authenticator: Authenticator | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.config = cfg
        self._manager = manager
        self._authenticator = authenticator
        self.session = SessionManager(cfg.gateway, transport=transport)
        self.pipeline = RequestPipeline(cfg.gateway, self.session, transport=transport)
        self.contracts = ContractResolver(self.pipeline)
        self.orders = OrderExecutionEngine(self.pipeline, self.contracts)
        self.portfolio = PortfolioService(self.pipeline)
        self.market = MarketDataService(self.pipeline, self.contracts)

    async def __aenter__(self) -> GatewayClient:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    @property
    def login_url(self) -> str:
        return f"https://{self.session.host}:{self.session.port}"

    @property
    def headless_mode(self) -> bool:
        return self.config.auth.headless_mode

    async def aclose(self) -> None:
        await self.session.aclose()
        await self.pipeline.aclose()

    async def ensure_ready(self) -> None:
        """Ask the gateway manager (when configured) to start the gateway, then follow its port."""
        if self._manager is None:
            return
        try:
            await self._manager.ensure_ready()
        except GatewayError:
            raise
        except Exception as exc:
            raise GatewayError(
                ErrorCode.GATEWAY_UNAVAILABLE,
                f"gateway is not ready: {exc}",
                details={"host": self.session.host, "port": self.session.port},
                suggestion="Start the IB Gateway and retry.",
            ) from exc
        await self.set_endpoint(self.session.host, self._manager.current_port())

    async def set_endpoint(self, host: str, port: int) -> bool:
        changed = await self.session.set_endpoint(host, port)
        if changed:
            await self.pipeline.rebind()
        return changed

    async def status(self) -> SessionStatus:
        await self.session.check_status()
        return self.session.status()

    async def authenticate(self) -> dict[str, Any]:
        """Explicit login: reuse a live session, else hand off to the configured authenticator."""
        if await self.session.check_status():
            return {"authenticated": True, "login_url": self.login_url, "mode": "existing_session"}

        if self._authenticator is None:
            raise GatewayError(
                ErrorCode.AUTH_REQUIRED,
                f"log in to the IB Gateway at {self.login_url}",
                details={"login_url": self.login_url, "mode": "browser"},
                suggestion=LOGIN_SUGGESTION,
            )

        auth = self.config.auth
        if auth.headless_mode and not (auth.username and auth.password):
            raise GatewayError(
                ErrorCode.INVALID_ARGS,
                "headless mode enabled but gateway credentials are missing",
                details={"login_url": self.login_url},
                suggestion="Set IBKR_AUTH_USERNAME and IBKR_AUTH_PASSWORD, or disable IBKR_AUTH_HEADLESS_MODE.",
            )

        logger.info("running authenticator against %s", self.login_url)
        result = await self._authenticator.authenticate(self.login_url, auth)
        if not result.success:
            raise GatewayError(
                ErrorCode.AUTH_REQUIRED,
                f"authentication failed: {result.message or 'unknown reason'}",
                details={"login_url": self.login_url},
                suggestion=LOGIN_SUGGESTION,
            )

        await self.session.reset_auth_attempts()
        authenticated = await self.session.check_status()
        return {
            "authenticated": authenticated,
            "login_url": self.login_url,
            "mode": "headless" if auth.headless_mode else "interactive",
            "message": result.message,
        }

    async def account_info(self) -> dict[str, Any]:
        with error_context("account info"):
            return await self.portfolio.account_info()

    async def positions(self, account_id: str | None = None) -> Any:
        with error_context(f"positions for {account_id}" if account_id else "positions"):
            return await self.portfolio.positions(account_id)

    async def market_data(
        self,
        symbol: str,
        fields: str | list[str] | None = None,
        conid: int | None = None,
        exchange: str | None = None,
    ) -> dict[str, Any]:
        with error_context(f"market data for {symbol.upper()}"):
            return await self.market.snapshot(symbol, fields, conid, exchange=exchange)

    async def quote(self, symbol: str) -> dict[str, Any]:
        with error_context(f"quote for {symbol.upper()}"):
            return await self.market.quote(symbol)

    async def historical_data(
        self,
        symbol: str,
        conid: int | None = None,
        period: str | None = None,
        bar: str | None = None,
        outside_rth: bool | None = None,
    ) -> dict[str, Any]:
        with error_context(f"historical data for {symbol.upper()}"):
            return await self.market.history(symbol, conid, period, bar, outside_rth)

    async def options_chain(self, symbol: str, conid: int | None = None) -> OptionChain:
        with error_context(f"options chain for {symbol.upper()}"):
            return await self.contracts.build_options_chain(symbol, conid)

    async def find_option_contract(
        self,
        symbol: str,
        expiration: str | None = None,
        strike: float | str | None = None,
        right: str | None = None,
        delta: float | None = None,
    ) -> OptionContract:
        with error_context(f"option contract for {symbol.upper()}"):
            return await self.contracts.find_option_contract(symbol, expiration, strike, right, delta)

    async def portfolio_summary(self, account_id: str | None = None) -> PortfolioSummary:
        with error_context(f"portfolio summary for {account_id}" if account_id else "portfolio summary"):
            return await self.portfolio.portfolio_summary(account_id)

    async def place_stock_order(self, order: StockOrder) -> OrderResult:
        with error_context(f"stock order for {order.symbol}"):
            return await self.orders.place_stock_order(order)

    async def place_option_order(self, order: OptionOrder) -> OrderResult:
        with error_context(f"option order for {order.symbol}"):
            return await self.orders.place_option_order(order)

    async def place_order(self, order: StockOrder | OptionOrder) -> OrderResult:
        if isinstance(order, OptionOrder):
            return await self.place_option_order(order)
        return await self.place_stock_order(order)

    async def confirm_order(self, reply_id: str, message_ids: list[str]) -> OrderResult:
        with error_context(f"order confirmation {reply_id}"):
            return await self.orders.confirm_order(reply_id, message_ids)

    async def cancel_order(self, order_id: str, account_id: str) -> Any:
        with error_context(f"cancel order {order_id}"):
            return await self.orders.cancel_order(order_id, account_id)

    async def modify_order(self, order_id: str, account_id: str, modifications: OrderModification) -> Any:
        with error_context(f"modify order {order_id}"):
            return await self.orders.modify_order(order_id, account_id, modifications)

    async def order_status(self, order_id: str) -> Any:
        with error_context(f"order status {order_id}"):
            return await self.orders.order_status(order_id)

    async def live_orders(self, account_id: str | None = None) -> Any:
        with error_context("live orders"):
            return await self.orders.live_orders(account_id)

    async def search_contracts(
        self,
        query: str,
        sec_type: str | None = None,
        exchange: str | None = None,
        currency: str | None = None,
        limit: int = 10,
    ) -> list[dict[str, Any]]:
        with error_context(f"contract search for {query}"):
            return await self.contracts.search_contracts(query, sec_type, exchange, currency, limit)

    async def contract_details(self, conid: int) -> Any:
        with error_context(f"contract details for conid {conid}"):
            return await self.contracts.contract_details(conid)

    async def pnl(self, account_id: str | None = None) -> Any:
        with error_context(f"P&L for {account_id}" if account_id else "P&L"):
            return await self.portfolio.pnl(account_id)

    async def trades_history(self, account_id: str | None = None, days: int = 7) -> list[dict[str, Any]]:
        with error_context("trades history"):
            return await self.portfolio.trades_history(account_id, days)
