"""Account, position and P&L reads plus the local portfolio aggregation."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
import logging
from typing import Any

from ibkr_gateway.exceptions import ErrorCode, GatewayError
from ibkr_gateway.models.portfolio import PortfolioSummary, PositionSummary, SecTypeBucket
from ibkr_gateway.pipeline import RequestPipeline

logger = logging.getLogger(__name__)

ACCOUNTS_PATH = "/portfolio/accounts"
ACCOUNT_SUMMARY_PATH = "/portfolio/{account_id}/summary"
ACCOUNT_POSITIONS_PATH = "/portfolio/{account_id}/positions"
ACCOUNT_POSITIONS_PAGE_PATH = "/portfolio/{account_id}/positions/{page}"
POSITIONS_PATH = "/portfolio/positions"
TRADES_PATH = "/iserver/account/trades"
ACCOUNT_TRADES_PATH = "/iserver/account/{account_id}/trades"
TOP_POSITIONS = 10
OTHER_SEC_TYPE = "OTHER"
_TRADE_TIME_FORMATS = ("%Y%m%d-%H:%M:%S", "%Y%m%d %H:%M:%S", "%Y%m%d")


class PortfolioAggregator:
    """Pure reduction of raw gateway position rows into a ``PortfolioSummary``."""

    @staticmethod
    def summarize(positions: list[dict[str, Any]], *, account_id: str | None = None) -> PortfolioSummary:
        total_value = 0.0
        total_pnl = 0.0
        by_sec_type: dict[str, SecTypeBucket] = {}
        summaries: list[PositionSummary] = []

        for row in positions:
            market_value = _as_float(row.get("mktValue")) or 0.0
            unrealized = _as_float(row.get("unrealizedPnl")) or 0.0
            realized = _as_float(row.get("realizedPnl")) or 0.0
            total_value += market_value
            total_pnl += unrealized + realized

            sec_type = str(row.get("assetClass") or row.get("secType") or OTHER_SEC_TYPE)
            bucket = by_sec_type.setdefault(sec_type, SecTypeBucket())
            bucket.count += 1
            bucket.value += market_value

            summaries.append(
                PositionSummary(
                    symbol=_position_symbol(row),
                    quantity=_as_float(row.get("position")),
                    market_value=market_value,
                    unrealized_pnl=unrealized,
                    pnl_percent=pnl_percent(market_value, unrealized),
                )
            )

        top_positions = sorted(summaries, key=lambda item: abs(item.market_value), reverse=True)[:TOP_POSITIONS]
        return PortfolioSummary(
            account_id=account_id,
            total_value=total_value,
            total_pnl=total_pnl,
            daily_pnl=0.0,
            position_count=len(positions),
            by_sec_type=by_sec_type,
            top_positions=top_positions,
        )


def pnl_percent(market_value: float, unrealized_pnl: float) -> float:
    """Unrealized P&L relative to cost basis (``market_value - unrealized_pnl``)."""
    if market_value == 0:
        return 0.0
    cost_basis = market_value - unrealized_pnl
    if cost_basis == 0:
        return 0.0
    return unrealized_pnl / cost_basis * 100.0


class PortfolioService:
    def __init__(self, pipeline: RequestPipeline) -> None:
        self._pipeline = pipeline

    async def accounts(self) -> list[dict[str, Any]]:
        payload = await self._pipeline.request_json("GET", ACCOUNTS_PATH, operation="accounts")
        return [row for row in _as_list(payload) if isinstance(row, dict)]

    async def account_info(self) -> dict[str, Any]:
        accounts = await self.accounts()
        summaries: list[dict[str, Any]] = []
        for account in accounts:
            account_id = account_identifier(account)
            if account_id is None:
                continue
            summary = await self._pipeline.request_json(
                "GET",
                ACCOUNT_SUMMARY_PATH.format(account_id=account_id),
                operation="account_summary",
            )
            summaries.append({"account_id": account_id, "summary": summary})
        logger.info("account info accounts=%d", len(accounts))
        return {"accounts": accounts, "summaries": summaries}

    async def positions(self, account_id: str | None = None) -> Any:
        path = ACCOUNT_POSITIONS_PATH.format(account_id=account_id) if account_id else POSITIONS_PATH
        return await self._pipeline.request_json("GET", path, operation="positions")

    async def portfolio_summary(self, account_id: str | None = None) -> PortfolioSummary:
        target = account_id or await self._default_account_id()
        payload = await self._pipeline.request_json(
            "GET",
            ACCOUNT_POSITIONS_PAGE_PATH.format(account_id=target, page=0),
            operation="portfolio_summary",
        )
        rows = [row for row in _as_list(payload) if isinstance(row, dict)]
        summary = PortfolioAggregator.summarize(rows, account_id=target)
        logger.info(
            "portfolio summary account=%s positions=%d total_value=%.2f",
            target,
            summary.position_count,
            summary.total_value,
        )
        return summary

    async def pnl(self, account_id: str | None = None) -> dict[str, Any] | list[dict[str, Any]]:
        if account_id:
            summary = await self._pipeline.request_json(
                "GET",
                ACCOUNT_SUMMARY_PATH.format(account_id=account_id),
                operation="pnl",
            )
            return {"account_id": account_id, "pnl": summary}

        out: list[dict[str, Any]] = []
        for account in await self.accounts():
            current = account_identifier(account)
            if current is None:
                continue
            summary = await self._pipeline.request_json(
                "GET",
                ACCOUNT_SUMMARY_PATH.format(account_id=current),
                operation="pnl",
            )
            out.append({"account_id": current, "pnl": summary})
        return out

    async def trades_history(self, account_id: str | None = None, days: int = 7) -> list[dict[str, Any]]:
        path = ACCOUNT_TRADES_PATH.format(account_id=account_id) if account_id else TRADES_PATH
        payload = await self._pipeline.request_json("GET", path, operation="trades_history")
        trades = [row for row in _as_list(payload) if isinstance(row, dict)]
        if days:
            trades = filter_recent_trades(trades, days)
        logger.info("trades history days=%s trades=%d", days, len(trades))
        return trades

    async def _default_account_id(self) -> str:
        accounts = await self.accounts()
        for account in accounts:
            account_id = account_identifier(account)
            if account_id is not None:
                return account_id
        raise GatewayError(
            ErrorCode.OPERATION_FAILED,
            "no accounts found",
            details={"operation": "portfolio_summary"},
        )


def account_identifier(account: dict[str, Any]) -> str | None:
    value = account.get("accountId") or account.get("id")
    return str(value) if value else None


def filter_recent_trades(
    trades: list[dict[str, Any]],
    days: int,
    *,
    now: datetime | None = None,
) -> list[dict[str, Any]]:
    """Keep executions from the last ``days`` days; rows without a readable time are kept."""
    cutoff = (now or datetime.now(UTC)) - timedelta(days=days)
    out: list[dict[str, Any]] = []
    for trade in trades:
        executed_at = parse_trade_time(trade.get("execution_time") or trade.get("time"))
        if executed_at is None or executed_at >= cutoff:
            out.append(trade)
    return out


def parse_trade_time(value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, (int, float)):
        seconds = value / 1000.0 if value > 1e11 else float(value)
        return datetime.fromtimestamp(seconds, UTC)
    text = str(value).strip()
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        parsed = None
    if parsed is None:
        for fmt in _TRADE_TIME_FORMATS:
            try:
                parsed = datetime.strptime(text, fmt)
                break
            except ValueError:
                continue
    if parsed is None:
        return None
    return parsed if parsed.tzinfo is not None else parsed.replace(tzinfo=UTC)


def _position_symbol(row: dict[str, Any]) -> str | None:
    value = row.get("contractDesc") or row.get("ticker") or row.get("symbol")
    return str(value) if value else None


def _as_float(value: Any) -> float | None:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _as_list(value: Any) -> list[Any]:
    if value is None:
        return []
    if isinstance(value, list):
        return value
    return [value]
