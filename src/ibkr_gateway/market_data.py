"""Market data snapshots, quotes and historical bars."""

from __future__ import annotations

import logging
from typing import Any

from ibkr_gateway.contracts import ContractResolver
from ibkr_gateway.exceptions import ErrorCode, GatewayError
from ibkr_gateway.pipeline import RequestPipeline

logger = logging.getLogger(__name__)

SNAPSHOT_PATH = "/iserver/marketdata/snapshot"
HISTORY_PATH = "/iserver/marketdata/history"

FIELD_PRESETS: dict[str, str] = {
    "basic": "31,84,86,87,88,55",
    "detailed": "31,84,86,87,88,70,71,82,83,55,7051,7059",
    "options": "31,84,86,87,88,7633,7294,7295,7296",
    "fundamentals": "7280,7281,7282,7283,7284,7286,7287,7288,7290,7291",
    "all": (
        "31,55,58,70,71,72,73,74,75,76,77,78,82,83,84,85,86,87,88,6004,6008,6070,6072,6073,"
        "6119,6457,6509,7051,7059,7094,7219,7220,7221,7280,7281,7282,7283,7284,7285,7286,"
        "7287,7288,7289,7290,7291,7292,7293,7294,7295,7296,7633"
    ),
}
DEFAULT_PRESET = "detailed"

# (output key, snapshot field code, named fallback key)
QUOTE_FIELDS: tuple[tuple[str, str, str], ...] = (
    ("last", "31", "lastPrice"),
    ("bid", "84", "bid"),
    ("ask", "86", "ask"),
    ("volume", "87", "volume"),
    ("bid_size", "88", "bidSize"),
    ("change", "82", "change"),
    ("change_percent", "83", "changePercent"),
)


def resolve_fields(fields: str | list[str] | None) -> str:
    """Preset name or explicit code list to the comma-joined ``fields`` parameter.

    Unknown preset names fall back to the detailed preset.
    """
    if fields is None:
        return FIELD_PRESETS[DEFAULT_PRESET]
    if isinstance(fields, str):
        return FIELD_PRESETS.get(fields.lower().strip(), FIELD_PRESETS[DEFAULT_PRESET])
    return ",".join(str(item).strip() for item in fields if str(item).strip())


class MarketDataService:
    def __init__(self, pipeline: RequestPipeline, resolver: ContractResolver) -> None:
        self._pipeline = pipeline
        self._resolver = resolver

    async def snapshot(
        self,
        symbol: str,
        fields: str | list[str] | None = None,
        conid: int | None = None,
        *,
        exchange: str | None = None,
    ) -> dict[str, Any]:
        symbol_upper = symbol.upper().strip()
        contract_id = conid if conid is not None else await self._first_conid(symbol_upper, exchange)
        field_str = resolve_fields(fields)
        params = {"conids": str(contract_id), "fields": field_str}
        logger.info("market data snapshot %s conid=%s fields=%s", symbol_upper, contract_id, field_str)

        # The first call only subscribes the conid; data arrives on the second.
        await self._pipeline.request_json("GET", SNAPSHOT_PATH, params=params, operation="market_data_preflight")
        payload = await self._pipeline.request_json("GET", SNAPSHOT_PATH, params=params, operation="market_data")
        return {"symbol": symbol_upper, "conid": contract_id, "market_data": payload}

    async def quote(self, symbol: str) -> dict[str, Any]:
        snapshot = await self.snapshot(symbol, "basic")
        data = snapshot["market_data"]
        if isinstance(data, list):
            data = data[0] if data and isinstance(data[0], dict) else {}
        if not isinstance(data, dict):
            data = {}
        return flatten_quote(snapshot["symbol"], data)

    async def history(
        self,
        symbol: str,
        conid: int | None = None,
        period: str | None = None,
        bar: str | None = None,
        outside_rth: bool | None = None,
    ) -> dict[str, Any]:
        symbol_upper = symbol.upper().strip()
        contract_id = conid if conid is not None else await self._first_conid(symbol_upper, None)
        params: dict[str, Any] = {"conid": str(contract_id)}
        if period:
            params["period"] = period
        if bar:
            params["bar"] = bar
        if outside_rth is not None:
            params["outsideRth"] = "true" if outside_rth else "false"

        logger.info("historical data %s conid=%s period=%s bar=%s", symbol_upper, contract_id, period, bar)
        payload = await self._pipeline.request_json("GET", HISTORY_PATH, params=params, operation="historical_data")
        body = payload if isinstance(payload, dict) else {}
        return {
            "symbol": symbol_upper,
            "conid": contract_id,
            "period": period or body.get("period"),
            "bar": bar or body.get("barLength"),
            "data": payload,
        }

    async def _first_conid(self, symbol: str, exchange: str | None) -> int:
        rows = await self._resolver.search(symbol, exchange=exchange, operation="symbol_search")
        conid = _as_int(rows[0].get("conid")) if rows else None
        if conid is None:
            raise GatewayError(
                ErrorCode.SYMBOL_NOT_FOUND,
                f"symbol {symbol} not found",
                details={"symbol": symbol},
                suggestion="Check the ticker, or pass a conid directly.",
            )
        return conid


def flatten_quote(symbol: str, data: dict[str, Any]) -> dict[str, Any]:
    quote: dict[str, Any] = {"symbol": symbol}
    for key, code, fallback in QUOTE_FIELDS:
        raw = data.get(code)
        if raw in (None, ""):
            raw = data.get(fallback)
        quote[key] = _quote_value(raw)
    return quote


def _quote_value(value: Any) -> Any:
    if value is None or isinstance(value, (int, float)):
        return value
    text = str(value).strip().replace(",", "")
    # Snapshot prices may carry a one-letter marker such as C (prior close) or H (halted).
    if text[:1] in {"C", "H"}:
        text = text[1:]
    try:
        return float(text)
    except ValueError:
        return value


def _as_int(value: Any) -> int | None:
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None
