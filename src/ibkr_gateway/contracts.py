"""Symbol-to-contract resolution and options-chain construction."""

from __future__ import annotations

import logging
from typing import Any

from ibkr_gateway.exceptions import ErrorCode, GatewayError
from ibkr_gateway.models.contracts import Contract, Expiration, OptionChain, OptionContract, Right, SecType
from ibkr_gateway.pipeline import RequestPipeline

logger = logging.getLogger(__name__)

SEARCH_PATH = "/iserver/secdef/search"
INFO_PATH = "/iserver/secdef/info"
STRIKES_PATH = "/iserver/secdef/strikes"
MAX_CHAIN_EXPIRATIONS = 4
SEC_TYPE_VALUES = frozenset(item.value for item in SecType)


class ContractResolver:
    """Best-effort contract lookups over the gateway's ``secdef`` endpoints.

    Nothing here is cached: every high-level call re-resolves its symbol.
    """

    def __init__(self, pipeline: RequestPipeline) -> None:
        self._pipeline = pipeline

    async def search(
        self,
        symbol: str,
        sec_type: SecType | str | None = None,
        *,
        exchange: str | None = None,
        operation: str = "contract_search",
    ) -> list[dict[str, Any]]:
        params: dict[str, Any] = {"symbol": symbol}
        if sec_type is not None:
            params["secType"] = _sec_type_value(sec_type)
        if exchange:
            params["exchange"] = exchange
        payload = await self._pipeline.request_json("GET", SEARCH_PATH, params=params, operation=operation)
        return [row for row in _as_list(payload) if isinstance(row, dict)]

    async def search_contracts(
        self,
        query: str,
        sec_type: SecType | str | None = None,
        exchange: str | None = None,
        currency: str | None = None,
        limit: int = 10,
    ) -> list[dict[str, Any]]:
        rows = await self.search(query, sec_type, exchange=exchange)
        if currency:
            rows = [row for row in rows if row.get("currency") == currency]
        rows = rows[: max(limit, 0)]
        logger.info("contract search query=%s results=%d", query, len(rows))
        return rows

    async def resolve_symbol(self, symbol: str, sec_type: SecType | str | None = None) -> Contract:
        """Resolve a ticker to a contract, preferring the requested type (stock by default).

        The search endpoint does not guarantee a unique or correct match and
        the result is not verified beyond its shape.
        """
        symbol_upper = symbol.upper().strip()
        if not symbol_upper:
            raise GatewayError(ErrorCode.INVALID_ARGS, "symbol is required")

        rows = await self.search(symbol_upper, sec_type, operation="symbol_search")
        if not rows:
            raise GatewayError(
                ErrorCode.SYMBOL_NOT_FOUND,
                f"symbol {symbol_upper} not found",
                details={"symbol": symbol_upper, "sec_type": _sec_type_value(sec_type) if sec_type else None},
                suggestion="Check the ticker, or pass a conid directly.",
            )

        row = pick_contract(rows, sec_type or SecType.STK)
        contract = _contract_from_row(row, symbol_upper)
        if contract is None:
            raise GatewayError(
                ErrorCode.SYMBOL_NOT_FOUND,
                f"search result for {symbol_upper} has no conid",
                details={"symbol": symbol_upper},
            )
        logger.debug("resolved %s -> conid %s", symbol_upper, contract.conid)
        return contract

    async def contract_details(self, conid: int) -> Any:
        return await self._pipeline.request_json(
            "GET",
            INFO_PATH,
            params={"conid": conid},
            operation="contract_details",
        )

    async def build_options_chain(self, symbol: str, conid: int | None = None) -> OptionChain:
        """Merge expiration months from an OPT search and fetch strikes per month.

        Only the first ``MAX_CHAIN_EXPIRATIONS`` distinct months, in the order the
        gateway returned them, are kept. A month whose strike fetch fails is
        dropped and the chain is returned with the remaining months.
        """
        symbol_upper = symbol.upper().strip()
        underlying_conid = conid
        if underlying_conid is None:
            underlying_conid = (await self.resolve_symbol(symbol_upper, SecType.STK)).conid

        rows = await self.search(symbol_upper, SecType.OPT, operation="option_search")
        if not rows:
            raise GatewayError(
                ErrorCode.CONTRACT_NOT_FOUND,
                f"no options found for {symbol_upper}",
                details={"symbol": symbol_upper, "underlying_conid": underlying_conid},
            )

        months = collect_expiration_months(rows)[:MAX_CHAIN_EXPIRATIONS]
        logger.info("options chain %s conid=%s months=%s", symbol_upper, underlying_conid, ",".join(months))

        expirations: list[Expiration] = []
        for month in months:
            try:
                payload = await self._pipeline.request_json(
                    "GET",
                    STRIKES_PATH,
                    params={"conid": underlying_conid, "secType": SecType.OPT.value, "month": month},
                    operation="option_strikes",
                )
            except GatewayError as exc:
                if exc.is_auth_error:
                    raise
                logger.warning("skipping expiration %s for %s: %s", month, symbol_upper, exc.message)
                continue
            if not isinstance(payload, dict):
                continue
            expirations.append(
                Expiration(
                    month=month,
                    call_strikes=_strike_list(payload.get("call")),
                    put_strikes=_strike_list(payload.get("put")),
                )
            )

        return OptionChain(symbol=symbol_upper, underlying_conid=underlying_conid, expirations=expirations)

    async def find_option_contract(
        self,
        symbol: str,
        expiration: str | None = None,
        strike: float | str | None = None,
        right: str | None = None,
        delta: float | None = None,
    ) -> OptionContract:
        """Approximate option selection from the chain.

        Without a strike (a zero strike counts as none) the middle listed strike
        stands in for at-the-money; no underlying price is consulted.
        ``delta`` is accepted but not used.
        """
        symbol_upper = symbol.upper().strip()
        chain = await self.build_options_chain(symbol_upper)
        if not chain.expirations:
            raise GatewayError(
                ErrorCode.CONTRACT_NOT_FOUND,
                f"no options chain found for {symbol_upper}",
                details={"symbol": symbol_upper},
            )

        selected = select_expiration(chain.expirations, expiration)
        option_right = parse_right(right)
        strikes = selected.strikes(option_right)
        if not strikes:
            label = "call" if option_right is Right.CALL else "put"
            raise GatewayError(
                ErrorCode.CONTRACT_NOT_FOUND,
                f"no {label} strikes found for {symbol_upper} {selected.month}",
                details={"symbol": symbol_upper, "expiration": selected.month},
            )

        if delta is not None:
            logger.info("delta-based strike selection is not supported; ignoring delta=%s", delta)

        return OptionContract(
            symbol=symbol_upper,
            expiration=selected.month,
            strike=approximate_strike(strikes, _as_float(strike) or None),
            right=option_right,
            underlying_conid=chain.underlying_conid,
            delta_ignored=delta is not None,
        )

    async def approximate_option_contract(self, symbol: str) -> Contract | None:
        """Return the first OPT search entry whose detail lookup succeeds.

        This does not match strike, expiration or right; it is the gateway's
        first option candidate for the symbol.
        """
        symbol_upper = symbol.upper().strip()
        rows = await self.search(symbol_upper, SecType.OPT, operation="option_search")
        for row in rows:
            sections = [item for item in _as_list(row.get("sections")) if isinstance(item, dict)]
            if not sections or sections[0].get("secType") != SecType.OPT.value:
                continue
            conid = _as_int(row.get("conid"))
            if conid is None:
                continue
            try:
                info = await self._pipeline.request_json(
                    "GET",
                    INFO_PATH,
                    params={"conid": conid},
                    operation="contract_details",
                )
            except GatewayError as exc:
                if exc.is_auth_error:
                    raise
                logger.warning("could not get info for option contract %s: %s", conid, exc.message)
                continue
            logger.debug("option contract %s info: %s", conid, info)
            return Contract(
                conid=conid,
                symbol=symbol_upper,
                sec_type=SecType.OPT,
                description=str(row.get("description") or "") or None,
            )
        return None


def pick_contract(rows: list[dict[str, Any]], preferred: SecType | str) -> dict[str, Any]:
    wanted = _sec_type_value(preferred)
    for row in rows:
        if row.get("assetClass") == wanted or row.get("secType") == wanted:
            return row
    return rows[0]


def collect_expiration_months(rows: list[dict[str, Any]]) -> list[str]:
    """Distinct semicolon-delimited ``months`` tokens in first-seen order."""
    months: dict[str, None] = {}
    for row in rows:
        raw = row.get("months")
        if not isinstance(raw, str):
            continue
        for token in raw.split(";"):
            token = token.strip()
            if token:
                months.setdefault(token, None)
    return list(months)


def select_expiration(expirations: list[Expiration], wanted: str | None) -> Expiration:
    """Loose month match in either direction (``JAN25`` vs longer tokens); nearest otherwise."""
    if wanted:
        needle = wanted.upper().strip()
        for entry in expirations:
            month = entry.month.upper()
            if needle in month or month in needle:
                return entry
    return expirations[0]


def approximate_strike(strikes: list[float], requested: float | None) -> float:
    """Listed strike closest to ``requested``; the middle strike when none is requested."""
    target = requested if requested is not None else strikes[len(strikes) // 2]
    return min(strikes, key=lambda value: abs(value - target))


def parse_right(value: str | None) -> Right:
    if value is None:
        return Right.CALL
    normalized = value.upper().strip()
    if normalized in {"P", "PUT"}:
        return Right.PUT
    return Right.CALL


def _contract_from_row(row: dict[str, Any], symbol: str) -> Contract | None:
    conid = _as_int(row.get("conid"))
    if conid is None:
        return None
    raw_type = row.get("assetClass") or row.get("secType")
    sec_type = SecType(raw_type) if raw_type in SEC_TYPE_VALUES else None
    return Contract(
        conid=conid,
        symbol=str(row.get("symbol") or symbol).upper(),
        sec_type=sec_type,
        description=str(row.get("companyName") or row.get("description") or "") or None,
        currency=row.get("currency") if isinstance(row.get("currency"), str) else None,
        exchange=row.get("exchange") if isinstance(row.get("exchange"), str) else None,
    )


def _sec_type_value(value: SecType | str) -> str:
    return value.value if isinstance(value, SecType) else str(value).upper()


def _strike_list(value: Any) -> list[float]:
    out: list[float] = []
    for item in _as_list(value):
        parsed = _as_float(item)
        if parsed is not None:
            out.append(parsed)
    return out


def _as_float(value: Any) -> float | None:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _as_int(value: Any) -> int | None:
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _as_list(value: Any) -> list[Any]:
    if value is None:
        return []
    if isinstance(value, list):
        return value
    return [value]
