from __future__ import annotations

import asyncio

import httpx
import pytest

from conftest import FakeGateway
from ibkr_gateway.config import GatewayConfig
from ibkr_gateway.contracts import (
    INFO_PATH,
    SEARCH_PATH,
    STRIKES_PATH,
    ContractResolver,
    approximate_strike,
    collect_expiration_months,
    parse_right,
    pick_contract,
    select_expiration,
)
from ibkr_gateway.exceptions import ErrorCode, GatewayError
from ibkr_gateway.models.contracts import Expiration, Right, SecType
from ibkr_gateway.pipeline import RequestPipeline
from ibkr_gateway.session import SessionManager


class _Harness:
    def __init__(self, transport: httpx.AsyncBaseTransport) -> None:
        cfg = GatewayConfig(tickle_interval_seconds=3600.0)
        self.session = SessionManager(cfg, transport=transport)
        self.pipeline = RequestPipeline(cfg, self.session, transport=transport)
        self.resolver = ContractResolver(self.pipeline)

    async def aclose(self) -> None:
        await self.session.aclose()
        await self.pipeline.aclose()


def _search_route(stock_rows: list[dict], option_rows: list[dict]):
    def _route(request: httpx.Request) -> httpx.Response:
        if request.url.params.get("secType") == "OPT":
            return httpx.Response(200, json=option_rows)
        return httpx.Response(200, json=stock_rows)

    return _route


def _strikes_route(by_month: dict[str, dict[str, list[float]] | None]):
    def _route(request: httpx.Request) -> httpx.Response:
        payload = by_month.get(request.url.params["month"])
        if payload is None:
            return httpx.Response(400, json={"error": "no strikes for month"})
        return httpx.Response(200, json=payload)

    return _route


@pytest.mark.asyncio
async def test_resolve_symbol_prefers_stock_match(gateway: FakeGateway) -> None:
    gateway.add(
        "GET",
        SEARCH_PATH,
        (
            200,
            [
                {"conid": 1, "symbol": "SPY", "assetClass": "OPT"},
                {"conid": 756733, "symbol": "SPY", "assetClass": "STK", "companyName": "SPDR S&P 500"},
            ],
        ),
    )
    harness = _Harness(gateway.transport)
    try:
        contract = await harness.resolver.resolve_symbol("spy")
    finally:
        await harness.aclose()

    assert contract.conid == 756733
    assert contract.sec_type is SecType.STK
    assert contract.description == "SPDR S&P 500"
    assert gateway.calls("GET", SEARCH_PATH)[0].url.params["symbol"] == "SPY"


@pytest.mark.asyncio
async def test_resolve_symbol_raises_symbol_not_found(gateway: FakeGateway) -> None:
    gateway.add("GET", SEARCH_PATH, (200, []))
    harness = _Harness(gateway.transport)
    try:
        with pytest.raises(GatewayError) as exc_info:
            await harness.resolver.resolve_symbol("ZZZZ")
    finally:
        await harness.aclose()

    assert exc_info.value.code is ErrorCode.SYMBOL_NOT_FOUND


@pytest.mark.asyncio
async def test_find_option_contract_exact_put_strike(gateway: FakeGateway) -> None:
    gateway.add(
        "GET",
        SEARCH_PATH,
        _search_route(
            [{"conid": 756733, "assetClass": "STK"}],
            [{"conid": 756733, "months": "JAN25;FEB25"}],
        ),
    )
    gateway.add(
        "GET",
        STRIKES_PATH,
        _strikes_route(
            {
                "JAN25": {"call": [440, 445, 450, 455], "put": [440, 445, 450, 455]},
                "FEB25": {"call": [400], "put": [400]},
            }
        ),
    )
    harness = _Harness(gateway.transport)
    try:
        option = await harness.resolver.find_option_contract("SPY", strike=450, right="P")
    finally:
        await harness.aclose()

    assert option.strike == 450
    assert option.right is Right.PUT
    assert option.expiration == "JAN25"
    assert option.underlying_conid == 756733
    assert option.approximate is True


@pytest.mark.asyncio
async def test_find_option_contract_defaults_to_middle_call_strike(gateway: FakeGateway) -> None:
    gateway.add(
        "GET",
        SEARCH_PATH,
        _search_route([{"conid": 9, "assetClass": "STK"}], [{"conid": 9, "months": "MAR25"}]),
    )
    gateway.add("GET", STRIKES_PATH, (200, {"call": [10, 20, 30, 40, 50], "put": []}))
    harness = _Harness(gateway.transport)
    try:
        option = await harness.resolver.find_option_contract("SPY", right="C", delta=0.3)
    finally:
        await harness.aclose()

    assert option.strike == 30
    assert option.right is Right.CALL
    assert option.delta_ignored is True


@pytest.mark.asyncio
async def test_find_option_contract_zero_strike_means_middle_strike(gateway: FakeGateway) -> None:
    gateway.add(
        "GET",
        SEARCH_PATH,
        _search_route([{"conid": 9, "assetClass": "STK"}], [{"conid": 9, "months": "MAR25"}]),
    )
    gateway.add("GET", STRIKES_PATH, (200, {"call": [10, 20, 30, 40, 50], "put": []}))
    harness = _Harness(gateway.transport)
    try:
        option = await harness.resolver.find_option_contract("SPY", strike=0, right="C")
    finally:
        await harness.aclose()

    assert option.strike == 30


@pytest.mark.asyncio
async def test_options_chain_keeps_first_four_months_and_skips_failures(gateway: FakeGateway) -> None:
    gateway.add(
        "GET",
        SEARCH_PATH,
        _search_route(
            [{"conid": 5, "assetClass": "STK"}],
            [
                {"conid": 5, "months": "JAN25;FEB25;MAR25"},
                {"conid": 5, "months": "FEB25;APR25;MAY25"},
            ],
        ),
    )
    gateway.add(
        "GET",
        STRIKES_PATH,
        _strikes_route(
            {
                "JAN25": {"call": [1.0], "put": [1.0]},
                "FEB25": None,
                "MAR25": {"call": [2.0], "put": []},
                "APR25": {"call": [3.0], "put": [3.0]},
            }
        ),
    )
    harness = _Harness(gateway.transport)
    try:
        chain = await harness.resolver.build_options_chain("abc")
    finally:
        await harness.aclose()

    assert chain.symbol == "ABC"
    assert [entry.month for entry in chain.expirations] == ["JAN25", "MAR25", "APR25"]
    requested = [req.url.params["month"] for req in gateway.calls("GET", STRIKES_PATH)]
    assert requested == ["JAN25", "FEB25", "MAR25", "APR25"]


@pytest.mark.asyncio
async def test_options_chain_without_options_fails(gateway: FakeGateway) -> None:
    gateway.add("GET", SEARCH_PATH, _search_route([{"conid": 5, "assetClass": "STK"}], []))
    harness = _Harness(gateway.transport)
    try:
        with pytest.raises(GatewayError) as exc_info:
            await harness.resolver.build_options_chain("ABC")
    finally:
        await harness.aclose()

    assert exc_info.value.code is ErrorCode.CONTRACT_NOT_FOUND
    assert exc_info.value.message == "no options found for ABC"


@pytest.mark.asyncio
async def test_options_chain_with_conid_skips_underlying_lookup(gateway: FakeGateway) -> None:
    gateway.add("GET", SEARCH_PATH, (200, [{"conid": 77, "months": "JUN25"}]))
    gateway.add("GET", STRIKES_PATH, (200, {"call": [5], "put": [5]}))
    harness = _Harness(gateway.transport)
    try:
        chain = await harness.resolver.build_options_chain("XYZ", conid=77)
    finally:
        await harness.aclose()

    searches = gateway.calls("GET", SEARCH_PATH)
    assert [req.url.params.get("secType") for req in searches] == ["OPT"]
    assert chain.underlying_conid == 77
    assert gateway.calls("GET", STRIKES_PATH)[0].url.params["conid"] == "77"


@pytest.mark.asyncio
async def test_cancelling_chain_build_stops_remaining_strike_fetches(gateway: FakeGateway) -> None:
    started = asyncio.Event()
    block = asyncio.Event()

    async def _slow_strikes(request: httpx.Request) -> httpx.Response:
        started.set()
        await block.wait()
        return httpx.Response(200, json={"call": [1], "put": [1]})

    gateway.add("GET", SEARCH_PATH, (200, [{"conid": 5, "months": "JAN25;FEB25;MAR25"}]))
    gateway.add("GET", STRIKES_PATH, _slow_strikes)
    harness = _Harness(gateway.transport)
    try:
        task = asyncio.create_task(harness.resolver.build_options_chain("ABC", conid=5))
        await started.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
    finally:
        await harness.aclose()

    assert len(gateway.calls("GET", STRIKES_PATH)) == 1


@pytest.mark.asyncio
async def test_approximate_option_contract_skips_failed_detail_lookups(gateway: FakeGateway) -> None:
    gateway.add(
        "GET",
        SEARCH_PATH,
        (
            200,
            [
                {"conid": 1, "sections": [{"secType": "STK"}]},
                {"conid": 2, "sections": [{"secType": "OPT"}]},
                {"conid": 3, "sections": [{"secType": "OPT"}], "description": "SPY OPT"},
            ],
        ),
    )

    def _info(request: httpx.Request) -> httpx.Response:
        if request.url.params["conid"] == "2":
            return httpx.Response(404, json={"error": "unknown contract"})
        return httpx.Response(200, json={"conid": 3})

    gateway.add("GET", INFO_PATH, _info)
    harness = _Harness(gateway.transport)
    try:
        contract = await harness.resolver.approximate_option_contract("spy")
    finally:
        await harness.aclose()

    assert contract is not None
    assert contract.conid == 3
    assert contract.sec_type is SecType.OPT


@pytest.mark.asyncio
async def test_search_contracts_filters_currency_and_limits(gateway: FakeGateway) -> None:
    gateway.add(
        "GET",
        SEARCH_PATH,
        (
            200,
            [
                {"conid": 1, "currency": "USD"},
                {"conid": 2, "currency": "EUR"},
                {"conid": 3, "currency": "USD"},
                {"conid": 4, "currency": "USD"},
            ],
        ),
    )
    harness = _Harness(gateway.transport)
    try:
        rows = await harness.resolver.search_contracts("ACME", "STK", exchange="NYSE", currency="USD", limit=2)
    finally:
        await harness.aclose()

    assert [row["conid"] for row in rows] == [1, 3]
    params = gateway.calls("GET", SEARCH_PATH)[0].url.params
    assert params["secType"] == "STK"
    assert params["exchange"] == "NYSE"


def test_collect_expiration_months_keeps_first_seen_order() -> None:
    rows = [{"months": "MAR25;JAN25"}, {"months": "JAN25;FEB25"}, {"months": None}]
    assert collect_expiration_months(rows) == ["MAR25", "JAN25", "FEB25"]


@pytest.mark.parametrize(
    ("wanted", "expected"),
    [
        (None, "JAN25"),
        ("FEB25", "FEB25"),
        ("feb", "FEB25"),
        ("20250221FEB25", "FEB25"),
        ("DEC30", "JAN25"),
    ],
)
def test_select_expiration_matches_loosely(wanted: str | None, expected: str) -> None:
    expirations = [Expiration(month="JAN25"), Expiration(month="FEB25")]
    assert select_expiration(expirations, wanted).month == expected


@pytest.mark.parametrize(
    ("strikes", "requested", "expected"),
    [
        ([440.0, 445.0, 450.0, 455.0], 450.0, 450.0),
        ([10.0, 20.0, 30.0, 40.0, 50.0], None, 30.0),
        ([10.0, 20.0], 15.0, 10.0),
        ([100.0, 105.0, 110.0], 108.0, 110.0),
    ],
)
def test_approximate_strike(strikes: list[float], requested: float | None, expected: float) -> None:
    assert approximate_strike(strikes, requested) == expected


@pytest.mark.parametrize(
    ("raw", "expected"),
    [(None, Right.CALL), ("c", Right.CALL), ("CALL", Right.CALL), ("p", Right.PUT), ("Put", Right.PUT)],
)
def test_parse_right(raw: str | None, expected: Right) -> None:
    assert parse_right(raw) is expected


def test_pick_contract_falls_back_to_first_row() -> None:
    rows = [{"conid": 1, "assetClass": "FUT"}, {"conid": 2, "assetClass": "OPT"}]
    assert pick_contract(rows, SecType.STK)["conid"] == 1
