from __future__ import annotations

import asyncio
from decimal import Decimal

import pytest

from rate_arbitrage.core.exceptions import AggregationError, InvalidInputError, ProviderError
from rate_arbitrage.services.schemas import Quote, RateTable
from rate_arbitrage.venues import BybitVenue, KucoinVenue, OkxVenue, VenuePriceCollector, VenuePriceSimulator


@pytest.mark.asyncio
async def test_bybit_mid_prices(make_http) -> None:
    http = make_http(
        {
            "retCode": 0,
            "result": {
                "list": [
                    {"symbol": "BTCUSDT", "bid1Price": "61999", "ask1Price": "62001"},
                    {"symbol": "ETHUSDT", "bid1Price": "0", "ask1Price": "3200"},
                    {"symbol": "XRPBTC", "bid1Price": "0.00001", "ask1Price": "0.00002"},
                ]
            },
        }
    )
    venue = BybitVenue(http)

    prices = await venue.fetch_prices(["BTC", "ETH", "USDT"])

    assert http.requests[0]["params"] == {"category": "spot"}
    assert prices == {"BTC": Decimal(62000)}


@pytest.mark.asyncio
async def test_okx_uses_dashed_instruments(make_http) -> None:
    http = make_http({"code": "0", "data": [{"instId": "ETH-USDT", "bidPx": "3199.5", "askPx": "3200.5"}]})
    venue = OkxVenue(http)

    prices = await venue.fetch_prices(["eth"])

    assert http.requests[0]["url"] == "https://www.okx.com/api/v5/market/tickers"
    assert prices == {"ETH": Decimal(3200)}


@pytest.mark.asyncio
async def test_okx_error_code_is_malformed(make_http) -> None:
    venue = OkxVenue(make_http({"code": "50011", "msg": "Too Many Requests", "data": []}))

    with pytest.raises(ProviderError, match="50011"):
        await venue.fetch_prices(["BTC"])


@pytest.mark.asyncio
async def test_kucoin_reads_buy_and_sell(make_http) -> None:
    http = make_http({"code": "200000", "data": {"ticker": [{"symbol": "SOL-USDT", "buy": "150.1", "sell": "150.3"}]}})
    venue = KucoinVenue(http)

    prices = await venue.fetch_prices(["SOL", "BTC"])

    assert prices == {"SOL": Decimal("150.2")}


@pytest.mark.asyncio
async def test_kucoin_missing_ticker_list_raises(make_http) -> None:
    venue = KucoinVenue(make_http({"code": "200000", "data": None}))

    with pytest.raises(ProviderError, match="malformed"):
        await venue.fetch_tickers()


@pytest.mark.asyncio
async def test_collector_drops_failing_venue(make_http) -> None:
    bybit = BybitVenue(make_http({"result": {"list": [{"symbol": "BTCUSDT", "bid1Price": "100", "ask1Price": "102"}]}}))
    okx = OkxVenue(make_http(error=asyncio.TimeoutError()))
    kucoin = KucoinVenue(make_http({"data": {"ticker": [{"symbol": "BTC-USDT", "buy": "103", "sell": "103"}]}}))
    collector = VenuePriceCollector([bybit, okx, kucoin])

    matrix = await collector.collect(["BTC"])

    assert collector.venue_names == ["bybit", "okx", "kucoin"]
    assert matrix == {"BTC": {"bybit": Decimal(101), "kucoin": Decimal(103)}}


@pytest.mark.asyncio
async def test_collector_fails_when_every_venue_fails(make_http) -> None:
    collector = VenuePriceCollector([BybitVenue(make_http(error=ValueError("html page")))])

    with pytest.raises(AggregationError) as excinfo:
        await collector.collect(["BTC"])

    assert set(excinfo.value.errors) == {"bybit"}


def reference_table() -> RateTable:
    table = RateTable(assets=("BTC", "ETH"), currencies=("USD",), source="test")
    table.add(Quote("BTC", "USD", Decimal(60000), "test", 0.0))
    table.add(Quote("ETH", "USD", Decimal(3000), "test", 0.0))
    return table


@pytest.mark.asyncio
async def test_simulator_is_deterministic_for_a_seed() -> None:
    first = await VenuePriceSimulator(["bybit", "okx"], seed=42).collect(["BTC", "ETH"], reference_table())
    second = await VenuePriceSimulator(["bybit", "okx"], seed=42).collect(["BTC", "ETH"], reference_table())

    assert first == second


@pytest.mark.asyncio
async def test_simulator_stays_within_spread() -> None:
    simulator = VenuePriceSimulator(["bybit", "okx", "kucoin"], spread_pct=2.0, seed=1)

    matrix = await simulator.collect(["BTC", "ETH", "DOGE"], reference_table())

    assert set(matrix) == {"BTC", "ETH"}
    for price in matrix["BTC"].values():
        assert Decimal(59400) <= price <= Decimal(60600)
    assert set(matrix["ETH"]) == {"bybit", "okx", "kucoin"}


@pytest.mark.asyncio
async def test_simulator_needs_reference_rates() -> None:
    with pytest.raises(InvalidInputError):
        await VenuePriceSimulator(["bybit"]).collect(["BTC"])


@pytest.mark.asyncio
async def test_collector_ignores_garbage_ticker_entries(make_http) -> None:
    okx = OkxVenue(make_http({"code": "0", "data": ["garbage", None]}))
    bybit = BybitVenue(make_http({"result": {"list": [42, {"symbol": "BTCUSDT", "bid1Price": "100", "ask1Price": "102"}]}}))
    kucoin = KucoinVenue(make_http({"data": {"ticker": ["oops"]}}))
    collector = VenuePriceCollector([okx, bybit, kucoin])

    matrix = await collector.collect(["BTC"])

    assert matrix == {"BTC": {"bybit": Decimal(101)}}
