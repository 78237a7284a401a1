from __future__ import annotations

import asyncio
from decimal import Decimal

import pytest

from rate_arbitrage.core.exceptions import AggregationError, InvalidInputError
from rate_arbitrage.providers import CoinGeckoProvider
from rate_arbitrage.services.price_cache import PriceCache
from rate_arbitrage.services.rate_aggregator import RateAggregator
from rate_arbitrage.services.schemas import ProviderOutcome, Quote

BTC_USD = {("BTC", "USD"): "62000.50", ("ETH", "USD"): "3200.25"}


def build(providers, clock, **kwargs) -> RateAggregator:
    cache = PriceCache(default_ttl=300, clock=clock)
    return RateAggregator(providers, cache, clock=clock, **kwargs)


@pytest.mark.asyncio
async def test_second_call_within_ttl_hits_cache(make_provider, clock) -> None:
    provider = make_provider("a", BTC_USD)
    aggregator = build([provider], clock)

    first = await aggregator.get_rates(["BTC", "ETH"], ["USD"])
    clock.advance(299)
    second = await aggregator.get_rates(["ETH", "BTC"], ["usd"])

    assert provider.calls == 1
    assert first.from_cache is False
    assert second.from_cache is True
    assert second.get("BTC", "USD").price == Decimal("62000.50")


@pytest.mark.asyncio
async def test_call_after_ttl_expiry_refetches(make_provider, clock) -> None:
    provider = make_provider("a", BTC_USD)
    aggregator = build([provider], clock)

    await aggregator.get_rates(["BTC"], ["USD"])
    clock.advance(301)
    table = await aggregator.get_rates(["BTC"], ["USD"])

    assert provider.calls == 2
    assert table.from_cache is False


@pytest.mark.asyncio
async def test_force_refresh_bypasses_cache(make_provider, clock) -> None:
    provider = make_provider("a", BTC_USD)
    aggregator = build([provider], clock)

    await aggregator.get_rates(["BTC"], ["USD"])
    await aggregator.get_rates(["BTC"], ["USD"], force_refresh=True)

    assert provider.calls == 2


@pytest.mark.asyncio
async def test_fallback_returns_first_successful_provider(make_provider, clock) -> None:
    a = make_provider("a", error="HTTP 500")
    b = make_provider("b", error="malformed response")
    c = make_provider("c", {("BTC", "USD"): "61999"})
    aggregator = build([a, b, c], clock, auto_switch=False)

    table = await aggregator.get_rates(["BTC"], ["USD"])

    assert table.source == "c"
    assert table.get("BTC", "USD").price == Decimal("61999")
    assert [q.key for q in table] == [("BTC", "USD")]
    states = aggregator.provider_states()
    assert states["a"].consecutive_errors == 1
    assert states["b"].consecutive_errors == 1
    assert states["c"].consecutive_errors == 0
    assert states["a"].last_outcome is ProviderOutcome.FAILURE
    assert states["a"].last_error == "HTTP 500"
    assert states["c"].last_outcome is ProviderOutcome.SUCCESS
    assert states["c"].last_attempt_at == clock.now
    assert aggregator.last_provider_used == "c"


@pytest.mark.asyncio
async def test_total_failure_raises_without_caching(make_provider, clock) -> None:
    a = make_provider("a", error="timeout")
    b = make_provider("b", error="HTTP 503")
    cache = PriceCache(default_ttl=300, clock=clock)
    aggregator = RateAggregator([a, b], cache, clock=clock)

    with pytest.raises(AggregationError) as excinfo:
        await aggregator.get_rates(["BTC"], ["USD"])

    assert set(excinfo.value.errors) == {"a", "b"}
    assert excinfo.value.errors["b"].reason == "HTTP 503"
    assert len(cache) == 0
    assert aggregator.last_provider_used is None


@pytest.mark.asyncio
async def test_auto_switch_orders_by_consecutive_errors(make_provider, clock) -> None:
    a = make_provider("a", error="down")
    b = make_provider("b", BTC_USD)
    aggregator = build([a, b], clock, auto_switch=True)

    assert aggregator.attempt_order() == ["a", "b"]
    await aggregator.get_rates(["BTC"], ["USD"])
    assert aggregator.attempt_order() == ["b", "a"]

    await aggregator.get_rates(["BTC"], ["USD"], force_refresh=True)
    assert a.calls == 1
    assert b.calls == 2


@pytest.mark.asyncio
async def test_degraded_provider_recovers_only_on_success(make_provider, clock) -> None:
    a = make_provider("a", error="down")
    b = make_provider("b", BTC_USD)
    aggregator = build([a, b], clock, auto_switch=False, max_errors_before_switch=3)

    for _ in range(3):
        await aggregator.get_rates(["BTC"], ["USD"], force_refresh=True)
    assert aggregator.is_degraded("a")

    clock.advance(24 * 3600)
    assert aggregator.is_degraded("a")

    a.error = None
    a.prices = BTC_USD
    table = await aggregator.get_rates(["BTC"], ["USD"], force_refresh=True)
    assert table.source == "a"
    assert not aggregator.is_degraded("a")
    assert aggregator.provider_states()["a"].consecutive_errors == 0


def test_preferred_provider_first_when_auto_switch_disabled(make_provider, clock) -> None:
    providers = [make_provider(name) for name in ("a", "b", "c")]
    aggregator = build(providers, clock, auto_switch=False, preferred_provider="c")

    assert aggregator.attempt_order() == ["c", "a", "b"]
    aggregator.set_preferred_provider("b")
    assert aggregator.attempt_order() == ["b", "a", "c"]

    aggregator.set_auto_switch(True)
    assert aggregator.auto_switch is True
    assert aggregator.attempt_order() == ["a", "b", "c"]

    with pytest.raises(InvalidInputError):
        aggregator.set_preferred_provider("nope")


def test_provider_order_management(make_provider, clock) -> None:
    aggregator = build([make_provider("a"), make_provider("b")], clock, auto_switch=False, preferred_provider=None)

    aggregator.add_provider(make_provider("c"), priority=0)
    assert aggregator.provider_order == ["c", "a", "b"]

    aggregator.set_provider_order(["b"])
    assert aggregator.provider_order == ["b", "c", "a"]

    removed = aggregator.remove_provider("c")
    assert removed.name == "c"
    assert aggregator.provider_order == ["b", "a"]
    assert "c" not in aggregator.provider_states()

    with pytest.raises(InvalidInputError):
        aggregator.set_provider_order(["b", "zzz"])
    with pytest.raises(InvalidInputError):
        aggregator.remove_provider("c")


@pytest.mark.asyncio
async def test_timeout_counts_as_failure(make_provider, clock) -> None:
    slow = make_provider("slow", BTC_USD, delay=0.5, timeout=0.05)
    fast = make_provider("fast", BTC_USD)
    aggregator = build([slow, fast], clock, auto_switch=False)

    table = await aggregator.get_rates(["BTC"], ["USD"])

    assert table.source == "fast"
    state = aggregator.provider_states()["slow"]
    assert state.consecutive_errors == 1
    assert "timed out" in state.last_error


@pytest.mark.asyncio
async def test_partial_data_is_not_a_failure(make_provider, clock) -> None:
    a = make_provider("a", {("BTC", "USD"): "62000"})
    b = make_provider("b", BTC_USD)
    aggregator = build([a, b], clock, auto_switch=False)

    table = await aggregator.get_rates(["BTC", "ETH"], ["USD"])

    assert table.source == "a"
    assert b.calls == 0
    assert table.get("ETH", "USD") is None
    assert table.missing == [("ETH", "USD")]


@pytest.mark.asyncio
async def test_rejects_empty_and_unknown_symbols(make_provider, clock) -> None:
    provider = make_provider("a", BTC_USD)
    aggregator = build([provider], clock, known_symbols={"BTC", "ETH", "USD"})

    with pytest.raises(InvalidInputError):
        await aggregator.get_rates([], ["USD"])
    with pytest.raises(InvalidInputError):
        await aggregator.get_rates(["BTC"], [])
    with pytest.raises(InvalidInputError, match="DOGE"):
        await aggregator.get_rates(["BTC", "DOGE"], ["USD"])
    assert provider.calls == 0


@pytest.mark.asyncio
async def test_overlapping_calls_for_same_query_fetch_once(make_provider, clock) -> None:
    provider = make_provider("a", BTC_USD, delay=0.02)
    aggregator = build([provider], clock)

    first, second = await asyncio.gather(
        aggregator.get_rates(["BTC"], ["USD"]),
        aggregator.get_rates(["BTC"], ["USD"]),
    )

    assert provider.calls == 1
    assert {first.from_cache, second.from_cache} == {False, True}


@pytest.mark.asyncio
async def test_compare_sources_summarizes_prices(make_provider, clock) -> None:
    a = make_provider("a", {("BTC", "USD"): "100"})
    b = make_provider("b", {("BTC", "USD"): "104"})
    c = make_provider("c", error="down")
    aggregator = build([a, b, c], clock)

    comparisons = await aggregator.compare_sources(["BTC"], ["USD"])

    assert len(comparisons) == 1
    item = comparisons[0]
    assert item.prices == {"a": Decimal("100"), "b": Decimal("104")}
    assert item.average == Decimal("102")
    assert item.median == Decimal("102")
    assert item.minimum == Decimal("100")
    assert item.maximum == Decimal("104")
    assert item.stdev == Decimal("2")
    assert aggregator.provider_states()["c"].consecutive_errors == 1


@pytest.mark.asyncio
async def test_compare_sources_fails_when_every_provider_fails(make_provider, clock) -> None:
    aggregator = build([make_provider("a", error="down")], clock)

    with pytest.raises(AggregationError):
        await aggregator.compare_sources(["BTC"], ["USD"])


@pytest.mark.asyncio
async def test_check_providers_reports_status(make_provider, clock) -> None:
    aggregator = build([make_provider("a"), make_provider("b", error="HTTP 403")], clock)

    status = await aggregator.check_providers()

    assert status["a"].available is True
    assert status["a"].reason == "OK"
    assert status["b"].available is False
    assert status["b"].reason == "HTTP 403"


@pytest.mark.asyncio
async def test_reset_error_counts_restores_provider(make_provider, clock) -> None:
    a = make_provider("a", error="down")
    b = make_provider("b", BTC_USD)
    aggregator = build([a, b], clock, auto_switch=False)

    for _ in range(3):
        await aggregator.get_rates(["BTC"], ["USD"], force_refresh=True)
    assert aggregator.is_degraded("a")
    aggregator.set_auto_switch(True)
    assert aggregator.attempt_order() == ["b", "a"]

    aggregator.reset_error_counts()

    assert not aggregator.is_degraded("a")
    assert aggregator.attempt_order() == ["a", "b"]
    assert aggregator.provider_states()["a"].last_error == "down"


@pytest.mark.asyncio
async def test_set_auto_switch_changes_error_limit(make_provider, clock) -> None:
    a = make_provider("a", error="down")
    b = make_provider("b", BTC_USD)
    aggregator = build([a, b], clock, auto_switch=True, max_errors_before_switch=3)

    aggregator.set_auto_switch(False, max_errors=1)
    await aggregator.get_rates(["BTC"], ["USD"])

    assert aggregator.auto_switch is False
    assert aggregator.max_errors_before_switch == 1
    assert aggregator.is_degraded("a")
    with pytest.raises(InvalidInputError):
        aggregator.set_auto_switch(True, max_errors=0)
    assert aggregator.max_errors_before_switch == 1
    assert aggregator.auto_switch is False


def test_update_api_key_reaches_the_adapter(make_http, clock) -> None:
    provider = CoinGeckoProvider(make_http({}))
    aggregator = build([provider], clock)

    aggregator.update_api_key("coingecko", "secret")
    assert provider.has_api_key
    aggregator.update_api_key("coingecko", None)
    assert not provider.has_api_key

    with pytest.raises(InvalidInputError):
        aggregator.update_api_key("kraken", "secret")


def test_update_api_key_rejects_keyless_provider(make_provider, clock) -> None:
    aggregator = build([make_provider("a")], clock)

    with pytest.raises(InvalidInputError, match="does not accept"):
        aggregator.update_api_key("a", "secret")


@pytest.mark.asyncio
async def test_returned_tables_do_not_alias_the_cache(make_provider, clock) -> None:
    provider = make_provider("a", {("BTC", "USD"): "62000"})
    aggregator = build([provider], clock)

    fresh = await aggregator.get_rates(["BTC"], ["USD"])
    fresh.add(Quote("ETH", "USD", Decimal(1), "caller", clock.now))
    cached = await aggregator.get_rates(["BTC"], ["USD"])
    cached.add(Quote("SOL", "USD", Decimal(1), "caller", clock.now))
    again = await aggregator.get_rates(["BTC"], ["USD"])

    assert [q.key for q in again] == [("BTC", "USD")]
    assert again.from_cache is True
    assert provider.calls == 1
