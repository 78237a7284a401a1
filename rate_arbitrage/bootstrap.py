from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Sequence

from rate_arbitrage.config import Settings, load_settings
from rate_arbitrage.core import HttpClientFactory, configure_logging
from rate_arbitrage.providers import BinanceProvider, CoinGeckoProvider, CryptoCompareProvider
from rate_arbitrage.providers.base import BaseProvider
from rate_arbitrage.services.arbitrage_engine import ArbitrageEngine
from rate_arbitrage.services.price_cache import PriceCache
from rate_arbitrage.services.rate_aggregator import RateAggregator
from rate_arbitrage.services.schemas import RateTable
from rate_arbitrage.venues import BybitVenue, KucoinVenue, OkxVenue, VenuePriceCollector, VenuePriceSimulator
from rate_arbitrage.venues.base import BaseVenue, VenuePriceSource


@dataclass
class AppComponents:
    settings: Settings
    http_factory: HttpClientFactory
    providers: Sequence[BaseProvider]
    cache: PriceCache[RateTable]
    aggregator: RateAggregator
    venue_source: VenuePriceSource
    engine: ArbitrageEngine

    async def close(self) -> None:
        for provider in self.providers:
            await provider.close()
        if isinstance(self.venue_source, VenuePriceCollector):
            await self.venue_source.close()
        await self.http_factory.close()


def create_providers(settings: Settings, http_factory: HttpClientFactory) -> list[BaseProvider]:
    providers: list[BaseProvider] = []
    for name in settings.aggregator.provider_order:
        config = settings.provider_config(name)
        if not config.enabled:
            continue
        kwargs: dict[str, Any] = {
            "timeout": config.timeout_sec,
            "api_key": config.api_key or None,
            "base_url": config.base_url,
        }
        match name:
            case "coingecko":
                providers.append(CoinGeckoProvider(http_factory, **kwargs))
            case "cryptocompare":
                providers.append(CryptoCompareProvider(http_factory, **kwargs))
            case "binance":
                providers.append(BinanceProvider(http_factory, **kwargs))
            case _:
                raise ValueError(f"Unsupported provider: {name}")
    return providers


def create_venues(settings: Settings, http_factory: HttpClientFactory) -> list[BaseVenue]:
    venues: list[BaseVenue] = []
    for name in settings.arbitrage.venues:
        match name:
            case "bybit":
                venues.append(BybitVenue(http_factory))
            case "okx":
                venues.append(OkxVenue(http_factory))
            case "kucoin":
                venues.append(KucoinVenue(http_factory))
            case _:
                raise ValueError(f"Unsupported venue: {name}")
    return venues


def create_venue_source(settings: Settings, http_factory: HttpClientFactory) -> VenuePriceSource:
    config = settings.arbitrage
    if config.simulate_venues:
        return VenuePriceSimulator(
            config.venues,
            reference_currency=config.reference_currency,
            spread_pct=config.simulated_spread_pct,
            seed=config.seed,
        )
    return VenuePriceCollector(create_venues(settings, http_factory))


def build_app_components(
    config_path: str | Path | None = None,
    overrides: dict[str, Any] | None = None,
    settings: Settings | None = None,
    setup_logging: bool = True,
) -> AppComponents:
    settings = settings or load_settings(config_path, overrides)
    if setup_logging:
        configure_logging(settings.logging)

    timeouts = [settings.provider_config(name).timeout_sec for name in settings.aggregator.provider_order]
    http_factory = HttpClientFactory(timeout=max(timeouts, default=10.0))
    providers = create_providers(settings, http_factory)
    aggregator_config = settings.aggregator
    cache: PriceCache[RateTable] = PriceCache(default_ttl=aggregator_config.cache_ttl_sec)
    aggregator = RateAggregator(
        providers,
        cache,
        known_symbols=settings.known_symbols,
        preferred_provider=aggregator_config.preferred_provider,
        auto_switch=aggregator_config.auto_switch,
        max_errors_before_switch=aggregator_config.max_errors_before_switch,
        stale_after=aggregator_config.stale_after_sec,
    )
    venue_source = create_venue_source(settings, http_factory)
    engine = ArbitrageEngine(settings, aggregator=aggregator, venue_source=venue_source)

    return AppComponents(
        settings=settings,
        http_factory=http_factory,
        providers=providers,
        cache=cache,
        aggregator=aggregator,
        venue_source=venue_source,
        engine=engine,
    )
