from __future__ import annotations

from typing import Literal, Sequence

from pydantic import BaseModel, ConfigDict, Field, PositiveFloat, PositiveInt, model_validator

ProviderName = Literal["coingecko", "cryptocompare", "binance"]
VenueName = Literal["bybit", "okx", "kucoin"]

DEFAULT_ASSETS = ("BTC", "ETH", "XRP", "LTC", "BCH", "BNB", "DOT", "LINK", "ADA", "XLM", "SOL", "DOGE", "AVAX", "USDT")
DEFAULT_CURRENCIES = ("USD", "EUR", "GBP", "JPY", "BRL", "CAD", "AUD", "CHF")


class ProviderConfig(BaseModel):
    enabled: bool = True
    timeout_sec: PositiveFloat = Field(default=10.0)
    api_key: str = Field(default="", min_length=0)
    base_url: str | None = None


class FeeConfig(BaseModel):
    taker: float = Field(default=0.001, ge=0.0, lt=1.0)
    maker: float = Field(default=0.001, ge=0.0, lt=1.0)


class AggregatorConfig(BaseModel):
    cache_ttl_minutes: PositiveFloat = Field(default=5.0)
    stale_after_sec: PositiveFloat = Field(default=300.0, description="Quotes older than this never feed inverse/derived rates")
    max_errors_before_switch: PositiveInt = Field(default=3)
    auto_switch: bool = Field(default=True, description="Order providers by consecutive errors instead of configured order")
    provider_order: Sequence[ProviderName] = Field(default_factory=lambda: ["coingecko", "cryptocompare", "binance"])
    preferred_provider: ProviderName | None = "coingecko"

    @property
    def cache_ttl_sec(self) -> float:
        return self.cache_ttl_minutes * 60.0


class ArbitrageConfig(BaseModel):
    min_profit_pct: float = Field(default=1.0, ge=0.0)
    start_amount: PositiveFloat = Field(default=1000.0)
    universe: Sequence[str] = Field(default_factory=lambda: ["BTC", "ETH", "USDT", "BNB", "SOL"])
    reference_currency: str = "USD"
    venues: Sequence[VenueName] = Field(default_factory=lambda: ["bybit", "okx", "kucoin"])
    simulate_venues: bool = Field(default=True, description="Build the venue matrix from aggregated rates instead of live tickers")
    simulated_spread_pct: float = Field(default=2.0, ge=0.0, lt=100.0)
    seed: int | None = None


class LoggingConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    level: str = Field(default="INFO")
    json_format: bool = Field(default=False, alias="json")


class Settings(BaseModel):
    assets: Sequence[str] = Field(default_factory=lambda: list(DEFAULT_ASSETS))
    currencies: Sequence[str] = Field(default_factory=lambda: list(DEFAULT_CURRENCIES))
    providers: dict[ProviderName, ProviderConfig] = Field(default_factory=lambda: {
        "coingecko": ProviderConfig(),
        "cryptocompare": ProviderConfig(),
        "binance": ProviderConfig(),
    })
    aggregator: AggregatorConfig = Field(default_factory=AggregatorConfig)
    arbitrage: ArbitrageConfig = Field(default_factory=ArbitrageConfig)
    fees: dict[VenueName, FeeConfig] = Field(default_factory=dict)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @model_validator(mode="after")
    def _normalize_symbols(self) -> "Settings":
        self.assets = [symbol.upper() for symbol in self.assets]
        self.currencies = [symbol.upper() for symbol in self.currencies]
        self.arbitrage.universe = [symbol.upper() for symbol in self.arbitrage.universe]
        self.arbitrage.reference_currency = self.arbitrage.reference_currency.upper()
        return self

    def provider_config(self, name: str) -> ProviderConfig:
        return self.providers.get(name, ProviderConfig())  # type: ignore[call-overload]

    def taker_fee(self, venue: str) -> float:
        fee = self.fees.get(venue)  # type: ignore[call-overload]
        return fee.taker if fee else FeeConfig().taker

    @property
    def known_symbols(self) -> set[str]:
        return set(self.assets) | set(self.currencies)
