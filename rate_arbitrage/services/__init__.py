from .arbitrage_engine import ArbitrageEngine
from .price_cache import PriceCache
from .rate_aggregator import ProviderStatus, RateAggregator
from .schemas import (
    ArbitrageReport,
    CrossExchangeOpportunity,
    Opportunity,
    ProviderState,
    Quote,
    RateTable,
    TriangularOpportunity,
)

__all__ = [
    "ArbitrageEngine",
    "PriceCache",
    "RateAggregator",
    "ProviderStatus",
    "ArbitrageReport",
    "CrossExchangeOpportunity",
    "Opportunity",
    "ProviderState",
    "Quote",
    "RateTable",
    "TriangularOpportunity",
]
