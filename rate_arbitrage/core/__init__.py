from .exceptions import AggregationError, InvalidInputError, ProviderError, RateArbitrageError
from .http import HttpClientFactory
from .logging import configure_logging

__all__ = [
    "configure_logging",
    "HttpClientFactory",
    "RateArbitrageError",
    "ProviderError",
    "AggregationError",
    "InvalidInputError",
]
