from __future__ import annotations

from typing import Mapping


class RateArbitrageError(Exception):
    """Base error for the rate arbitrage package."""


class ProviderError(RateArbitrageError):
    """Raised when a single price provider attempt fails.

    Transport failures, non-success statuses and malformed payloads all end up
    here; the aggregator treats them identically.
    """

    def __init__(self, provider: str, reason: str) -> None:
        super().__init__(f"{provider}: {reason}")
        self.provider = provider
        self.reason = reason


class AggregationError(RateArbitrageError):
    """Raised when every configured provider failed for a request."""

    def __init__(self, message: str, errors: Mapping[str, ProviderError] | None = None) -> None:
        super().__init__(message)
        self.errors: dict[str, ProviderError] = dict(errors or {})

    def __str__(self) -> str:
        base = super().__str__()
        if not self.errors:
            return base
        details = "; ".join(f"{name}={err.reason}" for name, err in self.errors.items())
        return f"{base} ({details})"


class InvalidInputError(RateArbitrageError, ValueError):
    """Raised for non-positive prices, empty sets or unknown symbols."""
