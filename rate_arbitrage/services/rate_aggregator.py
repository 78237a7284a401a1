from __future__ import annotations

import asyncio
import logging
import statistics
import time
from collections.abc import Sequence
from dataclasses import dataclass, replace
from decimal import Decimal
from typing import TYPE_CHECKING, Callable

from rate_arbitrage.core.exceptions import AggregationError, InvalidInputError, ProviderError
from rate_arbitrage.services.price_cache import PriceCache, make_cache_key
from rate_arbitrage.services.schemas import (
    ProviderOutcome,
    ProviderState,
    RateTable,
    SourceComparison,
)

if TYPE_CHECKING:
    from rate_arbitrage.providers.base import PriceProvider

log = logging.getLogger(__name__)

_CACHE_PREFIX = "rates"


@dataclass
class ProviderStatus:
    """Availability probe result for one provider."""
    name: str
    available: bool
    reason: str
    requires_key: bool
    has_key: bool
    consecutive_errors: int
    degraded: bool


class RateAggregator:
    """Fetches rate tables from providers in reliability order with fallback.

    Providers are tried one at a time. Each attempt is bounded by the
    provider's own timeout; a timeout counts as an ordinary failure. Error
    counters live for the process lifetime and only a later success resets
    them. Calls for the same query are serialized by a per-key lock so an
    overlapping caller reads the entry the first one cached.
    """

    def __init__(
        self,
        providers: Sequence[PriceProvider],
        cache: PriceCache[RateTable],
        *,
        known_symbols: set[str] | None = None,
        provider_order: Sequence[str] | None = None,
        preferred_provider: str | None = None,
        auto_switch: bool = True,
        max_errors_before_switch: int = 3,
        cache_ttl: float | None = None,
        stale_after: float | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if max_errors_before_switch < 1:
            raise ValueError("max_errors_before_switch must be at least 1")
        self._providers: dict[str, PriceProvider] = {}
        self._states: dict[str, ProviderState] = {}
        self._order: list[str] = []
        for provider in providers:
            self._register(provider)
        if provider_order:
            self.set_provider_order(provider_order)
        self._cache = cache
        self._known_symbols = {s.upper() for s in known_symbols} if known_symbols else None
        self._preferred: str | None = None
        if preferred_provider and preferred_provider in self._providers:
            self._preferred = preferred_provider
        self._auto_switch = auto_switch
        self._max_errors = max_errors_before_switch
        self._cache_ttl = cache_ttl
        self._stale_after = stale_after
        self._clock = clock
        self._key_locks: dict[str, asyncio.Lock] = {}
        self._last_provider_used: str | None = None

    # -- configuration -----------------------------------------------------

    @property
    def last_provider_used(self) -> str | None:
        return self._last_provider_used

    @property
    def provider_order(self) -> list[str]:
        return list(self._order)

    @property
    def preferred_provider(self) -> str | None:
        return self._preferred

    @property
    def auto_switch(self) -> bool:
        return self._auto_switch

    @property
    def max_errors_before_switch(self) -> int:
        return self._max_errors

    def set_auto_switch(self, enabled: bool, max_errors: int | None = None) -> None:
        if max_errors is not None:
            if max_errors < 1:
                raise InvalidInputError(f"max_errors must be at least 1, got {max_errors}")
            self._max_errors = max_errors
        self._auto_switch = enabled
        log.info(
            "Automatic reliability ordering %s (degraded after %d errors)",
            "enabled" if enabled else "disabled",
            self._max_errors,
        )

    def reset_error_counts(self) -> None:
        """Clear every provider's consecutive error count; last outcomes are kept."""
        for state in self._states.values():
            state.consecutive_errors = 0
        log.info("Provider error counters reset")

    def update_api_key(self, provider_id: str, api_key: str | None) -> None:
        provider = self._providers.get(provider_id)
        if provider is None:
            raise InvalidInputError(f"Unknown provider: {provider_id}")
        set_api_key = getattr(provider, "set_api_key", None)
        if set_api_key is None:
            raise InvalidInputError(f"Provider {provider_id} does not accept API keys")
        set_api_key(api_key)
        log.info("API key %s for %s", "updated" if api_key else "cleared", provider_id)

    def set_preferred_provider(self, provider_id: str) -> None:
        if provider_id not in self._providers:
            raise InvalidInputError(f"Unknown provider: {provider_id}")
        self._preferred = provider_id
        log.info("Preferred provider set to %s", provider_id)

    def set_provider_order(self, order: Sequence[str]) -> None:
        """Replace the configured order; providers left out keep their relative order at the end."""
        if not order:
            raise InvalidInputError("Provider order must not be empty")
        unknown = [name for name in order if name not in self._providers]
        if unknown:
            raise InvalidInputError(f"Unknown providers in order: {', '.join(unknown)}")
        head = list(dict.fromkeys(order))
        self._order = head + [name for name in self._order if name not in head]

    def add_provider(self, provider: PriceProvider, priority: int | None = None) -> None:
        """Register a provider; ``priority`` is its index in the configured order (0 = first)."""
        if provider.name in self._providers:
            self._order.remove(provider.name)
        self._register(provider)
        if priority is not None:
            self._order.remove(provider.name)
            self._order.insert(max(priority, 0), provider.name)
        log.info("Provider %s registered at position %d", provider.name, self._order.index(provider.name))

    def remove_provider(self, provider_id: str) -> PriceProvider:
        provider = self._providers.pop(provider_id, None)
        if provider is None:
            raise InvalidInputError(f"Unknown provider: {provider_id}")
        self._order.remove(provider_id)
        del self._states[provider_id]
        if self._preferred == provider_id:
            self._preferred = None
        log.info("Provider %s removed", provider_id)
        return provider

    def provider_states(self) -> dict[str, ProviderState]:
        return {name: replace(self._states[name]) for name in self._order}

    def is_degraded(self, provider_id: str) -> bool:
        return self._states[provider_id].is_degraded(self._max_errors)

    def _register(self, provider: PriceProvider) -> None:
        self._providers[provider.name] = provider
        self._states.setdefault(provider.name, ProviderState(id=provider.name))
        self._order.append(provider.name)

    # -- rates -------------------------------------------------------------

    def attempt_order(self) -> list[str]:
        if self._auto_switch:
            # sorted() is stable, so ties keep the configured order
            return sorted(self._order, key=lambda name: self._states[name].consecutive_errors)
        if self._preferred:
            return [self._preferred] + [name for name in self._order if name != self._preferred]
        return list(self._order)

    async def get_rates(
        self,
        assets: Sequence[str],
        currencies: Sequence[str],
        force_refresh: bool = False,
    ) -> RateTable:
        wanted_assets, wanted_currencies = self._validate_query(assets, currencies)
        key = make_cache_key(_CACHE_PREFIX, wanted_assets, wanted_currencies)

        lock = self._key_locks.setdefault(key, asyncio.Lock())
        async with lock:
            if not force_refresh:
                cached = self._cache.get(key)
                if cached is not None:
                    log.debug("Cache hit for %s", key)
                    return cached.copy(from_cache=True)

            order = self.attempt_order()
            if not order:
                raise AggregationError("No price providers configured")
            log.debug("Fetching %s using provider order %s", key, order)

            errors: dict[str, ProviderError] = {}
            for name in order:
                provider = self._providers.get(name)
                if provider is None:
                    continue
                try:
                    table = await self._attempt(provider, wanted_assets, wanted_currencies)
                except ProviderError as exc:
                    errors[name] = exc
                    self._record_failure(name, exc)
                    continue

                self._record_success(name)
                table.stale_after = self._stale_after
                table.from_cache = False
                self._cache.set(key, table.copy(), self._cache_ttl)
                if table.missing:
                    log.info("%s returned partial data, %d pairs missing", name, len(table.missing))
                return table

        log.error("All %d providers failed for %s", len(errors), key)
        raise AggregationError(f"All price providers failed for {key}", errors)

    async def _attempt(self, provider: PriceProvider, assets: list[str], currencies: list[str]) -> RateTable:
        try:
            return await asyncio.wait_for(provider.fetch(assets, currencies), timeout=provider.timeout)
        except asyncio.TimeoutError as exc:
            raise ProviderError(provider.name, f"timed out after {provider.timeout:.1f}s") from exc

    def _record_success(self, name: str) -> None:
        state = self._states[name]
        if state.consecutive_errors:
            log.info("Provider %s recovered after %d consecutive errors", name, state.consecutive_errors)
        state.consecutive_errors = 0
        state.last_outcome = ProviderOutcome.SUCCESS
        state.last_attempt_at = self._clock()
        state.last_error = None
        self._last_provider_used = name

    def _record_failure(self, name: str, exc: ProviderError) -> None:
        state = self._states[name]
        state.consecutive_errors += 1
        state.last_outcome = ProviderOutcome.FAILURE
        state.last_attempt_at = self._clock()
        state.last_error = exc.reason
        if state.consecutive_errors == self._max_errors:
            log.warning(
                "Provider %s reached %d consecutive errors, deprioritizing it",
                name,
                state.consecutive_errors,
            )
        else:
            log.warning("Provider %s failed (error #%d): %s", name, state.consecutive_errors, exc.reason)

    def _validate_query(self, assets: Sequence[str], currencies: Sequence[str]) -> tuple[list[str], list[str]]:
        if not assets:
            raise InvalidInputError("At least one asset is required")
        if not currencies:
            raise InvalidInputError("At least one quote currency is required")
        wanted_assets = list(dict.fromkeys(a.upper() for a in assets))
        wanted_currencies = list(dict.fromkeys(c.upper() for c in currencies))
        if self._known_symbols is not None:
            unknown = [s for s in wanted_assets + wanted_currencies if s not in self._known_symbols]
            if unknown:
                raise InvalidInputError(f"Unknown symbols: {', '.join(dict.fromkeys(unknown))}")
        return wanted_assets, wanted_currencies

    # -- diagnostics -------------------------------------------------------

    async def compare_sources(self, assets: Sequence[str], currencies: Sequence[str]) -> list[SourceComparison]:
        """Query every provider concurrently and summarize the spread of their quotes per pair."""
        wanted_assets, wanted_currencies = self._validate_query(assets, currencies)
        names = list(self._order)
        if not names:
            raise AggregationError("No price providers configured")

        results = await asyncio.gather(
            *(self._attempt(self._providers[name], wanted_assets, wanted_currencies) for name in names),
            return_exceptions=True,
        )

        tables: dict[str, RateTable] = {}
        errors: dict[str, ProviderError] = {}
        for name, result in zip(names, results):
            if isinstance(result, ProviderError):
                errors[name] = result
                self._record_failure(name, result)
            elif isinstance(result, BaseException):
                raise result
            else:
                tables[name] = result
                self._record_success(name)

        if not tables:
            raise AggregationError("All price providers failed during comparison", errors)

        comparisons: list[SourceComparison] = []
        for asset in wanted_assets:
            for currency in wanted_currencies:
                prices: dict[str, Decimal] = {}
                for name, table in tables.items():
                    quote = table.get(asset, currency)
                    if quote is not None:
                        prices[name] = quote.price
                if prices:
                    comparisons.append(_summarize(asset, currency, prices))
        log.info("Compared %d pairs across %d providers (%d failed)", len(comparisons), len(tables), len(errors))
        return comparisons

    async def check_providers(self) -> dict[str, ProviderStatus]:
        results: dict[str, ProviderStatus] = {}
        for name in self._order:
            provider = self._providers[name]
            state = self._states[name]
            try:
                available = await asyncio.wait_for(provider.check_availability(), timeout=provider.timeout)
                reason = "OK" if available else "unexpected response"
            except ProviderError as exc:
                available, reason = False, exc.reason
            except asyncio.TimeoutError:
                available, reason = False, f"timed out after {provider.timeout:.1f}s"
            results[name] = ProviderStatus(
                name=name,
                available=available,
                reason=reason,
                requires_key=getattr(provider, "requires_api_key", False),
                has_key=getattr(provider, "has_api_key", False),
                consecutive_errors=state.consecutive_errors,
                degraded=state.is_degraded(self._max_errors),
            )
        return results


def _summarize(asset: str, currency: str, prices: dict[str, Decimal]) -> SourceComparison:
    values = list(prices.values())
    return SourceComparison(
        asset=asset,
        currency=currency,
        prices=prices,
        average=statistics.mean(values),
        median=statistics.median(values),
        minimum=min(values),
        maximum=max(values),
        stdev=statistics.pstdev(values),
    )
