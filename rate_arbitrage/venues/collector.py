from __future__ import annotations

import asyncio
import logging
from decimal import Decimal
from typing import Sequence

from rate_arbitrage.core.exceptions import AggregationError, ProviderError
from rate_arbitrage.services.schemas import RateTable
from rate_arbitrage.venues.base import VENUE_QUOTE_ASSET, BaseVenue

log = logging.getLogger(__name__)


class VenuePriceCollector:
    """Reads every venue concurrently and builds an ``asset -> venue -> price`` matrix.

    A venue that fails is dropped from this round; the call only fails when
    no venue answered.
    """

    def __init__(self, venues: Sequence[BaseVenue], quote: str = VENUE_QUOTE_ASSET) -> None:
        self._venues = list(venues)
        self._quote = quote

    @property
    def venue_names(self) -> list[str]:
        return [venue.name for venue in self._venues]

    async def collect(self, assets: Sequence[str], reference: RateTable | None = None) -> dict[str, dict[str, Decimal]]:
        if not self._venues:
            return {}
        results = await asyncio.gather(
            *(self._fetch(venue, assets) for venue in self._venues),
            return_exceptions=True,
        )

        matrix: dict[str, dict[str, Decimal]] = {}
        errors: dict[str, ProviderError] = {}
        for venue, result in zip(self._venues, results):
            if isinstance(result, ProviderError):
                log.warning("Venue %s unavailable this round: %s", venue.name, result.reason)
                errors[venue.name] = result
                continue
            if isinstance(result, BaseException):
                raise result
            for asset, price in result.items():
                matrix.setdefault(asset, {})[venue.name] = price

        if len(errors) == len(self._venues):
            raise AggregationError("No venue returned prices", errors)
        log.info("Collected venue prices for %d assets from %d venues", len(matrix), len(self._venues) - len(errors))
        return matrix

    async def _fetch(self, venue: BaseVenue, assets: Sequence[str]) -> dict[str, Decimal]:
        try:
            return await asyncio.wait_for(venue.fetch_prices(assets, self._quote), timeout=venue.timeout)
        except asyncio.TimeoutError as exc:
            raise ProviderError(venue.name, f"timed out after {venue.timeout:.1f}s") from exc

    async def close(self) -> None:
        await asyncio.gather(*(venue.close() for venue in self._venues), return_exceptions=True)
