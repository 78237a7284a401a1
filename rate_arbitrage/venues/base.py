from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Protocol, Sequence

from rate_arbitrage.providers.base import BaseProvider
from rate_arbitrage.services.schemas import RateTable

VENUE_QUOTE_ASSET = "USDT"


@dataclass(slots=True)
class VenueTicker:
    symbol: str
    bid: Decimal
    ask: Decimal

    @property
    def mid(self) -> Decimal:
        return (self.bid + self.ask) / 2


class VenuePriceSource(Protocol):
    async def collect(self, assets: Sequence[str], reference: RateTable | None = None) -> dict[str, dict[str, Decimal]]:
        """Return ``asset -> venue -> price``."""
        ...


class BaseVenue(BaseProvider):
    """Spot ticker endpoint of one trading venue, read once per call."""
    _log_namespace = "rate_arbitrage.venues"

    def symbol_for(self, asset: str, quote: str = VENUE_QUOTE_ASSET) -> str:
        return f"{asset.upper()}{quote.upper()}"

    async def fetch_tickers(self) -> list[VenueTicker]:
        raise NotImplementedError

    async def fetch_prices(self, assets: Sequence[str], quote: str = VENUE_QUOTE_ASSET) -> dict[str, Decimal]:
        """Mid price per asset; assets the venue does not list are left out."""
        wanted = {self.symbol_for(asset, quote): asset.upper() for asset in assets if asset.upper() != quote.upper()}
        if not wanted:
            self._log.warning("No symbols to watch")
            return {}
        prices: dict[str, Decimal] = {}
        for ticker in await self.fetch_tickers():
            asset = wanted.get(ticker.symbol)
            if asset is None:
                continue
            if ticker.bid <= 0 or ticker.ask <= 0:
                continue
            prices[asset] = ticker.mid
        self._log.info("Fetched %d/%d prices from %s", len(prices), len(wanted), self.name)
        return prices

    async def check_availability(self) -> bool:
        return bool(await self.fetch_tickers())
