from __future__ import annotations

from rate_arbitrage.venues.base import VENUE_QUOTE_ASSET, BaseVenue, VenueTicker


class KucoinVenue(BaseVenue):
    """
    KuCoin public tickers.
    Endpoint: /api/v1/market/allTickers, prices come back as strings.
    """
    name = "kucoin"
    _REST_BASE = "https://api.kucoin.com"

    def symbol_for(self, asset: str, quote: str = VENUE_QUOTE_ASSET) -> str:
        return f"{asset.upper()}-{quote.upper()}"

    async def fetch_tickers(self) -> list[VenueTicker]:
        data = await self._get_json("/api/v1/market/allTickers")
        payload = data.get("data") if isinstance(data, dict) else None
        entries = payload.get("ticker") if isinstance(payload, dict) else None
        if not isinstance(entries, list):
            raise self._malformed("missing data.ticker list")
        if not entries:
            self._log.warning("KuCoin API returned empty ticker array")
        return [
            VenueTicker(
                symbol=str(item.get("symbol", "")).upper(),
                bid=self._to_decimal(item.get("buy")),
                ask=self._to_decimal(item.get("sell")),
            )
            for item in entries
            if isinstance(item, dict) and item.get("symbol")
        ]
