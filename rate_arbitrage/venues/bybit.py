from __future__ import annotations

from rate_arbitrage.venues.base import BaseVenue, VenueTicker


class BybitVenue(BaseVenue):
    """
    Bybit public spot tickers, no authentication.
    Endpoint: /v5/market/tickers?category=spot
    """
    name = "bybit"
    _REST_BASE = "https://api.bybit.com"

    async def fetch_tickers(self) -> list[VenueTicker]:
        data = await self._get_json("/v5/market/tickers", params={"category": "spot"})
        if not isinstance(data, dict):
            raise self._malformed(f"expected object, got {type(data).__name__}")
        result = data.get("result", {}) or {}
        entries = result.get("list", []) if isinstance(result, dict) else []
        if not isinstance(entries, list):
            raise self._malformed("result.list is not a list")
        tickers: list[VenueTicker] = []
        for item in entries:
            if not isinstance(item, dict):
                continue
            symbol = str(item.get("symbol", "")).upper()
            if not symbol:
                continue
            tickers.append(
                VenueTicker(
                    symbol=symbol,
                    bid=self._to_decimal(item.get("bid1Price")),
                    ask=self._to_decimal(item.get("ask1Price")),
                )
            )
        return tickers
