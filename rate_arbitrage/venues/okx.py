from __future__ import annotations

from rate_arbitrage.venues.base import VENUE_QUOTE_ASSET, BaseVenue, VenueTicker


class OkxVenue(BaseVenue):
    name = "okx"
    _REST_BASE = "https://www.okx.com"

    def symbol_for(self, asset: str, quote: str = VENUE_QUOTE_ASSET) -> str:
        return f"{asset.upper()}-{quote.upper()}"

    async def fetch_tickers(self) -> list[VenueTicker]:
        data = await self._get_json("/api/v5/market/tickers", params={"instType": "SPOT"})
        if not isinstance(data, dict) or not isinstance(data.get("data"), list):
            raise self._malformed("missing data list")
        if str(data.get("code", "0")) != "0":
            raise self._malformed(f"error code {data.get('code')}: {data.get('msg', '')}")
        return [
            VenueTicker(
                symbol=str(item.get("instId", "")).upper(),
                bid=self._to_decimal(item.get("bidPx")),
                ask=self._to_decimal(item.get("askPx")),
            )
            for item in data["data"]
            if isinstance(item, dict) and item.get("instId")
        ]
