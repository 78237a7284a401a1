from .base import BaseProvider, PriceProvider
from .binance import BinanceProvider
from .coingecko import CoinGeckoProvider
from .cryptocompare import CryptoCompareProvider

__all__ = [
    "PriceProvider",
    "BaseProvider",
    "CoinGeckoProvider",
    "CryptoCompareProvider",
    "BinanceProvider",
]
