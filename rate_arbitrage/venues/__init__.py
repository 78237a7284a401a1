from .base import BaseVenue, VenuePriceSource, VenueTicker
from .bybit import BybitVenue
from .collector import VenuePriceCollector
from .kucoin import KucoinVenue
from .okx import OkxVenue
from .simulator import VenuePriceSimulator

__all__ = [
    "BaseVenue",
    "VenuePriceSource",
    "VenueTicker",
    "BybitVenue",
    "OkxVenue",
    "KucoinVenue",
    "VenuePriceCollector",
    "VenuePriceSimulator",
]
