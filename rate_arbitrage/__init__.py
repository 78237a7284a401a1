"""Multi-source crypto rate aggregation and arbitrage detection."""

__version__ = "0.1.0"
