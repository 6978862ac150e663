"""Price oracle implementations."""
from .coingecko import CoinGeckoFeed

__all__ = ["CoinGeckoFeed"]
