"""Protocol interfaces for the vault monitoring core."""
from .chain import ChainClient
from .decision import DecisionStrategy
from .notifier import Notifier
from .price_feed import PriceFeed

__all__ = ["ChainClient", "DecisionStrategy", "Notifier", "PriceFeed"]
