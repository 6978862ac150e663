"""Price feed protocol — off-chain USD price source."""
from typing import Protocol

from ..models import PriceQuote


class PriceFeed(Protocol):
    """Abstract interface for fetching asset prices."""

    async def fetch_prices(
        self, asset_ids: list[str] | None = None
    ) -> dict[str, PriceQuote]: ...
