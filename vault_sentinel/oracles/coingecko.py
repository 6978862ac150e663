"""CoinGecko simple-price feed."""
import logging
import math
import ssl

import aiohttp
import certifi

from ..config import PriceFeedConfig
from ..errors import PriceFeedError
from ..models import PriceQuote

logger = logging.getLogger(__name__)


class CoinGeckoFeed:
    """Fetch USD prices and 24h change from the CoinGecko simple-price endpoint."""

    def __init__(self, config: PriceFeedConfig) -> None:
        self.url = config.url
        self.asset_ids = list(config.asset_ids)
        self.timeout = config.timeout

    async def fetch_prices(
        self, asset_ids: list[str] | None = None
    ) -> dict[str, PriceQuote]:
        """Fetch current prices.

        Raises PriceFeedError on transport failure, non-200 responses, or a
        missing, zero or non-finite ``usd`` value for any requested asset.
        """
        ids = asset_ids if asset_ids is not None else self.asset_ids
        if not ids:
            raise PriceFeedError("No assets requested")

        params = {
            "ids": ",".join(ids),
            "vs_currencies": "usd",
            "include_24hr_change": "true",
        }

        ssl_context = ssl.create_default_context(cafile=certifi.where())
        connector = aiohttp.TCPConnector(ssl=ssl_context)

        try:
            async with aiohttp.ClientSession(connector=connector) as session:
                async with session.get(
                    self.url,
                    params=params,
                    timeout=aiohttp.ClientTimeout(total=self.timeout),
                ) as response:
                    if response.status != 200:
                        raise PriceFeedError(
                            f"Price API returned HTTP {response.status}"
                        )
                    data = await response.json()
        except PriceFeedError:
            raise
        except Exception as e:
            raise PriceFeedError(f"Price API request failed: {e}") from e

        return self._parse(data, ids)

    @staticmethod
    def _parse(data: object, ids: list[str]) -> dict[str, PriceQuote]:
        if not isinstance(data, dict):
            raise PriceFeedError("Price API returned a malformed body")

        quotes: dict[str, PriceQuote] = {}
        for asset_id in ids:
            entry = data.get(asset_id) or {}
            usd = entry.get("usd")
            if (
                not isinstance(usd, (int, float))
                or isinstance(usd, bool)
                or not math.isfinite(usd)
                or usd <= 0
            ):
                raise PriceFeedError(f"No valid USD price for '{asset_id}'")
            change = entry.get("usd_24h_change")
            quotes[asset_id] = PriceQuote(
                asset_id=asset_id,
                usd=float(usd),
                usd_24h_change=float(change) if change is not None else None,
            )

        for asset_id, quote in quotes.items():
            logger.info("Price %s: $%.4f", asset_id, quote.usd)
        return quotes
