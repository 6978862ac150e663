"""Per-service monitoring state: last seen prices and TVL history."""
from __future__ import annotations

import logging
from collections import deque
from datetime import datetime, timezone
from typing import Mapping

from ..models import PriceQuote

logger = logging.getLogger(__name__)


class MonitoringState:
    """Mutable observations owned by one MonitoringService instance."""

    def __init__(self, history_size: int = 2880) -> None:
        self.last_prices: dict[str, float] = {}
        self.last_check_at: datetime | None = None
        self._pending_price_alert: str | None = None
        self._tvl: deque[tuple[datetime, int]] = deque(maxlen=history_size)

    def observe_prices(
        self,
        quotes: Mapping[str, PriceQuote],
        alert_pct: float,
        now: datetime | None = None,
    ) -> dict[str, float | None]:
        """Record ``quotes`` and return the % move per asset since the last observation.

        A move whose magnitude exceeds ``alert_pct`` leaves a pending alert.
        """
        now = now or datetime.now(timezone.utc)
        moves: dict[str, float | None] = {}
        flagged: list[str] = []

        for asset_id, quote in quotes.items():
            previous = self.last_prices.get(asset_id)
            if previous:
                move = (quote.usd - previous) / previous * 100
                moves[asset_id] = move
                if abs(move) > alert_pct:
                    flagged.append(
                        f"{asset_id} moved {move:+.2f}% (${previous:,.2f} → ${quote.usd:,.2f})"
                    )
            else:
                moves[asset_id] = None
            self.last_prices[asset_id] = quote.usd

        if flagged:
            since = (
                self.last_check_at.strftime("%Y-%m-%d %H:%M:%S UTC")
                if self.last_check_at
                else "last check"
            )
            self._pending_price_alert = (
                f"Price move above {alert_pct:g}% since {since}:\n" + "\n".join(flagged)
            )
            logger.warning("Price alert: %s", "; ".join(flagged))

        self.last_check_at = now
        return moves

    def take_price_alert(self) -> str | None:
        alert, self._pending_price_alert = self._pending_price_alert, None
        return alert

    def record_tvl(self, total_assets: int, now: datetime | None = None) -> None:
        self._tvl.append((now or datetime.now(timezone.utc), total_assets))

    def tvl_snapshots(self) -> list[tuple[datetime, int]]:
        return list(self._tvl)
