"""Risk engine — pure functions over on-chain snapshots.

Nothing here performs I/O. Amounts are 10^18 fixed-point integers; ratios are
``Decimal`` so the band boundaries compare exactly.
"""
from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Iterable, Sequence

from .models import ApyEstimate, RiskAssessment, RiskLevel, StrategyKind, StrategyState

LTV_WARNING = Decimal("0.70")
LTV_CRITICAL = Decimal("0.80")

SECONDS_PER_YEAR = 365 * 24 * 60 * 60
BPS = 10_000

INFINITE_LTV = Decimal("Infinity")


def compute_ltv(deposited: int, borrowed: int) -> Decimal:
    """borrowed / deposited; infinite when nothing is deposited."""
    if deposited < 0 or borrowed < 0:
        raise ValueError("amounts must be non-negative")
    if deposited == 0:
        return INFINITE_LTV
    return Decimal(borrowed) / Decimal(deposited)


def classify(ratio: Decimal | float) -> RiskLevel:
    """Map an LTV ratio onto its band. Each band is closed on its lower end."""
    ratio = ratio if isinstance(ratio, Decimal) else Decimal(str(ratio))
    if ratio.is_nan() or ratio >= LTV_CRITICAL:
        return RiskLevel.CRITICAL
    if ratio >= LTV_WARNING:
        return RiskLevel.WARNING
    return RiskLevel.SAFE


def assess(state: StrategyState, now: datetime | None = None) -> RiskAssessment:
    ltv = compute_ltv(state.deposited_amount, state.borrowed_amount)
    return RiskAssessment(
        loan_to_value=ltv,
        classification=classify(ltv),
        computed_at=now or datetime.now(timezone.utc),
    )


def _as_epoch(ts: datetime | float) -> float:
    return ts.timestamp() if isinstance(ts, datetime) else float(ts)


def compute_apy(snapshots: Sequence[tuple[datetime | float, int]]) -> ApyEstimate:
    """Annualise the relative growth of totalAssets between first and last snapshot.

    The growth over the elapsed window is extrapolated linearly to a 365-day
    year. Fewer than two snapshots, a non-positive window, or a zero starting
    balance yield an estimate with ``apy=None``.
    """
    count = len(snapshots)
    if count < 2:
        return ApyEstimate(apy=None, snapshots=count)

    start_ts, start_assets = snapshots[0]
    end_ts, end_assets = snapshots[-1]
    elapsed = _as_epoch(end_ts) - _as_epoch(start_ts)
    if elapsed <= 0 or start_assets <= 0:
        return ApyEstimate(apy=None, snapshots=count)

    growth = Decimal(end_assets - start_assets) / Decimal(start_assets)
    apy = growth * Decimal(SECONDS_PER_YEAR) / Decimal(str(elapsed))
    return ApyEstimate(apy=float(apy), snapshots=count, elapsed_seconds=elapsed)


def simulate_yield(principal: int, apr: float, days: int) -> dict[str, int]:
    """Project ``principal`` forward ``days`` days at ``apr`` compounded daily."""
    if days < 0:
        raise ValueError("days must be non-negative")
    daily = Decimal(str(apr)) / Decimal(365)
    final = Decimal(principal) * (Decimal(1) + daily) ** days
    final_int = int(final)
    return {"initial": principal, "final": final_int, "profit": final_int - principal}


def allocation_bps(states: Iterable[StrategyState]) -> dict[str, int]:
    """Current share of each strategy in total pool balance, in basis points."""
    states = list(states)
    total = sum(s.pool_balance for s in states)
    if total == 0:
        return {s.strategy_id: 0 for s in states}
    return {s.strategy_id: s.pool_balance * BPS // total for s in states}


def max_allocation_drift(current: dict[str, int], target: dict[str, int]) -> int:
    """Largest absolute difference between current and target weights (bps)."""
    keys = set(current) | set(target)
    if not keys:
        return 0
    return max(abs(current.get(k, 0) - target.get(k, 0)) for k in keys)


def accrued_yield(state: StrategyState) -> int:
    """Pool balance above principal; leverage strategies report none."""
    if state.kind is not StrategyKind.POOL:
        return 0
    return max(0, state.pool_balance - state.deposited_amount)
