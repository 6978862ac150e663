"""Data models — all frozen (immutable)."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from .units import format_units


class RiskLevel(str, Enum):
    SAFE = "safe"
    WARNING = "warning"
    CRITICAL = "critical"


class StrategyKind(str, Enum):
    POOL = "pool"
    LEVERAGE = "leverage"


@dataclass(frozen=True)
class VaultState:
    """Snapshot of the vault's global accounting, 10^18 fixed point."""

    total_assets: int
    total_supply: int
    total_managed_assets: int

    def raw(self) -> dict[str, str]:
        return {
            "totalAssets": str(self.total_assets),
            "totalSupply": str(self.total_supply),
            "totalManagedAssets": str(self.total_managed_assets),
        }

    def human(self) -> dict[str, str]:
        return {
            "totalAssets": format_units(self.total_assets),
            "totalSupply": format_units(self.total_supply),
            "totalManagedAssets": format_units(self.total_managed_assets),
        }


@dataclass(frozen=True)
class StrategyState:
    """Snapshot of a single strategy, 10^18 fixed point."""

    strategy_id: str
    deposited_amount: int
    borrowed_amount: int
    pool_balance: int
    name: str = ""
    kind: StrategyKind = StrategyKind.POOL

    def raw(self) -> dict[str, str]:
        return {
            "deposited": str(self.deposited_amount),
            "borrowed": str(self.borrowed_amount),
            "poolBalance": str(self.pool_balance),
        }

    def human(self) -> dict[str, str]:
        return {
            "deposited": format_units(self.deposited_amount),
            "borrowed": format_units(self.borrowed_amount),
            "poolBalance": format_units(self.pool_balance),
        }


@dataclass(frozen=True)
class RiskAssessment:
    """LTV and its classification. ``loan_to_value`` is infinite when nothing is deposited."""

    loan_to_value: Decimal
    classification: RiskLevel
    computed_at: datetime

    @property
    def safe(self) -> bool:
        return self.classification is RiskLevel.SAFE

    @property
    def warning(self) -> bool:
        return self.classification is RiskLevel.WARNING

    @property
    def critical(self) -> bool:
        return self.classification is RiskLevel.CRITICAL

    def to_dict(self) -> dict[str, Any]:
        ltv = self.loan_to_value
        return {
            "ltv": "Infinity" if ltv.is_infinite() else str(ltv),
            "classification": self.classification.value,
            "safe": self.safe,
            "warning": self.warning,
            "critical": self.critical,
            "computedAt": self.computed_at.isoformat(),
        }


@dataclass(frozen=True)
class ApyEstimate:
    """Annualised growth of totalAssets; ``apy`` is None when data is insufficient."""

    apy: float | None
    snapshots: int
    elapsed_seconds: float = 0.0

    @property
    def insufficient_data(self) -> bool:
        return self.apy is None

    def to_dict(self) -> dict[str, Any]:
        if self.apy is None:
            return {"apy": "insufficient data", "snapshots": self.snapshots}
        return {
            "apy": self.apy,
            "apyPct": f"{self.apy * 100:.2f}%",
            "snapshots": self.snapshots,
            "elapsedSeconds": self.elapsed_seconds,
        }


@dataclass(frozen=True)
class PriceQuote:
    """USD price for one asset as reported by the price feed."""

    asset_id: str
    usd: float
    usd_24h_change: float | None = None


@dataclass(frozen=True)
class UnsignedTransaction:
    """Encoded call for an external signer. Never signed or sent by this service."""

    to: str
    data: str
    value: str = "0"

    def to_dict(self) -> dict[str, str]:
        return {"to": self.to, "data": self.data, "value": self.value}


@dataclass(frozen=True)
class TxReceipt:
    """Receipt for an operator-signed transaction."""

    hash: str
    status: str
    block_number: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"hash": self.hash, "status": self.status, "blockNumber": self.block_number}


@dataclass(frozen=True)
class CycleReport:
    """Outcome of a successful full monitoring cycle."""

    timestamp: datetime
    price_section: str
    leverage_section: str
    risk_section: str
    vault_section: str
    actions_section: str
    duration_ms: int


@dataclass(frozen=True)
class ErrorReport:
    """Outcome of an aborted cycle or job."""

    timestamp: datetime
    error_message: str
    job: str = "full_cycle"
    failed_step: str = ""
    completed_steps: tuple[str, ...] = field(default_factory=tuple)
