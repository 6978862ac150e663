"""Configuration loader — reads config.yaml, interpolates env vars, validates."""
from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

from .models import StrategyKind

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Frozen config dataclasses
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ChainConfig:
    rpc_url: str = ""
    chain_id: int = 11155111
    rpc_timeout: int = 30
    read_attempts: int = 3
    read_backoff_seconds: float = 0.5
    receipt_timeout: int = 120
    operator_private_key: str = field(default="", repr=False)


@dataclass(frozen=True)
class ContractsConfig:
    vault: str = ""
    router: str = ""
    asset_token: str = ""
    mock_pool: str = ""


@dataclass(frozen=True)
class StrategyConfig:
    name: str = ""
    address: str = ""
    kind: StrategyKind = StrategyKind.POOL
    target_weight_bps: int = 0


@dataclass(frozen=True)
class PriceFeedConfig:
    url: str = "https://api.coingecko.com/api/v3/simple/price"
    asset_ids: tuple[str, ...] = ("chainlink", "weth")
    timeout: int = 15

    @property
    def primary_asset(self) -> str:
        return self.asset_ids[0] if self.asset_ids else ""


@dataclass(frozen=True)
class ScheduleConfig:
    full_cycle: str = "*/15 * * * *"
    quick_check: str = "*/5 * * * *"
    yield_generation: str = "*/1 * * * *"
    run_on_startup: bool = True
    skip_overlapping_cycles: bool = True
    timezone: str = "UTC"


@dataclass(frozen=True)
class RulesConfig:
    volatility_pause_pct: float = 10.0
    price_alert_pct: float = 15.0
    allocation_tolerance_bps: int = 500
    harvest_min_yield: int = 10**18
    deleverage_steps: int = 10


@dataclass(frozen=True)
class ActionsConfig:
    autonomous: bool = False


@dataclass(frozen=True)
class AgentConfig:
    step_timeout_seconds: float = 120.0
    apy_history_size: int = 2880


@dataclass(frozen=True)
class TelegramConfig:
    enabled: bool = False
    alert_bot_token: str = ""
    log_bot_token: str = ""
    chat_id: str = ""


@dataclass(frozen=True)
class NotificationsConfig:
    telegram: TelegramConfig = field(default_factory=TelegramConfig)


@dataclass(frozen=True)
class AppConfig:
    chain: ChainConfig = field(default_factory=ChainConfig)
    contracts: ContractsConfig = field(default_factory=ContractsConfig)
    strategies: tuple[StrategyConfig, ...] = ()
    price_feed: PriceFeedConfig = field(default_factory=PriceFeedConfig)
    schedule: ScheduleConfig = field(default_factory=ScheduleConfig)
    rules: RulesConfig = field(default_factory=RulesConfig)
    actions: ActionsConfig = field(default_factory=ActionsConfig)
    agent: AgentConfig = field(default_factory=AgentConfig)
    notifications: NotificationsConfig = field(default_factory=NotificationsConfig)

    @property
    def leverage_strategy(self) -> StrategyConfig | None:
        for strategy in self.strategies:
            if strategy.kind is StrategyKind.LEVERAGE:
                return strategy
        return None


# ---------------------------------------------------------------------------
# Env interpolation
# ---------------------------------------------------------------------------

_ENV_VAR_RE = re.compile(r"\$\{([^}]+)}")
_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")


def _interpolate_env(value: Any) -> Any:
    """Recursively replace ${VAR} references with environment variable values."""
    if isinstance(value, str):
        return _ENV_VAR_RE.sub(lambda m: os.environ.get(m.group(1), ""), value)
    if isinstance(value, dict):
        return {k: _interpolate_env(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_interpolate_env(item) for item in value]
    return value


# ---------------------------------------------------------------------------
# YAML → dataclass builders
# ---------------------------------------------------------------------------


def _build_chain(raw: dict[str, Any]) -> ChainConfig:
    return ChainConfig(
        rpc_url=raw.get("rpc_url", ""),
        chain_id=int(raw.get("chain_id", 11155111)),
        rpc_timeout=int(raw.get("rpc_timeout", 30)),
        read_attempts=int(raw.get("read_attempts", 3)),
        read_backoff_seconds=float(raw.get("read_backoff_seconds", 0.5)),
        receipt_timeout=int(raw.get("receipt_timeout", 120)),
        operator_private_key=raw.get("operator_private_key", ""),
    )


def _build_contracts(raw: dict[str, Any]) -> ContractsConfig:
    return ContractsConfig(
        vault=raw.get("vault", ""),
        router=raw.get("router", ""),
        asset_token=raw.get("asset_token", ""),
        mock_pool=raw.get("mock_pool", ""),
    )


def _build_strategies(raw: list[dict[str, Any]]) -> tuple[StrategyConfig, ...]:
    strategies: list[StrategyConfig] = []
    for s in raw:
        strategies.append(
            StrategyConfig(
                name=s.get("name", ""),
                address=s.get("address", ""),
                kind=StrategyKind(s.get("kind", "pool")),
                target_weight_bps=int(s.get("target_weight_bps", 0)),
            )
        )
    return tuple(strategies)


def _build_price_feed(raw: dict[str, Any]) -> PriceFeedConfig:
    return PriceFeedConfig(
        url=raw.get("url", PriceFeedConfig.url),
        asset_ids=tuple(raw.get("asset_ids", PriceFeedConfig.asset_ids)),
        timeout=int(raw.get("timeout", 15)),
    )


def _build_schedule(raw: dict[str, Any]) -> ScheduleConfig:
    return ScheduleConfig(
        full_cycle=raw.get("full_cycle", ScheduleConfig.full_cycle),
        quick_check=raw.get("quick_check", ScheduleConfig.quick_check),
        yield_generation=raw.get("yield_generation", ScheduleConfig.yield_generation),
        run_on_startup=bool(raw.get("run_on_startup", True)),
        skip_overlapping_cycles=bool(raw.get("skip_overlapping_cycles", True)),
        timezone=raw.get("timezone", "UTC"),
    )


def _build_rules(raw: dict[str, Any]) -> RulesConfig:
    return RulesConfig(
        volatility_pause_pct=float(raw.get("volatility_pause_pct", 10.0)),
        price_alert_pct=float(raw.get("price_alert_pct", 15.0)),
        allocation_tolerance_bps=int(raw.get("allocation_tolerance_bps", 500)),
        harvest_min_yield=int(raw.get("harvest_min_yield", 10**18)),
        deleverage_steps=int(raw.get("deleverage_steps", 10)),
    )


def _build_notifications(raw: dict[str, Any]) -> NotificationsConfig:
    tg = raw.get("telegram", {})
    return NotificationsConfig(
        telegram=TelegramConfig(
            enabled=bool(tg.get("enabled", False)),
            alert_bot_token=tg.get("alert_bot_token", ""),
            log_bot_token=tg.get("log_bot_token", ""),
            chat_id=str(tg.get("chat_id", "")),
        ),
    )


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(config_path: str | Path | None = None) -> AppConfig:
    """Load and validate application configuration from YAML + .env.

    Args:
        config_path: Path to config.yaml. Defaults to ``config.yaml`` in the
            project root (two levels up from this file).
    """
    load_dotenv()

    if config_path is None:
        config_path = Path(__file__).resolve().parent.parent / "config.yaml"
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path) as f:
        raw = yaml.safe_load(f) or {}

    raw = _interpolate_env(raw)

    actions_raw = raw.get("actions", {})
    agent_raw = raw.get("agent", {})
    cfg = AppConfig(
        chain=_build_chain(raw.get("chain", {})),
        contracts=_build_contracts(raw.get("contracts", {})),
        strategies=_build_strategies(raw.get("strategies", [])),
        price_feed=_build_price_feed(raw.get("price_feed", {})),
        schedule=_build_schedule(raw.get("schedule", {})),
        rules=_build_rules(raw.get("rules", {})),
        actions=ActionsConfig(autonomous=bool(actions_raw.get("autonomous", False))),
        agent=AgentConfig(
            step_timeout_seconds=float(agent_raw.get("step_timeout_seconds", 120.0)),
            apy_history_size=int(agent_raw.get("apy_history_size", 2880)),
        ),
        notifications=_build_notifications(raw.get("notifications", {})),
    )

    _validate(cfg)
    logger.info("Configuration loaded from %s", config_path)
    return cfg


def _check_address(label: str, address: str, required: bool = True) -> None:
    if not address:
        if required:
            raise ValueError(f"{label} address is not configured")
        return
    if not _ADDRESS_RE.match(address):
        raise ValueError(f"{label} address '{address}' is not a valid 0x address")


def _validate(cfg: AppConfig) -> None:
    """Raise on invalid configuration."""
    if not cfg.chain.rpc_url:
        raise ValueError("chain.rpc_url must be configured")
    if cfg.chain.read_attempts < 1:
        raise ValueError("chain.read_attempts must be at least 1")

    _check_address("Vault", cfg.contracts.vault)
    _check_address("Router", cfg.contracts.router)
    _check_address("Asset token", cfg.contracts.asset_token)
    _check_address("Mock pool", cfg.contracts.mock_pool, required=False)

    if not cfg.strategies:
        raise ValueError("At least one strategy must be configured")

    leverage = [s for s in cfg.strategies if s.kind is StrategyKind.LEVERAGE]
    if len(leverage) != 1:
        raise ValueError("Exactly one leverage strategy must be configured")

    for strategy in cfg.strategies:
        _check_address(f"Strategy '{strategy.name}'", strategy.address)

    total_weight = sum(s.target_weight_bps for s in cfg.strategies)
    if total_weight != 10_000:
        raise ValueError(
            f"Strategy target weights must sum to 10000 bps, got {total_weight}"
        )

    if not cfg.price_feed.asset_ids:
        raise ValueError("price_feed.asset_ids must list at least one asset")

    for name in ("full_cycle", "quick_check", "yield_generation"):
        expr = getattr(cfg.schedule, name)
        if len(expr.split()) != 5:
            raise ValueError(
                f"schedule.{name} '{expr}' is not a 5-field cron expression"
            )
