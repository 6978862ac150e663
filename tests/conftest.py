"""Shared test fixtures and sample data."""
from __future__ import annotations

import textwrap
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from vault_sentinel.config import (
    ActionsConfig,
    AgentConfig,
    AppConfig,
    ChainConfig,
    ContractsConfig,
    NotificationsConfig,
    PriceFeedConfig,
    RulesConfig,
    ScheduleConfig,
    StrategyConfig,
    TelegramConfig,
)
from vault_sentinel.models import PriceQuote, StrategyKind, TxReceipt, UnsignedTransaction
from vault_sentinel.services.state import MonitoringState

VAULT = "0x" + "11" * 20
ROUTER = "0x" + "22" * 20
ASSET = "0x" + "33" * 20
POOL = "0x" + "44" * 20
AAVE = "0x" + "55" * 20
LEVERAGE = "0x" + "66" * 20
USER = "0x" + "77" * 20

E18 = 10**18


# ---------------------------------------------------------------------------
# Config fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def sample_chain_config() -> ChainConfig:
    return ChainConfig(
        rpc_url="https://rpc.example.com",
        chain_id=11155111,
        read_attempts=3,
        read_backoff_seconds=0,
        receipt_timeout=5,
    )


@pytest.fixture()
def sample_strategies() -> tuple[StrategyConfig, ...]:
    return (
        StrategyConfig(name="aave", address=AAVE, kind=StrategyKind.POOL, target_weight_bps=6000),
        StrategyConfig(
            name="leverage", address=LEVERAGE, kind=StrategyKind.LEVERAGE, target_weight_bps=4000
        ),
    )


@pytest.fixture()
def sample_app_config(
    sample_chain_config: ChainConfig,
    sample_strategies: tuple[StrategyConfig, ...],
) -> AppConfig:
    return AppConfig(
        chain=sample_chain_config,
        contracts=ContractsConfig(vault=VAULT, router=ROUTER, asset_token=ASSET, mock_pool=POOL),
        strategies=sample_strategies,
        price_feed=PriceFeedConfig(asset_ids=("chainlink", "weth")),
        schedule=ScheduleConfig(run_on_startup=False),
        rules=RulesConfig(),
        actions=ActionsConfig(autonomous=False),
        agent=AgentConfig(step_timeout_seconds=5),
        notifications=NotificationsConfig(
            telegram=TelegramConfig(
                enabled=True,
                alert_bot_token="fake-alert-token",
                log_bot_token="fake-log-token",
                chat_id="12345",
            ),
        ),
    )


# ---------------------------------------------------------------------------
# Fakes for the I/O seams
# ---------------------------------------------------------------------------


class FakeChain:
    """In-memory ChainClient: reads come from a dict keyed by (target, method)."""

    def __init__(self, values: dict[tuple[str, str], Any] | None = None) -> None:
        self.values: dict[tuple[str, str], Any] = dict(values or {})
        self.reads: list[tuple[str, str, list[Any]]] = []
        self.writes: list[tuple[str, str, list[Any]]] = []
        self.fail_reads: dict[tuple[str, str], Exception] = {}
        self.fail_writes: dict[tuple[str, str], Exception] = {}

    async def read(self, target: str, abi: Any, method: str, args: Any = ()) -> Any:
        self.reads.append((target, method, list(args)))
        if (target, method) in self.fail_reads:
            raise self.fail_reads[(target, method)]
        value = self.values[(target, method)]
        return value(*args) if callable(value) else value

    async def write(self, target: str, abi: Any, method: str, args: Any = ()) -> TxReceipt:
        self.writes.append((target, method, list(args)))
        if (target, method) in self.fail_writes:
            raise self.fail_writes[(target, method)]
        return TxReceipt(hash="0x" + "ab" * 32, status="success", block_number=100)

    def build_unsigned_transaction(
        self, target: str, abi: Any, method: str, args: Any = ()
    ) -> UnsignedTransaction:
        from vault_sentinel.chains.evm import encode_call

        return UnsignedTransaction(to=target, data=encode_call(abi, method, list(args)))


def healthy_chain_values() -> dict[tuple[str, str], Any]:
    """A vault in balance: 60/40 split, LTV 0.5, no accrued yield."""
    return {
        (VAULT, "totalAssets"): 1000 * E18,
        (VAULT, "totalSupply"): 950 * E18,
        (VAULT, "totalManagedAssets"): 1000 * E18,
        (VAULT, "balanceOf"): 10 * E18,
        (VAULT, "convertToAssets"): lambda shares: shares * 2,
        (VAULT, "convertToShares"): lambda assets: assets // 2,
        (AAVE, "deposited"): 600 * E18,
        (AAVE, "strategyBalance"): 600 * E18,
        (LEVERAGE, "deposited"): 400 * E18,
        (LEVERAGE, "strategyBalance"): 400 * E18,
        (LEVERAGE, "borrowedWETH"): 200 * E18,
        (LEVERAGE, "paused"): False,
        (ASSET, "balanceOf"): 5 * E18,
        (ASSET, "allowance"): 3 * E18,
    }


@pytest.fixture()
def fake_chain() -> FakeChain:
    return FakeChain(healthy_chain_values())


def make_quotes(link: float = 15.0, link_change: float | None = 1.5) -> dict[str, PriceQuote]:
    return {
        "chainlink": PriceQuote("chainlink", link, link_change),
        "weth": PriceQuote("weth", 3000.0, -0.5),
    }


@pytest.fixture()
def fake_feed() -> MagicMock:
    feed = MagicMock()
    feed.fetch_prices = AsyncMock(return_value=make_quotes())
    return feed


@pytest.fixture()
def monitoring_state() -> MonitoringState:
    return MonitoringState(history_size=10)


# ---------------------------------------------------------------------------
# Config YAML fixture
# ---------------------------------------------------------------------------

SAMPLE_YAML = textwrap.dedent(f"""\
    chain:
      rpc_url: "https://rpc.example.com"
      chain_id: 11155111
      read_attempts: 4
    contracts:
      vault: "{VAULT}"
      router: "{ROUTER}"
      asset_token: "{ASSET}"
      mock_pool: "{POOL}"
    strategies:
      - name: aave
        address: "{AAVE}"
        kind: pool
        target_weight_bps: 6000
      - name: leverage
        address: "{LEVERAGE}"
        kind: leverage
        target_weight_bps: 4000
    price_feed:
      asset_ids: [chainlink, weth]
    schedule:
      full_cycle: "*/15 * * * *"
      quick_check: "*/5 * * * *"
      yield_generation: "*/1 * * * *"
    rules:
      allocation_tolerance_bps: 300
    actions:
      autonomous: true
    notifications:
      telegram:
        enabled: true
        alert_bot_token: "tok1"
        log_bot_token: "tok2"
        chat_id: "999"
""")


@pytest.fixture()
def sample_yaml_path(tmp_path: Path) -> Path:
    cfg_file = tmp_path / "config.yaml"
    cfg_file.write_text(SAMPLE_YAML)
    return cfg_file
