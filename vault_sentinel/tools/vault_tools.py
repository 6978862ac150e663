"""Vault tool set — reads, simulations, operator writes and unsigned-tx builders.

Every output keeps raw 10^18 fixed-point values (decimal strings) apart from
their human-decimal rendering.
"""
from __future__ import annotations

import asyncio
import logging
import re
from typing import TYPE_CHECKING, Annotated, Any

from pydantic import AfterValidator, BaseModel, ConfigDict, Field

from .. import risk
from ..chains.evm.abi import ERC20_ABI, POOL_ABI, ROUTER_ABI, STRATEGY_ABI, VAULT_ABI
from ..config import AppConfig, StrategyConfig
from ..errors import ValidationError
from ..interfaces.chain import ChainClient
from ..interfaces.price_feed import PriceFeed
from ..models import PriceQuote, StrategyKind, StrategyState, VaultState
from ..units import as_int, format_units, parse_units, to_fixed
from .registry import Tool, ToolKind, ToolRegistry

if TYPE_CHECKING:
    from ..services.state import MonitoringState

logger = logging.getLogger(__name__)

_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")


# ---------------------------------------------------------------------------
# Input models
# ---------------------------------------------------------------------------


class _Input(BaseModel):
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)


def _address(value: str) -> str:
    if not _ADDRESS_RE.match(value):
        raise ValueError("must be a 0x-prefixed 20-byte hex address")
    return value


def _human_amount(value: str) -> str:
    parse_units(value)
    return value


Address = Annotated[str, AfterValidator(_address)]
HumanAmount = Annotated[str, AfterValidator(_human_amount)]


class UserInput(_Input):
    user: Address = Field(description="Wallet address of the vault user")


class WalletInput(_Input):
    wallet: Address = Field(description="Wallet address holding the vault asset")


class AllowanceInput(_Input):
    wallet: Address = Field(description="Wallet address that would deposit")
    amount: HumanAmount = Field(description="Deposit amount, human-readable (e.g. '12.5')")


class AmountInput(_Input):
    amount: HumanAmount = Field(description="Asset amount, human-readable (e.g. '12.5')")


class SharesInput(_Input):
    shares: HumanAmount = Field(description="Vault shares, human-readable (e.g. '3')")


class StrategyInput(_Input):
    strategy: Address = Field(description="Address of the strategy to harvest")


class SimulateYieldInput(_Input):
    principal: HumanAmount = Field(description="Principal, human-readable")
    apr: float = Field(ge=0, le=10, description="Annual rate as a fraction (0.05 = 5%)")
    days: int = Field(ge=0, le=3650, description="Projection horizon in days")


# ---------------------------------------------------------------------------
# Formatting helpers
# ---------------------------------------------------------------------------


def _price_payload(quotes: dict[str, PriceQuote]) -> dict[str, Any]:
    return {
        "raw": {a: str(to_fixed(q.usd)) for a, q in quotes.items()},
        "human": {
            a: {
                "usd": f"{q.usd:.2f}",
                "change24h": (
                    f"{q.usd_24h_change:.2f}%" if q.usd_24h_change is not None else "n/a"
                ),
            }
            for a, q in quotes.items()
        },
        "change24hPct": {a: q.usd_24h_change for a, q in quotes.items()},
    }


def _amount_payload(**amounts: int) -> dict[str, Any]:
    return {
        "raw": {k: str(v) for k, v in amounts.items()},
        "human": {k: format_units(v) for k, v in amounts.items()},
    }


# ---------------------------------------------------------------------------
# Builder
# ---------------------------------------------------------------------------


class VaultTools:
    """Binds the chain client, price feed and service state into tools."""

    def __init__(
        self,
        config: AppConfig,
        chain: ChainClient,
        feed: PriceFeed,
        state: MonitoringState,
    ) -> None:
        self._config = config
        self._chain = chain
        self._feed = feed
        self._state = state
        self._vault = config.contracts.vault
        self._leverage: StrategyConfig = config.leverage_strategy  # type: ignore[assignment]

    # -- shared reads ---------------------------------------------------

    async def _read_int(self, target: str, abi: list[dict[str, Any]], method: str, *args: Any) -> int:
        return as_int(await self._chain.read(target, abi, method, list(args)))

    async def read_vault_state(self) -> VaultState:
        total_assets, total_supply, total_managed = await asyncio.gather(
            self._read_int(self._vault, VAULT_ABI, "totalAssets"),
            self._read_int(self._vault, VAULT_ABI, "totalSupply"),
            self._read_int(self._vault, VAULT_ABI, "totalManagedAssets"),
        )
        return VaultState(
            total_assets=total_assets,
            total_supply=total_supply,
            total_managed_assets=total_managed,
        )

    async def read_strategy_state(self, strategy: StrategyConfig) -> StrategyState:
        reads = [
            self._read_int(strategy.address, STRATEGY_ABI, "deposited"),
            self._read_int(strategy.address, STRATEGY_ABI, "strategyBalance"),
        ]
        if strategy.kind is StrategyKind.LEVERAGE:
            reads.append(self._read_int(strategy.address, STRATEGY_ABI, "borrowedWETH"))
        values = await asyncio.gather(*reads)
        return StrategyState(
            strategy_id=strategy.address,
            deposited_amount=values[0],
            pool_balance=values[1],
            borrowed_amount=values[2] if len(values) > 2 else 0,
            name=strategy.name,
            kind=strategy.kind,
        )

    async def _read_leverage_position(self) -> StrategyState:
        deposited, borrowed = await asyncio.gather(
            self._read_int(self._leverage.address, STRATEGY_ABI, "deposited"),
            self._read_int(self._leverage.address, STRATEGY_ABI, "borrowedWETH"),
        )
        return StrategyState(
            strategy_id=self._leverage.address,
            deposited_amount=deposited,
            borrowed_amount=borrowed,
            pool_balance=0,
            name=self._leverage.name,
            kind=StrategyKind.LEVERAGE,
        )

    # -- read tools -----------------------------------------------------

    async def get_token_prices(self) -> dict[str, Any]:
        quotes = await self._feed.fetch_prices()
        return {**_price_payload(quotes), "source": "CoinGecko API"}

    async def check_price_movement(self) -> dict[str, Any]:
        quotes = await self._feed.fetch_prices()
        threshold = self._config.rules.price_alert_pct
        moves = self._state.observe_prices(quotes, threshold)
        flagged = any(m is not None and abs(m) > threshold for m in moves.values())
        return {
            **_price_payload(quotes),
            "moveSinceLastCheckPct": moves,
            "flagged": flagged,
        }

    async def get_vault_state(self) -> dict[str, Any]:
        vault = await self.read_vault_state()
        self._state.record_tvl(vault.total_assets)
        return {"raw": vault.raw(), "human": vault.human()}

    async def get_strategy_states(self) -> dict[str, Any]:
        states = await asyncio.gather(
            *(self.read_strategy_state(s) for s in self._config.strategies)
        )
        current = risk.allocation_bps(states)
        target = {s.address: s.target_weight_bps for s in self._config.strategies}
        total_balance = sum(s.pool_balance for s in states)
        drift = risk.max_allocation_drift(current, target) if total_balance else 0

        entries = []
        for state in states:
            accrued = risk.accrued_yield(state)
            entries.append(
                {
                    "name": state.name,
                    "address": state.strategy_id,
                    "kind": state.kind.value,
                    "raw": state.raw(),
                    "human": state.human(),
                    "currentWeightBps": current[state.strategy_id],
                    "targetWeightBps": target[state.strategy_id],
                    "accruedYield": {"raw": str(accrued), "human": format_units(accrued)},
                }
            )
        return {"strategies": entries, "maxDriftBps": drift}

    async def get_leverage_strategy_state(self) -> dict[str, Any]:
        position, paused = await asyncio.gather(
            self._read_leverage_position(),
            self._chain.read(self._leverage.address, STRATEGY_ABI, "paused", []),
        )
        return {
            "strategy": self._leverage.address,
            "raw": position.raw(),
            "human": position.human(),
            "paused": bool(paused),
            "risk": risk.assess(position).to_dict(),
        }

    async def check_liquidation_risk(self) -> dict[str, Any]:
        position = await self._read_leverage_position()
        return {
            **_amount_payload(
                deposited=position.deposited_amount, borrowed=position.borrowed_amount
            ),
            **risk.assess(position).to_dict(),
        }

    async def get_vault_apy(self) -> dict[str, Any]:
        return risk.compute_apy(self._state.tvl_snapshots()).to_dict()

    async def get_user_balances(self, params: UserInput) -> dict[str, Any]:
        shares = await self._read_int(self._vault, VAULT_ABI, "balanceOf", params.user)
        assets = await self._read_int(self._vault, VAULT_ABI, "convertToAssets", shares)
        return {"user": params.user, **_amount_payload(shares=shares, withdrawable=assets)}

    async def get_asset_balance(self, params: WalletInput) -> dict[str, Any]:
        balance = await self._read_int(
            self._config.contracts.asset_token, ERC20_ABI, "balanceOf", params.wallet
        )
        return {"wallet": params.wallet, **_amount_payload(balance=balance)}

    async def check_allowance(self, params: AllowanceInput) -> dict[str, Any]:
        needed = parse_units(params.amount)
        allowance = await self._read_int(
            self._config.contracts.asset_token,
            ERC20_ABI,
            "allowance",
            params.wallet,
            self._vault,
        )
        return {
            "wallet": params.wallet,
            **_amount_payload(allowance=allowance, needed=needed),
            "enough": allowance >= needed,
        }

    async def convert_to_shares(self, params: AmountInput) -> dict[str, Any]:
        assets = parse_units(params.amount)
        shares = await self._read_int(self._vault, VAULT_ABI, "convertToShares", assets)
        return _amount_payload(assets=assets, shares=shares)

    async def convert_to_assets(self, params: SharesInput) -> dict[str, Any]:
        shares = parse_units(params.shares)
        assets = await self._read_int(self._vault, VAULT_ABI, "convertToAssets", shares)
        return _amount_payload(shares=shares, assets=assets)

    # -- simulation -----------------------------------------------------

    async def simulate_yield(self, params: SimulateYieldInput) -> dict[str, Any]:
        projection = risk.simulate_yield(parse_units(params.principal), params.apr, params.days)
        return {**_amount_payload(**projection), "apr": params.apr, "days": params.days}

    # -- operator writes ------------------------------------------------

    async def rebalance_vault(self) -> dict[str, Any]:
        receipt = await self._chain.write(
            self._config.contracts.router, ROUTER_ABI, "rebalance", []
        )
        return {"tx": receipt.to_dict(), "message": "Vault rebalanced"}

    async def harvest_strategy(self, params: StrategyInput) -> dict[str, Any]:
        known = {s.address.lower(): s for s in self._config.strategies}
        strategy = known.get(params.strategy.lower())
        if strategy is None:
            raise ValidationError("harvest_strategy", f"{params.strategy} is not a configured strategy")
        receipt = await self._chain.write(strategy.address, STRATEGY_ABI, "harvest", [])
        return {"tx": receipt.to_dict(), "message": f"Harvested {strategy.name}"}

    async def auto_deleverage(self) -> dict[str, Any]:
        receipt = await self._chain.write(
            self._config.contracts.router,
            ROUTER_ABI,
            "triggerDeleverage",
            [self._leverage.address, self._config.rules.deleverage_steps],
        )
        return {"tx": receipt.to_dict(), "message": "Deleverage triggered"}

    async def pause_leverage_strategy(self) -> dict[str, Any]:
        paused = await self._chain.read(self._leverage.address, STRATEGY_ABI, "paused", [])
        if paused:
            return {"skipped": True, "message": "Leverage strategy already paused"}
        receipt = await self._chain.write(
            self._leverage.address, STRATEGY_ABI, "togglePause", []
        )
        return {"tx": receipt.to_dict(), "message": "Leverage strategy paused"}

    async def accrue_yield(self) -> dict[str, Any]:
        receipt = await self._chain.write(
            self._config.contracts.mock_pool,
            POOL_ABI,
            "accrue",
            [self._config.contracts.asset_token],
        )
        return {"tx": receipt.to_dict(), "message": "Yield accrued"}

    # -- user-signed preparation ----------------------------------------

    async def prepare_deposit(self, params: AmountInput) -> dict[str, Any]:
        amount = parse_units(params.amount)
        tx = self._chain.build_unsigned_transaction(self._vault, VAULT_ABI, "deposit", [amount])
        return {
            "unsignedTx": tx.to_dict(),
            **_amount_payload(amount=amount),
            "message": f"Please sign this deposit transaction for {params.amount}.",
        }

    async def prepare_withdraw(self, params: SharesInput) -> dict[str, Any]:
        shares = parse_units(params.shares)
        tx = self._chain.build_unsigned_transaction(self._vault, VAULT_ABI, "withdraw", [shares])
        return {
            "unsignedTx": tx.to_dict(),
            **_amount_payload(shares=shares),
            "message": f"Please sign this withdraw transaction for {params.shares} shares.",
        }

    async def prepare_approve(self, params: AmountInput) -> dict[str, Any]:
        amount = parse_units(params.amount)
        tx = self._chain.build_unsigned_transaction(
            self._config.contracts.asset_token, ERC20_ABI, "approve", [self._vault, amount]
        )
        return {
            "unsignedTx": tx.to_dict(),
            **_amount_payload(amount=amount),
            "message": f"Please sign this transaction to approve {params.amount} for the vault.",
        }


def build_vault_tools(
    config: AppConfig,
    chain: ChainClient,
    feed: PriceFeed,
    state: MonitoringState,
) -> ToolRegistry:
    """Register every vault tool against the given collaborators."""
    t = VaultTools(config, chain, feed, state)
    registry = ToolRegistry()
    read, sim, write, prep = ToolKind.READ, ToolKind.SIMULATION, ToolKind.WRITE, ToolKind.PREPARE

    for name, description, handler, model, kind in (
        ("get_token_prices", "Fetches real-time USD prices and 24h change for the monitored assets.", t.get_token_prices, None, read),
        ("check_price_movement", "Fetches prices and compares them with the last check; flags large moves.", t.check_price_movement, None, read),
        ("get_vault_state", "Reads the vault's total assets, total supply and total managed assets.", t.get_vault_state, None, read),
        ("get_strategy_states", "Reads deposited, borrowed and balance for every strategy with current vs target allocation.", t.get_strategy_states, None, read),
        ("get_leverage_strategy_state", "Reads the leverage strategy's deposits, debt, pause flag and LTV.", t.get_leverage_strategy_state, None, read),
        ("check_liquidation_risk", "Computes the leverage strategy's LTV and risk classification.", t.check_liquidation_risk, None, read),
        ("get_vault_apy", "Estimates vault APY from recorded total-assets growth.", t.get_vault_apy, None, read),
        ("get_user_balances", "Fetches a user's vault share balance and withdrawable assets.", t.get_user_balances, UserInput, read),
        ("get_asset_balance", "Returns a wallet's balance of the vault asset.", t.get_asset_balance, WalletInput, read),
        ("check_allowance", "Checks whether a wallet's allowance to the vault covers a deposit.", t.check_allowance, AllowanceInput, read),
        ("convert_to_shares", "Converts an asset amount to vault shares.", t.convert_to_shares, AmountInput, read),
        ("convert_to_assets", "Converts vault shares to an asset amount.", t.convert_to_assets, SharesInput, read),
        ("simulate_yield", "Projects yield on a principal with daily compounding.", t.simulate_yield, SimulateYieldInput, sim),
        ("rebalance_vault", "Triggers the router's rebalance() to restore target weights.", t.rebalance_vault, None, write),
        ("harvest_strategy", "Calls harvest() on a configured strategy.", t.harvest_strategy, StrategyInput, write),
        ("auto_deleverage", "Repays leverage-strategy debt to reduce liquidation risk.", t.auto_deleverage, None, write),
        ("pause_leverage_strategy", "Pauses the leverage strategy if it is running.", t.pause_leverage_strategy, None, write),
        ("prepare_deposit", "Prepares an unsigned deposit transaction for the user to sign.", t.prepare_deposit, AmountInput, prep),
        ("prepare_withdraw", "Prepares an unsigned withdraw transaction for the user to sign.", t.prepare_withdraw, SharesInput, prep),
        ("prepare_approve", "Prepares an unsigned approval letting the vault spend the asset.", t.prepare_approve, AmountInput, prep),
    ):
        registry.register(
            Tool(name=name, description=description, handler=handler, input_model=model, kind=kind)
        )

    if config.contracts.mock_pool:
        registry.register(
            Tool(
                name="accrue_yield",
                description="Accrues interest in the lending pool for the vault asset.",
                handler=t.accrue_yield,
                kind=write,
            )
        )
    else:
        logger.info("No mock pool configured, accrue_yield tool not registered")

    return registry
