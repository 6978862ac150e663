"""Call-surface ABI fragments for the vault, router, strategies, pool and asset.

Only the functions this service reads or encodes are listed; the full contract
ABIs live with the contracts.
"""
from __future__ import annotations

from typing import Any


def _fn(
    name: str,
    inputs: list[tuple[str, str]] | None = None,
    outputs: list[str] | None = None,
    mutability: str = "view",
) -> dict[str, Any]:
    return {
        "type": "function",
        "name": name,
        "inputs": [{"name": n, "type": t} for n, t in (inputs or [])],
        "outputs": [{"name": "", "type": t} for t in (outputs or [])],
        "stateMutability": mutability,
    }


VAULT_ABI = [
    _fn("totalAssets", outputs=["uint256"]),
    _fn("totalSupply", outputs=["uint256"]),
    _fn("totalManagedAssets", outputs=["uint256"]),
    _fn("balanceOf", [("account", "address")], ["uint256"]),
    _fn("convertToAssets", [("shares", "uint256")], ["uint256"]),
    _fn("convertToShares", [("assets", "uint256")], ["uint256"]),
    _fn("deposit", [("assets", "uint256")], ["uint256"], "nonpayable"),
    _fn("withdraw", [("shares", "uint256")], ["uint256"], "nonpayable"),
]

STRATEGY_ABI = [
    _fn("deposited", outputs=["uint256"]),
    _fn("strategyBalance", outputs=["uint256"]),
    _fn("borrowedWETH", outputs=["uint256"]),
    _fn("paused", outputs=["bool"]),
    _fn("harvest", mutability="nonpayable"),
    _fn("togglePause", mutability="nonpayable"),
]

ROUTER_ABI = [
    _fn("rebalance", mutability="nonpayable"),
    _fn(
        "triggerDeleverage",
        [("strategy", "address"), ("maxLoops", "uint256")],
        mutability="nonpayable",
    ),
]

POOL_ABI = [
    _fn("accrue", [("asset", "address")], mutability="nonpayable"),
]

ERC20_ABI = [
    _fn("balanceOf", [("account", "address")], ["uint256"]),
    _fn("allowance", [("owner", "address"), ("spender", "address")], ["uint256"]),
    _fn("approve", [("spender", "address"), ("amount", "uint256")], ["bool"], "nonpayable"),
]
