"""Deterministic decision strategy — a fixed rule table over read-tool outputs."""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any

from ..config import RulesConfig
from ..errors import DuplicateActionError
from ..models import RiskLevel
from ..tools.registry import ToolSet

logger = logging.getLogger(__name__)


class Action(str, Enum):
    DELEVERAGE = "deleverage"
    PAUSE_STRATEGY = "pause_strategy"
    REBALANCE = "rebalance"
    HARVEST = "harvest"
    NO_ACTION = "no_action"


ACTION_TOOLS: dict[Action, str] = {
    Action.DELEVERAGE: "auto_deleverage",
    Action.PAUSE_STRATEGY: "pause_leverage_strategy",
    Action.REBALANCE: "rebalance_vault",
    Action.HARVEST: "harvest_strategy",
}

# Read tools whose outputs together make up a DecisionContext.
CONTEXT_TOOLS = (
    "get_token_prices",
    "get_leverage_strategy_state",
    "check_liquidation_risk",
    "get_strategy_states",
)


@dataclass(frozen=True)
class DecisionContext:
    risk: RiskLevel
    primary_change_24h: float | None
    max_drift_bps: int
    leverage_paused: bool = False
    harvest_candidate: str | None = None
    harvest_yield: int = 0


@dataclass(frozen=True)
class Decision:
    action: Action
    reason: str
    target: str | None = None


class RuleTableStrategy:
    """First matching rule wins:

    1. Critical LTV -> deleverage.
    2. Warning LTV during a sharp drop of the primary asset -> pause strategy.
    3. Allocation drift above tolerance -> rebalance.
    4. Accrued yield above threshold -> harvest that strategy.
    5. Otherwise no action.

    The decision step runs its own reads rather than reusing the gathered
    sections, so the inputs it acted on are echoed in its output.
    """

    def __init__(self, rules: RulesConfig, primary_asset: str) -> None:
        self._rules = rules
        self._primary_asset = primary_asset

    # ------------------------------------------------------------------
    # Pure evaluation
    # ------------------------------------------------------------------

    def evaluate(self, ctx: DecisionContext) -> Decision:
        rules = self._rules

        if ctx.risk is RiskLevel.CRITICAL:
            return Decision(Action.DELEVERAGE, "leverage LTV is critical")

        if (
            ctx.risk is RiskLevel.WARNING
            and not ctx.leverage_paused
            and ctx.primary_change_24h is not None
            and ctx.primary_change_24h <= -rules.volatility_pause_pct
        ):
            return Decision(
                Action.PAUSE_STRATEGY,
                f"LTV in warning band and {self._primary_asset} moved "
                f"{ctx.primary_change_24h:.2f}% in 24h",
            )

        if ctx.max_drift_bps > rules.allocation_tolerance_bps:
            return Decision(
                Action.REBALANCE,
                f"allocation drift {ctx.max_drift_bps} bps exceeds "
                f"{rules.allocation_tolerance_bps} bps",
            )

        if ctx.harvest_candidate and ctx.harvest_yield >= rules.harvest_min_yield:
            return Decision(
                Action.HARVEST,
                f"accrued yield {ctx.harvest_yield} >= {rules.harvest_min_yield}",
                target=ctx.harvest_candidate,
            )

        return Decision(Action.NO_ACTION, "all metrics within bounds")

    def build_context(self, outputs: dict[str, Any]) -> DecisionContext:
        """Assemble a DecisionContext from the outputs of CONTEXT_TOOLS."""
        risk = RiskLevel(outputs["check_liquidation_risk"]["classification"])
        change = outputs["get_token_prices"]["change24hPct"].get(self._primary_asset)
        strategies = outputs["get_strategy_states"]

        candidate, best = None, 0
        for entry in strategies["strategies"]:
            accrued = int(entry["accruedYield"]["raw"])
            if accrued > best:
                candidate, best = entry["address"], accrued

        return DecisionContext(
            risk=risk,
            primary_change_24h=change,
            max_drift_bps=int(strategies["maxDriftBps"]),
            leverage_paused=bool(outputs["get_leverage_strategy_state"]["paused"]),
            harvest_candidate=candidate,
            harvest_yield=best,
        )

    # ------------------------------------------------------------------
    # DecisionStrategy
    # ------------------------------------------------------------------

    async def ask(self, prompt: str, tools: ToolSet) -> str:
        """Run every offered no-input read, then decide if the step allows it.

        Tool errors propagate to the caller.
        """
        outputs: dict[str, Any] = {}
        for tool in tools.reads():
            outputs[tool.name] = await tools.execute(tool.name)

        if not all(name in outputs for name in CONTEXT_TOOLS):
            return self._render(outputs)

        ctx = self.build_context(outputs)
        decision = self.evaluate(ctx)
        logger.info("Decision: %s (%s)", decision.action.value, decision.reason)
        return await self._act(decision, tools, self._describe(ctx))

    def _describe(self, ctx: DecisionContext) -> str:
        change = (
            "n/a" if ctx.primary_change_24h is None else f"{ctx.primary_change_24h:+.2f}%"
        )
        return (
            f"Inputs: risk={ctx.risk.value}, {self._primary_asset} 24h={change}, "
            f"drift={ctx.max_drift_bps} bps, paused={ctx.leverage_paused}, "
            f"best yield={ctx.harvest_yield}"
        )

    async def _act(self, decision: Decision, tools: ToolSet, inputs: str) -> str:
        header = f"Decision: {decision.action.value} ({decision.reason})\n{inputs}"
        if decision.action is Action.NO_ACTION:
            return header

        tool_name = ACTION_TOOLS[decision.action]
        if tool_name not in tools:
            return f"{header}\nRecommended: {tool_name} (autonomous actions disabled)"

        payload = {"strategy": decision.target} if decision.target else None
        try:
            result = await tools.execute(tool_name, payload)
        except DuplicateActionError:
            logger.info("%s already executed this cycle", tool_name)
            return f"{header}\nSkipped: {tool_name} already executed this cycle"
        return f"{header}\nExecuted: {tool_name}\n{json.dumps(result, indent=2)}"

    @staticmethod
    def _render(outputs: dict[str, Any]) -> str:
        return "\n".join(
            f"{name}:\n{json.dumps(result, indent=2, default=str)}"
            for name, result in outputs.items()
        )
