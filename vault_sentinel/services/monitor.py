"""Monitoring orchestration — full cycle state machine, quick check, yield generation."""
from __future__ import annotations

import asyncio
import itertools
import logging
import signal
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from ..chains.evm import EvmChainClient
from ..config import AppConfig
from ..errors import AgentError, SchedulerError, SentinelError
from ..interfaces.chain import ChainClient
from ..interfaces.decision import DecisionStrategy
from ..interfaces.notifier import Notifier
from ..interfaces.price_feed import PriceFeed
from ..models import CycleReport, ErrorReport
from ..notifications import TelegramNotifier
from ..oracles import CoinGeckoFeed
from ..strategy import RuleTableStrategy
from ..strategy.rule_table import CONTEXT_TOOLS
from ..tools import ToolRegistry, build_vault_tools
from .report_sink import ReportSink
from .scheduler import Scheduler
from .state import MonitoringState

logger = logging.getLogger(__name__)

FULL_CYCLE_JOB = "full_cycle"
QUICK_CHECK_JOB = "quick_check"
YIELD_JOB = "yield_generation"

WRITE_TOOLS = (
    "auto_deleverage",
    "pause_leverage_strategy",
    "rebalance_vault",
    "harvest_strategy",
)


class CyclePhase(str, Enum):
    IDLE = "idle"
    GATHERING_PRICE = "gathering_price"
    GATHERING_LEVERAGE = "gathering_leverage"
    GATHERING_RISK = "gathering_risk"
    GATHERING_VAULT = "gathering_vault"
    DECIDING = "deciding"
    REPORTING = "reporting"
    ERROR_REPORTING = "error_reporting"


@dataclass(frozen=True)
class CycleStep:
    phase: CyclePhase
    section: str
    prompt: str
    tools: tuple[str, ...]


FULL_CYCLE_STEPS: tuple[CycleStep, ...] = (
    CycleStep(
        CyclePhase.GATHERING_PRICE,
        "price",
        "Get current token prices and their 24 hour change.",
        ("get_token_prices",),
    ),
    CycleStep(
        CyclePhase.GATHERING_LEVERAGE,
        "leverage",
        "Check the leverage strategy: deposits, borrowed amount, pause state and LTV.",
        ("get_leverage_strategy_state",),
    ),
    CycleStep(
        CyclePhase.GATHERING_RISK,
        "risk",
        "Check liquidation risk for the leverage strategy.",
        ("check_liquidation_risk",),
    ),
    CycleStep(
        CyclePhase.GATHERING_VAULT,
        "vault",
        "Get vault state, per-strategy allocation and the current APY estimate.",
        ("get_vault_state", "get_strategy_states", "get_vault_apy"),
    ),
    CycleStep(
        CyclePhase.DECIDING,
        "actions",
        "Based on the data below, decide whether to deleverage, pause the leverage "
        "strategy, rebalance, harvest, or take no action. Explain your reasoning.",
        CONTEXT_TOOLS,
    ),
)


class MonitoringService:
    """Owns the monitoring lifecycle and sequences every cycle."""

    def __init__(
        self,
        config: AppConfig,
        chain: ChainClient | None = None,
        feed: PriceFeed | None = None,
        strategy: DecisionStrategy | None = None,
        sink: ReportSink | None = None,
    ) -> None:
        self._config = config
        self.state = MonitoringState(history_size=config.agent.apy_history_size)

        self._chain: ChainClient = chain or EvmChainClient(config.chain)
        self._feed: PriceFeed = feed or CoinGeckoFeed(config.price_feed)
        self.registry: ToolRegistry = build_vault_tools(
            config, self._chain, self._feed, self.state
        )
        self._strategy: DecisionStrategy = strategy or RuleTableStrategy(
            config.rules, config.price_feed.primary_asset
        )

        if sink is None:
            notifiers: list[Notifier] = []
            if config.notifications.telegram.enabled:
                notifiers.append(TelegramNotifier(config.notifications.telegram))
            sink = ReportSink(notifiers)
        self._sink = sink

        self._cycle_ids = itertools.count(1)
        self._active_cycles: dict[int, CyclePhase] = {}

        schedule = config.schedule
        self.scheduler = Scheduler(schedule.timezone, on_error=self._on_job_error)
        self.scheduler.add(FULL_CYCLE_JOB, schedule.full_cycle, self.run_full_cycle)
        self.scheduler.add(QUICK_CHECK_JOB, schedule.quick_check, self.run_quick_check)
        self.scheduler.add(YIELD_JOB, schedule.yield_generation, self.run_yield_generation)

    # ------------------------------------------------------------------
    # Full cycle
    # ------------------------------------------------------------------

    @property
    def phase(self) -> CyclePhase:
        """Phase of the most recently started cycle still running."""
        if not self._active_cycles:
            return CyclePhase.IDLE
        return self._active_cycles[max(self._active_cycles)]

    @property
    def cycles_in_flight(self) -> int:
        return len(self._active_cycles)

    def _step_tools(self, step: CycleStep) -> tuple[str, ...]:
        if step.phase is CyclePhase.DECIDING and self._config.actions.autonomous:
            return step.tools + WRITE_TOOLS
        return step.tools

    @staticmethod
    def _step_prompt(step: CycleStep, sections: dict[str, str]) -> str:
        if step.phase is not CyclePhase.DECIDING:
            return step.prompt
        gathered = "\n\n".join(f"[{name}]\n{text}" for name, text in sections.items())
        return f"{step.prompt}\n\n{gathered}"

    async def _ask(self, step: CycleStep, prompt: str, ledger: set[tuple[str, str]]) -> str:
        tools = self.registry.subset(self._step_tools(step), ledger)
        timeout = self._config.agent.step_timeout_seconds
        try:
            return await asyncio.wait_for(self._strategy.ask(prompt, tools), timeout)
        except SentinelError:
            raise
        except asyncio.TimeoutError as e:
            raise AgentError(f"{step.section} step timed out after {timeout:g}s") from e
        except Exception as e:
            raise AgentError(f"{step.section} step failed: {e}") from e

    async def run_full_cycle(self) -> CycleReport | ErrorReport | None:
        """Run price -> leverage -> risk -> vault -> decision, then report.

        A failing step skips the remaining steps and produces an error report.
        Returns None when the firing was skipped because a cycle is in flight.
        """
        if self._active_cycles and self._config.schedule.skip_overlapping_cycles:
            logger.warning("Full cycle still in flight, skipping this firing")
            return None

        cycle_id = next(self._cycle_ids)
        self._active_cycles[cycle_id] = FULL_CYCLE_STEPS[0].phase
        started = time.monotonic()
        sections: dict[str, str] = {}
        ledger: set[tuple[str, str]] = set()
        report: CycleReport | ErrorReport
        logger.info("Starting full monitoring cycle")

        try:
            for step in FULL_CYCLE_STEPS:
                self._active_cycles[cycle_id] = step.phase
                logger.info("Cycle step: %s", step.phase.value)
                try:
                    sections[step.section] = await self._ask(
                        step, self._step_prompt(step, sections), ledger
                    )
                except SentinelError as e:
                    logger.error("Cycle step %s failed: %s", step.section, e)
                    self._active_cycles[cycle_id] = CyclePhase.ERROR_REPORTING
                    report = ErrorReport(
                        timestamp=datetime.now(timezone.utc),
                        error_message=str(e),
                        job=FULL_CYCLE_JOB,
                        failed_step=step.section,
                        completed_steps=tuple(sections),
                    )
                    await self._sink.deliver_error(report)
                    return report

            self._active_cycles[cycle_id] = CyclePhase.REPORTING
            report = CycleReport(
                timestamp=datetime.now(timezone.utc),
                price_section=sections["price"],
                leverage_section=sections["leverage"],
                risk_section=sections["risk"],
                vault_section=sections["vault"],
                actions_section=sections["actions"],
                duration_ms=int((time.monotonic() - started) * 1000),
            )
            await self._sink.deliver(report)
            logger.info("Full cycle completed in %d ms", report.duration_ms)
            return report
        finally:
            del self._active_cycles[cycle_id]

    # ------------------------------------------------------------------
    # Single-step jobs
    # ------------------------------------------------------------------

    async def _single_step_error(self, job: str, error: Exception) -> ErrorReport:
        logger.error("%s failed: %s", job, error)
        report = ErrorReport(
            timestamp=datetime.now(timezone.utc), error_message=str(error), job=job
        )
        await self._sink.deliver_error(report)
        return report

    async def run_quick_check(self) -> dict[str, Any] | ErrorReport:
        """Compare prices with the last check and alert on large moves."""
        try:
            result = await self.registry.execute("check_price_movement")
        except SentinelError as e:
            return await self._single_step_error(QUICK_CHECK_JOB, e)

        alert = self.state.take_price_alert()
        if alert:
            await self._sink.deliver_alert(alert, subject="Price alert")
        else:
            logger.info("Quick check: no significant price movement")
        return result

    async def run_yield_generation(self) -> dict[str, Any] | ErrorReport | None:
        """Accrue interest in the lending pool, when one is configured."""
        if "accrue_yield" not in self.registry:
            logger.debug("Yield generation skipped: no pool configured")
            return None
        try:
            result = await self.registry.execute("accrue_yield")
        except SentinelError as e:
            return await self._single_step_error(YIELD_JOB, e)
        logger.info("Yield accrued: %s", result["tx"]["hash"])
        return result

    async def _on_job_error(self, error: SchedulerError) -> None:
        await self._sink.deliver_error(
            ErrorReport(
                timestamp=datetime.now(timezone.utc),
                error_message=str(error.__cause__ or error),
                job=error.job_id,
            )
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Arm the three jobs; optionally run a full cycle immediately."""
        if self.scheduler.running:
            logger.debug("Monitoring service already running")
            return
        self.scheduler.start()
        await self._sink.deliver_log(
            "🚀 Vault sentinel started\n"
            f"Full cycle: {self._config.schedule.full_cycle}\n"
            f"Quick check: {self._config.schedule.quick_check}\n"
            f"Yield generation: {self._config.schedule.yield_generation}\n"
            f"Autonomous actions: {'on' if self._config.actions.autonomous else 'off'}"
        )
        if self._config.schedule.run_on_startup:
            await self.scheduler.fire(FULL_CYCLE_JOB)

    def stop(self) -> None:
        self.scheduler.stop()

    async def run_forever(self) -> None:
        """Start and block until SIGINT/SIGTERM."""
        stop_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, stop_event.set)
            except NotImplementedError:
                logger.debug("Signal handlers not supported on this platform")

        await self.start()
        try:
            await stop_event.wait()
        finally:
            logger.info("Shutting down monitoring service")
            self.stop()
