"""Integration tests for the MonitoringService — full flow with mocked I/O."""
from __future__ import annotations

import asyncio
from dataclasses import replace
from unittest.mock import AsyncMock, MagicMock

import pytest

from conftest import ASSET, LEVERAGE, POOL, ROUTER, VAULT, E18, FakeChain, make_quotes
from vault_sentinel.config import (
    ActionsConfig,
    AgentConfig,
    AppConfig,
    ContractsConfig,
    ScheduleConfig,
)
from vault_sentinel.errors import ChainReadError, ChainWriteError, PriceFeedError
from vault_sentinel.models import CycleReport, ErrorReport
from vault_sentinel.services.monitor import CyclePhase, MonitoringService
from vault_sentinel.services.report_sink import ReportSink


@pytest.fixture()
def notifier() -> AsyncMock:
    return AsyncMock()


def _service(
    config: AppConfig,
    chain: FakeChain,
    feed: MagicMock,
    notifier: AsyncMock,
    strategy: object | None = None,
) -> MonitoringService:
    return MonitoringService(
        config, chain=chain, feed=feed, strategy=strategy, sink=ReportSink([notifier])
    )


@pytest.fixture()
def service(
    sample_app_config: AppConfig,
    fake_chain: FakeChain,
    fake_feed: MagicMock,
    notifier: AsyncMock,
) -> MonitoringService:
    return _service(sample_app_config, fake_chain, fake_feed, notifier)


def _autonomous(config: AppConfig) -> AppConfig:
    return replace(config, actions=ActionsConfig(autonomous=True))


class TestFullCycle:
    @pytest.mark.asyncio
    async def test_healthy_cycle_reports_every_section(
        self, service: MonitoringService, fake_chain: FakeChain, notifier: AsyncMock
    ) -> None:
        report = await service.run_full_cycle()

        assert isinstance(report, CycleReport)
        assert "chainlink" in report.price_section
        assert "get_leverage_strategy_state" in report.leverage_section
        assert "safe" in report.risk_section
        assert "totalAssets" in report.vault_section
        assert report.actions_section.startswith("Decision: no_action")
        assert report.duration_ms >= 0
        assert fake_chain.writes == []
        assert service.phase is CyclePhase.IDLE

        notifier.send_log.assert_awaited_once()
        notifier.send_alert.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_critical_recommends_when_not_autonomous(
        self, service: MonitoringService, fake_chain: FakeChain
    ) -> None:
        fake_chain.values[(LEVERAGE, "borrowedWETH")] = 380 * E18

        report = await service.run_full_cycle()

        assert isinstance(report, CycleReport)
        assert "Decision: deleverage" in report.actions_section
        assert "Recommended: auto_deleverage" in report.actions_section
        assert fake_chain.writes == []

    @pytest.mark.asyncio
    async def test_critical_deleverages_when_autonomous(
        self,
        sample_app_config: AppConfig,
        fake_chain: FakeChain,
        fake_feed: MagicMock,
        notifier: AsyncMock,
    ) -> None:
        fake_chain.values[(LEVERAGE, "borrowedWETH")] = 380 * E18
        service = _service(_autonomous(sample_app_config), fake_chain, fake_feed, notifier)

        report = await service.run_full_cycle()

        assert isinstance(report, CycleReport)
        assert "Executed: auto_deleverage" in report.actions_section
        assert fake_chain.writes == [(ROUTER, "triggerDeleverage", [LEVERAGE, 10])]

    @pytest.mark.asyncio
    async def test_autonomous_rebalance_on_drift(
        self,
        sample_app_config: AppConfig,
        fake_chain: FakeChain,
        fake_feed: MagicMock,
        notifier: AsyncMock,
    ) -> None:
        fake_chain.values[(LEVERAGE, "strategyBalance")] = 100 * E18
        service = _service(_autonomous(sample_app_config), fake_chain, fake_feed, notifier)

        await service.run_full_cycle()

        assert fake_chain.writes == [(ROUTER, "rebalance", [])]

    @pytest.mark.asyncio
    async def test_vault_step_records_tvl(self, service: MonitoringService) -> None:
        await service.run_full_cycle()
        await service.run_full_cycle()
        assert len(service.state.tvl_snapshots()) == 2

    @pytest.mark.asyncio
    async def test_decision_prompt_includes_gathered_sections(
        self,
        sample_app_config: AppConfig,
        fake_chain: FakeChain,
        fake_feed: MagicMock,
        notifier: AsyncMock,
    ) -> None:
        strategy = MagicMock()
        strategy.ask = AsyncMock(side_effect=["P", "L", "R", "V", "A"])
        service = _service(sample_app_config, fake_chain, fake_feed, notifier, strategy)

        report = await service.run_full_cycle()

        assert isinstance(report, CycleReport)
        assert (report.price_section, report.actions_section) == ("P", "A")
        decision_prompt, decision_tools = strategy.ask.await_args_list[-1].args
        for section in ("[price]\nP", "[leverage]\nL", "[risk]\nR", "[vault]\nV"):
            assert section in decision_prompt
        assert "auto_deleverage" not in decision_tools


class TestCycleFailure:
    @pytest.mark.asyncio
    async def test_read_failure_at_step_two_skips_rest(
        self,
        service: MonitoringService,
        fake_chain: FakeChain,
        notifier: AsyncMock,
    ) -> None:
        fake_chain.fail_reads[(LEVERAGE, "deposited")] = ChainReadError(
            LEVERAGE, "deposited", 3, "rpc down"
        )

        report = await service.run_full_cycle()

        assert isinstance(report, ErrorReport)
        assert report.failed_step == "leverage"
        assert report.completed_steps == ("price",)
        assert "deposited" in report.error_message
        assert not any(target == VAULT for target, _, _ in fake_chain.reads)
        notifier.send_alert.assert_awaited_once()
        notifier.send_log.assert_not_awaited()
        assert service.phase is CyclePhase.IDLE

    @pytest.mark.asyncio
    async def test_failing_step_stops_strategy_calls(
        self,
        sample_app_config: AppConfig,
        fake_chain: FakeChain,
        fake_feed: MagicMock,
        notifier: AsyncMock,
    ) -> None:
        strategy = MagicMock()
        strategy.ask = AsyncMock(
            side_effect=["prices", ChainReadError(LEVERAGE, "deposited", 3, "down"), "x", "x", "x"]
        )
        service = _service(sample_app_config, fake_chain, fake_feed, notifier, strategy)

        report = await service.run_full_cycle()

        assert isinstance(report, ErrorReport)
        assert strategy.ask.await_count == 2

    @pytest.mark.asyncio
    async def test_price_feed_failure(
        self, service: MonitoringService, fake_feed: MagicMock
    ) -> None:
        fake_feed.fetch_prices.side_effect = PriceFeedError("No valid USD price for 'chainlink'")

        report = await service.run_full_cycle()

        assert isinstance(report, ErrorReport)
        assert report.failed_step == "price"
        assert report.completed_steps == ()

    @pytest.mark.asyncio
    async def test_unexpected_strategy_error_becomes_agent_error(
        self,
        sample_app_config: AppConfig,
        fake_chain: FakeChain,
        fake_feed: MagicMock,
        notifier: AsyncMock,
    ) -> None:
        strategy = MagicMock()
        strategy.ask = AsyncMock(side_effect=RuntimeError("model unavailable"))
        service = _service(sample_app_config, fake_chain, fake_feed, notifier, strategy)

        report = await service.run_full_cycle()

        assert isinstance(report, ErrorReport)
        assert "model unavailable" in report.error_message

    @pytest.mark.asyncio
    async def test_strategy_timeout(
        self,
        sample_app_config: AppConfig,
        fake_chain: FakeChain,
        fake_feed: MagicMock,
        notifier: AsyncMock,
    ) -> None:
        async def slow(prompt: str, tools: object) -> str:
            await asyncio.sleep(5)
            return "late"

        strategy = MagicMock()
        strategy.ask = slow
        config = replace(sample_app_config, agent=AgentConfig(step_timeout_seconds=0.05))
        service = _service(config, fake_chain, fake_feed, notifier, strategy)

        report = await service.run_full_cycle()

        assert isinstance(report, ErrorReport)
        assert "timed out" in report.error_message

    @pytest.mark.asyncio
    async def test_write_failure_aborts_decision_step(
        self,
        sample_app_config: AppConfig,
        fake_chain: FakeChain,
        fake_feed: MagicMock,
        notifier: AsyncMock,
    ) -> None:
        fake_chain.values[(LEVERAGE, "borrowedWETH")] = 400 * E18
        fake_chain.fail_writes[(ROUTER, "triggerDeleverage")] = ChainWriteError(
            ROUTER, "triggerDeleverage", "execution reverted"
        )
        service = _service(_autonomous(sample_app_config), fake_chain, fake_feed, notifier)

        report = await service.run_full_cycle()

        assert isinstance(report, ErrorReport)
        assert report.failed_step == "actions"
        assert "execution reverted" in report.error_message

    @pytest.mark.asyncio
    async def test_report_delivery_failure_swallowed(
        self, service: MonitoringService, fake_feed: MagicMock, notifier: AsyncMock
    ) -> None:
        fake_feed.fetch_prices.side_effect = PriceFeedError("down")
        notifier.send_alert.side_effect = RuntimeError("telegram down")

        report = await service.run_full_cycle()

        assert isinstance(report, ErrorReport)

    @pytest.mark.asyncio
    async def test_failed_cycle_does_not_block_next(
        self, service: MonitoringService, fake_feed: MagicMock
    ) -> None:
        fake_feed.fetch_prices.side_effect = PriceFeedError("down")
        assert isinstance(await service.run_full_cycle(), ErrorReport)

        fake_feed.fetch_prices.side_effect = None
        fake_feed.fetch_prices.return_value = make_quotes()
        assert isinstance(await service.run_full_cycle(), CycleReport)


class TestOverlap:
    @staticmethod
    def _blocking_strategy(release: asyncio.Event) -> MagicMock:
        async def ask(prompt: str, tools: object) -> str:
            await release.wait()
            return "ok"

        strategy = MagicMock()
        strategy.ask = ask
        return strategy

    @pytest.mark.asyncio
    async def test_overlapping_cycle_skipped(
        self,
        sample_app_config: AppConfig,
        fake_chain: FakeChain,
        fake_feed: MagicMock,
        notifier: AsyncMock,
    ) -> None:
        release = asyncio.Event()
        service = _service(
            sample_app_config, fake_chain, fake_feed, notifier, self._blocking_strategy(release)
        )

        first = asyncio.create_task(service.run_full_cycle())
        await asyncio.sleep(0)
        assert await service.run_full_cycle() is None

        release.set()
        assert isinstance(await first, CycleReport)

    @pytest.mark.asyncio
    async def test_overlap_allowed_when_disabled(
        self,
        sample_app_config: AppConfig,
        fake_chain: FakeChain,
        fake_feed: MagicMock,
        notifier: AsyncMock,
    ) -> None:
        release = asyncio.Event()
        config = replace(
            sample_app_config,
            schedule=ScheduleConfig(run_on_startup=False, skip_overlapping_cycles=False),
        )
        service = _service(config, fake_chain, fake_feed, notifier, self._blocking_strategy(release))

        tasks = [asyncio.create_task(service.run_full_cycle()) for _ in range(2)]
        await asyncio.sleep(0)
        release.set()
        results = await asyncio.gather(*tasks)

        assert all(isinstance(r, CycleReport) for r in results)

    @pytest.mark.asyncio
    async def test_finished_cycle_does_not_reset_running_one(
        self,
        sample_app_config: AppConfig,
        fake_chain: FakeChain,
        fake_feed: MagicMock,
        notifier: AsyncMock,
    ) -> None:
        gates = [asyncio.Event(), asyncio.Event()]
        calls = {"n": 0}

        async def ask(prompt: str, tools: object) -> str:
            calls["n"] += 1
            if calls["n"] <= len(gates):
                await gates[calls["n"] - 1].wait()
            return "ok"

        strategy = MagicMock()
        strategy.ask = ask
        config = replace(
            sample_app_config,
            schedule=ScheduleConfig(run_on_startup=False, skip_overlapping_cycles=False),
        )
        service = _service(config, fake_chain, fake_feed, notifier, strategy)

        first = asyncio.create_task(service.run_full_cycle())
        await asyncio.sleep(0)
        second = asyncio.create_task(service.run_full_cycle())
        await asyncio.sleep(0)
        assert service.cycles_in_flight == 2

        gates[0].set()
        assert isinstance(await first, CycleReport)
        assert service.cycles_in_flight == 1
        assert service.phase is CyclePhase.GATHERING_PRICE

        gates[1].set()
        assert isinstance(await second, CycleReport)
        assert service.cycles_in_flight == 0
        assert service.phase is CyclePhase.IDLE

    @pytest.mark.asyncio
    async def test_quick_check_runs_during_cycle(
        self,
        sample_app_config: AppConfig,
        fake_chain: FakeChain,
        fake_feed: MagicMock,
        notifier: AsyncMock,
    ) -> None:
        release = asyncio.Event()
        service = _service(
            sample_app_config, fake_chain, fake_feed, notifier, self._blocking_strategy(release)
        )

        cycle = asyncio.create_task(service.run_full_cycle())
        await asyncio.sleep(0)
        result = await asyncio.wait_for(service.run_quick_check(), timeout=1)

        assert isinstance(result, dict)
        release.set()
        await cycle


class TestQuickCheck:
    @pytest.mark.asyncio
    async def test_no_alert_on_small_move(
        self, service: MonitoringService, fake_feed: MagicMock, notifier: AsyncMock
    ) -> None:
        await service.run_quick_check()
        fake_feed.fetch_prices.return_value = make_quotes(link=15.5)
        result = await service.run_quick_check()

        assert isinstance(result, dict)
        assert result["flagged"] is False
        notifier.send_alert.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_alert_on_large_move(
        self, service: MonitoringService, fake_feed: MagicMock, notifier: AsyncMock
    ) -> None:
        await service.run_quick_check()
        fake_feed.fetch_prices.return_value = make_quotes(link=18.0)
        await service.run_quick_check()

        notifier.send_alert.assert_awaited_once()
        message = notifier.send_alert.await_args.args[0]
        assert "chainlink" in message
        assert "+20.00%" in message

    @pytest.mark.asyncio
    async def test_feed_failure_reported(
        self, service: MonitoringService, fake_feed: MagicMock, notifier: AsyncMock
    ) -> None:
        fake_feed.fetch_prices.side_effect = PriceFeedError("No valid USD price for 'chainlink'")

        result = await service.run_quick_check()

        assert isinstance(result, ErrorReport)
        assert result.job == "quick_check"
        notifier.send_alert.assert_awaited_once()
        assert service.state.last_prices == {}


class TestYieldGeneration:
    @pytest.mark.asyncio
    async def test_accrues(self, service: MonitoringService, fake_chain: FakeChain) -> None:
        result = await service.run_yield_generation()
        assert isinstance(result, dict)
        assert fake_chain.writes == [(POOL, "accrue", [ASSET])]

    @pytest.mark.asyncio
    async def test_accrues_even_when_not_autonomous(
        self, service: MonitoringService, fake_chain: FakeChain
    ) -> None:
        assert service._config.actions.autonomous is False
        await service.run_yield_generation()
        await service.run_yield_generation()
        assert len(fake_chain.writes) == 2

    @pytest.mark.asyncio
    async def test_skipped_without_pool(
        self,
        sample_app_config: AppConfig,
        fake_chain: FakeChain,
        fake_feed: MagicMock,
        notifier: AsyncMock,
    ) -> None:
        config = replace(
            sample_app_config,
            contracts=ContractsConfig(vault=VAULT, router=ROUTER, asset_token=ASSET),
        )
        service = _service(config, fake_chain, fake_feed, notifier)
        assert await service.run_yield_generation() is None
        assert fake_chain.writes == []

    @pytest.mark.asyncio
    async def test_write_failure_reported(
        self, service: MonitoringService, fake_chain: FakeChain, notifier: AsyncMock
    ) -> None:
        fake_chain.fail_writes[(POOL, "accrue")] = ChainWriteError(POOL, "accrue", "reverted")

        result = await service.run_yield_generation()

        assert isinstance(result, ErrorReport)
        assert result.job == "yield_generation"
        notifier.send_alert.assert_awaited_once()
