"""Report sink — renders cycle reports and fans them out to notifiers."""
from __future__ import annotations

import logging
from typing import Sequence

from ..interfaces.notifier import Notifier
from ..models import CycleReport, ErrorReport

logger = logging.getLogger(__name__)


def _ts(report: CycleReport | ErrorReport) -> str:
    return report.timestamp.strftime("%Y-%m-%d %H:%M:%S UTC")


def format_cycle_report(report: CycleReport) -> str:
    return (
        f"📊 Vault monitoring cycle · {_ts(report)}\n"
        f"\n"
        f"💰 Prices\n{report.price_section}\n"
        f"\n"
        f"📈 Leverage strategy\n{report.leverage_section}\n"
        f"\n"
        f"⚠️ Liquidation risk\n{report.risk_section}\n"
        f"\n"
        f"🏦 Vault\n{report.vault_section}\n"
        f"\n"
        f"🤖 Actions\n{report.actions_section}\n"
        f"\n"
        f"Completed in {report.duration_ms} ms"
    )


def format_error_report(report: ErrorReport) -> str:
    lines = [f"❌ {report.job} failed · {_ts(report)}", ""]
    if report.failed_step:
        lines.append(f"Failed step: {report.failed_step}")
    if report.completed_steps:
        lines.append(f"Completed steps: {', '.join(report.completed_steps)}")
    lines.append(f"Error: {report.error_message}")
    return "\n".join(lines)


class ReportSink:
    """Delivers reports to every configured notifier.

    Delivery failures are logged and swallowed; nothing raised here reaches
    the monitoring cycle.
    """

    def __init__(self, notifiers: Sequence[Notifier] = ()) -> None:
        self._notifiers = list(notifiers)

    @property
    def notifiers(self) -> list[Notifier]:
        return list(self._notifiers)

    async def deliver(self, report: CycleReport) -> None:
        await self.deliver_log(format_cycle_report(report), silent=True)

    async def deliver_error(self, report: ErrorReport) -> None:
        await self.deliver_alert(format_error_report(report), subject=f"{report.job} error")

    async def deliver_log(self, message: str, silent: bool = True) -> None:
        if not self._notifiers:
            logger.info("Report (no notifiers configured):\n%s", message)
            return
        for notifier in self._notifiers:
            try:
                await notifier.send_log(message, silent=silent)
            except Exception as e:
                logger.error("Notifier send_log failed: %s", e)

    async def deliver_alert(self, message: str, subject: str = "") -> None:
        if not self._notifiers:
            logger.warning("Alert (no notifiers configured): %s\n%s", subject, message)
            return
        for notifier in self._notifiers:
            try:
                await notifier.send_alert(message, subject=subject)
            except Exception as e:
                logger.error("Notifier send_alert failed: %s", e)
