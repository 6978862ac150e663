"""Exception taxonomy for the monitoring core."""
from __future__ import annotations


class SentinelError(Exception):
    """Base class for every error raised by the monitoring core."""


class ValidationError(SentinelError):
    """Tool input rejected before execution."""

    def __init__(self, tool: str, message: str) -> None:
        super().__init__(f"{tool}: {message}")
        self.tool = tool


class DuplicateActionError(ValidationError):
    """A write tool was invoked twice with the same input in one cycle."""


class ChainError(SentinelError):
    """Base class for on-chain read/write failures."""


class ChainReadError(ChainError):
    """A contract read failed after exhausting retries."""

    def __init__(self, target: str, method: str, attempts: int, message: str) -> None:
        super().__init__(
            f"{method}() on {target} failed after {attempts} attempt(s): {message}"
        )
        self.target = target
        self.method = method
        self.attempts = attempts


class ChainWriteError(ChainError):
    """A transaction reverted, was rejected, or failed to confirm."""

    def __init__(
        self,
        target: str,
        method: str,
        reason: str,
        tx_hash: str | None = None,
    ) -> None:
        super().__init__(f"{method}() on {target} failed: {reason}")
        self.target = target
        self.method = method
        self.reason = reason
        self.tx_hash = tx_hash


class PriceFeedError(SentinelError):
    """Price API failure or degenerate (zero / missing) price."""


class AgentError(SentinelError):
    """Decision strategy failed or timed out."""


class SchedulerError(SentinelError):
    """An exception escaped a scheduled job body."""

    def __init__(self, job_id: str, cause: BaseException) -> None:
        super().__init__(f"Job '{job_id}' failed: {cause}")
        self.job_id = job_id
        self.__cause__ = cause
