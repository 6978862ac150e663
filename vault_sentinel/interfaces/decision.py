"""Decision strategy protocol — the collaborator that picks actions."""
from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from ..tools.registry import ToolSet


class DecisionStrategy(Protocol):
    """Answers a prompt, optionally invoking tools from the offered set."""

    async def ask(self, prompt: str, tools: ToolSet) -> str: ...
