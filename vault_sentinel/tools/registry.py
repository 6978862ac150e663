"""Tool registry — named, schema-validated operations offered to a decision strategy.

Every tool declares its input as a pydantic model (or none). Input is
validated before the handler runs, so a rejected call has no side effects.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Iterable, Iterator, Mapping

import pydantic
from pydantic import BaseModel

from ..errors import DuplicateActionError, ValidationError

logger = logging.getLogger(__name__)


class ToolKind(str, Enum):
    READ = "read"
    SIMULATION = "simulation"
    PREPARE = "prepare"
    WRITE = "write"


@dataclass(frozen=True)
class Tool:
    """A single named operation."""

    name: str
    description: str
    handler: Callable[..., Awaitable[Any]]
    input_model: type[BaseModel] | None = None
    kind: ToolKind = ToolKind.READ

    @property
    def input_schema(self) -> dict[str, Any] | None:
        if self.input_model is None:
            return None
        return self.input_model.model_json_schema()

    @property
    def requires_input(self) -> bool:
        if self.input_model is None:
            return False
        return any(f.is_required() for f in self.input_model.model_fields.values())

    def validate(self, payload: Mapping[str, Any] | None) -> BaseModel | None:
        """Check ``payload`` against the input model; raises ValidationError."""
        if self.input_model is None:
            if payload:
                raise ValidationError(self.name, "tool takes no input")
            return None
        try:
            return self.input_model.model_validate(dict(payload or {}))
        except pydantic.ValidationError as e:
            raise ValidationError(self.name, str(e)) from e

    async def run(self, params: BaseModel | None) -> Any:
        if params is None:
            return await self.handler()
        return await self.handler(params)

    async def execute(self, payload: Mapping[str, Any] | None = None) -> Any:
        return await self.run(self.validate(payload))

    def describe(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "kind": self.kind.value,
            "inputSchema": self.input_schema,
        }


class ToolRegistry:
    """All tools known to the service, by name."""

    def __init__(self) -> None:
        self._tools: dict[str, Tool] = {}

    def register(self, tool: Tool) -> Tool:
        if tool.name in self._tools:
            raise ValueError(f"Tool '{tool.name}' is already registered")
        self._tools[tool.name] = tool
        return tool

    def get(self, name: str) -> Tool | None:
        return self._tools.get(name)

    def names(self) -> list[str]:
        return list(self._tools)

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    async def execute(self, name: str, payload: Mapping[str, Any] | None = None) -> Any:
        tool = self._tools.get(name)
        if tool is None:
            raise ValidationError(name, "unknown tool")
        return await tool.execute(payload)

    def subset(
        self, names: Iterable[str], ledger: set[tuple[str, str]] | None = None
    ) -> ToolSet:
        """Tools offered to one step. Names not registered are left out."""
        tools = []
        for name in names:
            tool = self._tools.get(name)
            if tool is None:
                logger.debug("Tool '%s' not registered, not offered", name)
                continue
            tools.append(tool)
        return ToolSet(tools, ledger)


class ToolSet:
    """The tools offered to one decision step.

    Write tools go through a ledger shared by every step of a cycle: the same
    write with the same input runs at most once per cycle.
    """

    def __init__(
        self, tools: Iterable[Tool], ledger: set[tuple[str, str]] | None = None
    ) -> None:
        self._tools = {t.name: t for t in tools}
        self._ledger = ledger if ledger is not None else set()

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __iter__(self) -> Iterator[Tool]:
        return iter(self._tools.values())

    def __len__(self) -> int:
        return len(self._tools)

    def names(self) -> list[str]:
        return list(self._tools)

    def get(self, name: str) -> Tool | None:
        return self._tools.get(name)

    def reads(self) -> list[Tool]:
        """Read tools callable without input."""
        return [
            t for t in self._tools.values()
            if t.kind is ToolKind.READ and not t.requires_input
        ]

    def describe(self) -> list[dict[str, Any]]:
        return [t.describe() for t in self._tools.values()]

    async def execute(self, name: str, payload: Mapping[str, Any] | None = None) -> Any:
        tool = self._tools.get(name)
        if tool is None:
            raise ValidationError(name, "tool is not available in this step")

        params = tool.validate(payload)

        if tool.kind is ToolKind.WRITE:
            dumped = params.model_dump(mode="json") if params is not None else None
            key = (name, json.dumps(dumped, sort_keys=True))
            if key in self._ledger:
                raise DuplicateActionError(name, "already invoked with this input in this cycle")
            self._ledger.add(key)
            logger.info("Executing write tool %s %s", name, dumped or "")

        return await tool.run(params)
