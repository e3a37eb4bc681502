"""Tool registry — terminal tools by name, dispatch from JSON arguments."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator
from typing import Any

from shellpilot.tool.base import BaseTool

logger = logging.getLogger(__name__)


class ToolRegistry:
    """Name-keyed set of tools exposed to a caller (CLI or agent host)."""

    def __init__(self) -> None:
        self._tools: dict[str, BaseTool] = {}

    def register(self, tool: BaseTool) -> None:
        if tool.name in self._tools:
            logger.warning("Tool %s already registered, overwriting", tool.name)
        self._tools[tool.name] = tool

    def register_many(self, tools: Iterable[BaseTool]) -> None:
        for tool in tools:
            self.register(tool)

    def get(self, name: str) -> BaseTool | None:
        return self._tools.get(name)

    def names(self) -> list[str]:
        return list(self._tools)

    def get_specs(self, names: list[str] | None = None) -> list[dict[str, Any]]:
        """OpenAI function specs in registration order, optionally only ``names``."""
        wanted = self._tools.values() if names is None else (
            t for t in self._tools.values() if t.name in names
        )
        return [t.to_openai_spec() for t in wanted]

    async def dispatch(self, name: str, arguments: dict[str, Any] | None = None) -> tuple[str, bool]:
        """Run ``name`` with raw ``arguments`` and return ``(content, is_error)``.

        An unknown name is reported as an error result listing what exists.
        """
        tool = self._tools.get(name)
        if tool is None:
            available = ", ".join(self._tools) or "(none)"
            return f"Unknown tool: {name}. Available tools: {available}", True

        logger.debug("Dispatching %s(%s)", name, arguments)
        return await tool(arguments or {})

    def __iter__(self) -> Iterator[BaseTool]:
        return iter(self._tools.values())

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: str) -> bool:
        return name in self._tools
