"""Tool registry - an explicit instance, threaded through the execution context."""

from __future__ import annotations

from typing import Any, Iterable, Optional

from codeloop.tools.base import Tool


class ToolRegistry:
    """Name → tool lookup plus the OpenAI-format declarations sent to the model."""

    def __init__(self, tools: Iterable[Tool] = ()) -> None:
        self._tools: dict[str, Tool] = {}
        for tool in tools:
            self.register(tool)

    def register(self, tool: Tool) -> None:
        if not tool.name:
            raise ValueError(f"{type(tool).__name__} has no name")
        if tool.name in self._tools:
            raise ValueError(f"Tool '{tool.name}' is already registered")
        self._tools[tool.name] = tool

    def get(self, name: str) -> Optional[Tool]:
        return self._tools.get(name)

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    @property
    def names(self) -> list[str]:
        return list(self._tools)

    def is_readonly(self, name: str) -> bool:
        """False for unknown tools: they never qualify a batch for concurrency."""
        tool = self._tools.get(name)
        return tool is not None and tool.readonly

    def to_openai_tools(self) -> list[dict[str, Any]]:
        return [tool.to_openai() for tool in self._tools.values()]
