"""Tool dispatch table: name -> tool, schemas and execution by name."""

from __future__ import annotations

import asyncio
import time
from typing import Any

import jsonschema
import structlog

from clawcore.tools.base import Tool

# ── Exceptions ─────────────────────────────────────────────────────────────────


class ToolError(Exception):
    """Base class for tool dispatch errors."""


class ToolNotFoundError(ToolError):
    """Raised when executing a tool name that is not registered."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Tool not found: {name}")
        self.name = name


class ToolArgumentError(ToolError):
    """Raised when tool arguments do not validate against the tool's schema."""

    def __init__(self, name: str, detail: str) -> None:
        super().__init__(f"Invalid arguments for tool {name}: {detail}")
        self.name = name
        self.detail = detail


# ── ToolRegistry ───────────────────────────────────────────────────────────────


class ToolRegistry:
    """
    Registry of the tools available to the agent.

    Registration order is preserved in ``definitions()``, ``names()`` and
    ``summaries()``. Registering a tool under an existing name replaces it.
    """

    def __init__(self) -> None:
        self._tools: dict[str, Tool] = {}
        self._logger = structlog.get_logger("clawcore.tools")

    def register(self, tool: Tool) -> None:
        if not tool.name:
            raise ValueError(f"Tool {type(tool).__name__} has no name")
        if tool.name in self._tools:
            self._logger.warning("tool_replaced", tool=tool.name)
        self._tools[tool.name] = tool
        self._logger.debug("tool_registered", tool=tool.name)

    def unregister(self, name: str) -> bool:
        """Remove a tool. Returns False if it was not registered."""
        return self._tools.pop(name, None) is not None

    def get(self, name: str) -> Tool | None:
        return self._tools.get(name)

    def has(self, name: str) -> bool:
        return name in self._tools

    def names(self) -> list[str]:
        return list(self._tools)

    def clear(self) -> None:
        self._tools.clear()

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def definitions(self) -> list[dict[str, Any]]:
        """Return every tool's schema in OpenAI function-calling format."""
        return [tool.definition() for tool in self._tools.values()]

    def summaries(self) -> list[str]:
        return [tool.summary() for tool in self._tools.values()]

    async def execute(self, name: str, args: dict[str, Any]) -> str:
        """
        Validate arguments and run a tool by name.

        Args:
            name: Registered tool name.
            args: Arguments decoded from the LLM's tool call.

        Returns:
            The tool's textual result.

        Raises:
            ToolNotFoundError: If no tool is registered under ``name``.
            ToolArgumentError: If ``args`` fail the tool's JSON Schema.
            Exception: Anything the tool itself raises.
        """
        tool = self._tools.get(name)
        if tool is None:
            raise ToolNotFoundError(name)

        if tool.parameters:
            try:
                jsonschema.validate(args, dict(tool.parameters))
            except jsonschema.ValidationError as exc:
                raise ToolArgumentError(name, exc.message) from exc

        start = time.monotonic()
        result = tool.execute(args)
        if asyncio.iscoroutine(result):
            result = await result
        text = "" if result is None else str(result)
        self._logger.info(
            "tool_executed",
            tool=name,
            duration_ms=round((time.monotonic() - start) * 1000, 2),
            result_chars=len(text),
        )
        return text
