"""Base class for tools callable by the LLM."""

from __future__ import annotations

import copy
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Mapping
from typing import Any

DEFAULT_PARAMETERS: Mapping[str, Any] = {"type": "object", "properties": {}}
"""Schema for tools that take no arguments. Shared; never mutate it."""


class Tool(ABC):
    """
    A named capability the LLM can invoke.

    Subclasses set ``name``, ``description`` and ``parameters`` (a JSON Schema
    object describing the arguments) and implement ``execute``. ``execute``
    may be a plain method or a coroutine; it returns the text handed back to
    the LLM as the tool result, or raises.

    Example::

        class EchoTool(Tool):
            name = "echo"
            description = "Echo the given text back."
            parameters = {
                "type": "object",
                "properties": {"text": {"type": "string"}},
                "required": ["text"],
            }

            async def execute(self, args):
                return args["text"]
    """

    name: str = ""
    description: str = ""
    parameters: Mapping[str, Any] = DEFAULT_PARAMETERS

    @abstractmethod
    def execute(self, args: dict[str, Any]) -> str | Awaitable[str]:
        """Run the tool with validated arguments and return its textual result."""

    def definition(self) -> dict[str, Any]:
        """Return the OpenAI function-calling schema for this tool.

        The parameters schema is a deep copy, so callers may edit the result.
        """
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": copy.deepcopy(dict(self.parameters)),
            },
        }

    def summary(self) -> str:
        """One-line description used in the system prompt."""
        return f"- `{self.name}` - {self.description}"
