"""Tool base class and dispatch table."""

from clawcore.tools.base import Tool
from clawcore.tools.registry import (
    ToolArgumentError,
    ToolError,
    ToolNotFoundError,
    ToolRegistry,
)

__all__ = [
    "Tool",
    "ToolRegistry",
    "ToolError",
    "ToolNotFoundError",
    "ToolArgumentError",
]
