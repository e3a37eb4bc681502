"""Terminal tools and the registry that dispatches them by name."""

from shellpilot.tool.base import BaseTool, ToolResult
from shellpilot.tool.registry import ToolRegistry

__all__ = ["BaseTool", "ToolResult", "ToolRegistry"]
