"""Tools the agents can call."""

from app.tools.executor import ToolExecutor
from app.tools.registry import ToolsRegistry, get_tools_registry

__all__ = ["ToolExecutor", "ToolsRegistry", "get_tools_registry"]
