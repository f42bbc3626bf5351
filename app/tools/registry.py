"""Tools registry for the agent tool catalog."""

from app.models.agent import AgentIdentity
from app.models.llm import LLMTool
from app.tools.base import ToolDefinition
from app.tools.command_tools import create_command_tools
from app.tools.delegate_task import create_delegate_task_tool
from app.tools.file_tools import create_file_tools


class ToolsRegistry:
    """Registry for the tools agents may call."""

    def __init__(self):
        self._tools: dict[str, ToolDefinition] = {}
        self._register_default_tools()

    def _register_default_tools(self) -> None:
        """Register the file, command and delegation tools."""
        tools = [
            *create_file_tools(),
            *create_command_tools(),
            create_delegate_task_tool(),
        ]

        for tool in tools:
            self.register_tool(tool)

    def register_tool(self, tool: ToolDefinition) -> None:
        """Register a new tool in the registry."""
        self._tools[tool.name] = tool

    def get(self, name: str) -> ToolDefinition | None:
        """Look up a tool by name."""
        return self._tools.get(name)

    def get_llm_tools(self, agent: AgentIdentity) -> list[LLMTool]:
        """Get the schemas of the tools on the agent's allow-list, in allow-list order."""
        return [self._tools[name].to_llm_tool() for name in agent.tools if name in self._tools]

    def get_tool_names(self) -> list[str]:
        """Get list of all registered tool names."""
        return list(self._tools.keys())

    def has_tool(self, name: str) -> bool:
        """Check if a tool is registered."""
        return name in self._tools

    def is_mutating(self, name: str) -> bool:
        """Check whether the tool changes project files."""
        tool = self._tools.get(name)
        return tool is not None and tool.mutates_files


_tools_registry: ToolsRegistry | None = None


def get_tools_registry() -> ToolsRegistry:
    """Get or create tools registry instance."""
    global _tools_registry

    if _tools_registry is None:
        _tools_registry = ToolsRegistry()

    return _tools_registry
