"""Base types and definitions for tools."""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel

from app.models.agent import AgentIdentity
from app.models.llm import LLMTool
from app.models.messages import DelegationRequest
from app.services.sandbox import DEFAULT_COMMAND_TIMEOUT, SandboxRuntime
from app.services.storage import FileStore


class ToolError(Exception):
    """Expected tool failure, reported back to the model as an error result."""


@dataclass
class ToolOutcome:
    """Result of executing one tool call."""

    text: str
    is_error: bool = False
    delegation: DelegationRequest | None = None


@dataclass
class ToolContext:
    """Everything a tool handler may touch while executing."""

    project_id: str
    agent: AgentIdentity
    file_store: FileStore
    runtime: SandboxRuntime
    command_timeout: float = DEFAULT_COMMAND_TIMEOUT


ToolHandler = Callable[[Any, ToolContext], Awaitable[ToolOutcome]]


@dataclass
class ToolDefinition:
    """Definition of a tool available to the agents."""

    name: str
    description: str
    input_schema_class: type[BaseModel]
    handler: ToolHandler
    mutates_files: bool = False

    def get_json_schema(self) -> dict[str, Any]:
        """Get JSON schema for this tool's input."""
        return self.input_schema_class.model_json_schema()

    def parse_input(self, raw_input: dict[str, Any]) -> BaseModel:
        """Parse and validate tool input."""
        return self.input_schema_class.model_validate(raw_input)

    def to_llm_tool(self) -> LLMTool:
        """Schema offered to the model."""
        return LLMTool(name=self.name, description=self.description, input_schema=self.get_json_schema())
