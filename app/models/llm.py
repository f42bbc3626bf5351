"""LLM-related data models and types (provider-agnostic)."""

from typing import Any, Literal

from pydantic import BaseModel


class LLMMessage(BaseModel):
    """A message for LLM conversation."""

    role: Literal["user", "assistant"]
    content: str


class LLMTool(BaseModel):
    """Tool schema offered to the model."""

    name: str
    description: str
    input_schema: dict[str, Any]


class ParsedToolCall(BaseModel):
    """A tool call extracted from raw model output."""

    id: str
    name: str
    raw_arguments: str
    arguments: dict[str, Any]


class ParsedResponse(BaseModel):
    """Raw model output split into visible text, reasoning and tool calls."""

    visible_text: str
    reasoning: str | None = None
    tool_calls: list[ParsedToolCall] = []
