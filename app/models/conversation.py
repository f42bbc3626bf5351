"""API request and response models."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class MessageRequest(BaseModel):
    """Request model for sending a message to a project's conversation."""

    message: str


class ProjectCreateRequest(BaseModel):
    """Request model for creating a project."""

    name: str | None = None
    prompt: str | None = Field(default=None, description="Initial request, used to generate a name")


class ProjectResponse(BaseModel):
    """Response model for a project."""

    id: str
    name: str
    created_at: datetime


class ToolCallView(BaseModel):
    """Tool call as shown in the message list."""

    id: str
    name: str
    arguments: dict[str, Any]
    status: str
    result: str | None = None


class MessageView(BaseModel):
    """Display projection of a persisted message."""

    id: str
    role: str
    content: str
    reasoning: str | None = None
    agent_id: str | None = None
    delegated_from: str | None = None
    tool_calls: list[ToolCallView] = []
    created_at: datetime


class DeleteMessagesRequest(BaseModel):
    """Request model for deleting several messages."""

    message_ids: list[str]


class FileWriteRequest(BaseModel):
    """Request model for writing a file."""

    content: str


class FileResponse(BaseModel):
    """Response model for a project file."""

    path: str
    content: str
    updated_at: datetime


class VersionResponse(BaseModel):
    """Response model for a version snapshot."""

    id: str
    version_number: int
    description: str | None = None
    agent_id: str | None = None
    message_id: str | None = None
    file_count: int
    created_at: datetime


class CancelResponse(BaseModel):
    """Response model for a cancellation request."""

    cancelled: bool


class TerminalResponse(BaseModel):
    """Recent sandbox output of a project."""

    lines: list[str]


class AgentResponse(BaseModel):
    """Public view of an agent."""

    id: str
    name: str
    name_en: str
    description: str
    tools: list[str]
    color: str
    icon: str


class HealthResponse(BaseModel):
    """Response model for health check endpoint."""

    status: str
    timestamp: datetime
    version: str
