"""Message and tool call data models."""

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any, Literal

from cuid2 import cuid_wrapper
from pydantic import BaseModel, Field

cuid = cuid_wrapper()


class ToolCallStatus(StrEnum):
    """Lifecycle status of a tool call."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (ToolCallStatus.COMPLETED, ToolCallStatus.ERROR)


_ALLOWED_TRANSITIONS: dict[ToolCallStatus, set[ToolCallStatus]] = {
    ToolCallStatus.PENDING: {ToolCallStatus.RUNNING},
    ToolCallStatus.RUNNING: {ToolCallStatus.COMPLETED, ToolCallStatus.ERROR},
    ToolCallStatus.COMPLETED: set(),
    ToolCallStatus.ERROR: set(),
}


class InvalidToolCallTransition(ValueError):
    """Raised when a tool call status would move backwards or skip a state."""


class ToolCall(BaseModel):
    """A tool call requested by the model within one assistant response."""

    id: str
    name: str
    arguments: dict[str, Any] = Field(default_factory=dict)
    status: ToolCallStatus = ToolCallStatus.PENDING
    result: str | None = None

    def transition(self, status: ToolCallStatus, result: str | None = None) -> None:
        """Move the call to a new status.

        Args:
            status: Target status
            result: Result text to record with the transition

        Raises:
            InvalidToolCallTransition: If the move is not pending->running->terminal
        """
        if status not in _ALLOWED_TRANSITIONS[self.status]:
            raise InvalidToolCallTransition(f"Tool call {self.id}: cannot move from {self.status} to {status}")
        self.status = status
        if result is not None:
            self.result = result


class DelegationRequest(BaseModel):
    """A sub-task handed from the leader to a specialist agent."""

    agent_id: str
    task: str
    requirements: str = ""
    context: str = ""


class ConversationMessage(BaseModel):
    """A persisted message in a project's conversation."""

    id: str = Field(default_factory=cuid)
    project_id: str
    role: Literal["user", "assistant"]
    content: str
    reasoning: str | None = None
    agent_id: str | None = None
    delegated_from: str | None = None
    tool_calls: list[ToolCall] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
