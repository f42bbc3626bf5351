"""Events published while a turn is running."""

from collections.abc import Awaitable, Callable
from typing import Any, Literal

from pydantic import BaseModel, Field

EventType = Literal[
    "turn_started",
    "message_started",
    "text_delta",
    "tool_status",
    "files_changed",
    "message_completed",
    "delegation_started",
    "delegation_completed",
    "cancelled",
    "error",
    "done",
]


class LoopEvent(BaseModel):
    """A single update for presentation layers subscribed to a turn."""

    type: EventType
    agent_id: str | None = None
    data: dict[str, Any] = Field(default_factory=dict)

    def to_line(self) -> str:
        """Serialise as one NDJSON line."""
        return self.model_dump_json() + "\n"


EventSink = Callable[[LoopEvent], Awaitable[None]]


async def discard_event(event: LoopEvent) -> None:
    """Event sink that drops everything."""
    return None
