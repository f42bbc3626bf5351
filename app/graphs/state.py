"""State definitions for the LangGraph conversation loop."""

import os
from dataclasses import dataclass, field
from typing import Literal

from pydantic import BaseModel, Field

from app.clients.anthropic import ModelClient
from app.models.events import EventSink, LoopEvent, discard_event
from app.models.llm import LLMMessage, ParsedResponse
from app.models.messages import ConversationMessage, DelegationRequest, ToolCall
from app.services.sandbox import DEFAULT_COMMAND_TIMEOUT, SandboxRuntime
from app.services.storage import FileStore, MessageStore
from app.tools.executor import ToolExecutor
from app.utils.cancellation import CancellationToken

StopReason = Literal["done", "delegation", "max_iterations", "cancelled"]

DEFAULT_MAX_ITERATIONS = 40
DEFAULT_MAX_DELEGATION_ROUNDS = 5


@dataclass
class LoopConfig:
    """Limits for the conversation loop and delegation rounds."""

    max_iterations: int = DEFAULT_MAX_ITERATIONS
    max_delegation_rounds: int = DEFAULT_MAX_DELEGATION_ROUNDS
    command_timeout: float = DEFAULT_COMMAND_TIMEOUT

    @classmethod
    def from_env(cls) -> "LoopConfig":
        """Build the configuration from environment variables."""
        return cls(
            max_iterations=int(os.getenv("LOOP_MAX_ITERATIONS", DEFAULT_MAX_ITERATIONS)),
            max_delegation_rounds=int(os.getenv("DELEGATION_MAX_ROUNDS", DEFAULT_MAX_DELEGATION_ROUNDS)),
            command_timeout=float(os.getenv("COMMAND_TIMEOUT_SECONDS", DEFAULT_COMMAND_TIMEOUT)),
        )

    @property
    def recursion_limit(self) -> int:
        """Graph step limit: two nodes per iteration plus the final hops."""
        return 2 * self.max_iterations + 5


@dataclass
class LoopDependencies:
    """Collaborators of one loop run, passed to the nodes through the run config."""

    model_client: ModelClient
    message_store: MessageStore
    file_store: FileStore
    runtime: SandboxRuntime
    executor: ToolExecutor = field(default_factory=ToolExecutor)
    config: LoopConfig = field(default_factory=LoopConfig)
    cancel_token: CancellationToken = field(default_factory=CancellationToken)
    sink: EventSink = discard_event

    async def emit(self, event_type, agent_id: str, **data) -> None:
        await self.sink(LoopEvent(type=event_type, agent_id=agent_id, data=data))


class LoopState(BaseModel):
    """State of one agent's conversation loop.

    The history holds what is sent to the model; messages holds the assistant
    messages this run has persisted.
    """

    project_id: str
    agent_id: str
    delegated_from: str | None = None
    history: list[LLMMessage] = Field(default_factory=list)

    # Current iteration
    iteration: int = 0
    message_id: str | None = None
    raw_response: str = ""
    parsed: ParsedResponse | None = None
    pending_tool_calls: list[ToolCall] = Field(default_factory=list)

    # Results
    messages: list[ConversationMessage] = Field(default_factory=list)
    delegations: list[DelegationRequest] = Field(default_factory=list)
    final_content: str = ""
    files_changed: bool = False
    stop_reason: StopReason | None = None
