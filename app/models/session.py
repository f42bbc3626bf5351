"""Session state for a project's conversation."""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from app.utils.cancellation import CancellationToken
from app.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class Session:
    """Per-project conversation context.

    Holds which agent continues the conversation when the user does not mention one,
    and the cancellation token of the turn currently in flight.
    """

    session_id: str
    project_id: str
    current_agent_id: str | None = None
    busy: bool = False
    cancel_token: CancellationToken = field(default_factory=CancellationToken)
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    last_activity: datetime = field(default_factory=lambda: datetime.now(UTC))

    def as_dict(self) -> dict[str, Any]:
        """Return the session as a dictionary."""
        return {
            "session_id": self.session_id,
            "project_id": self.project_id,
            "current_agent_id": self.current_agent_id,
            "busy": self.busy,
            "created_at": self.created_at.isoformat(),
            "last_activity": self.last_activity.isoformat(),
        }

    def update_activity(self) -> None:
        """Update the last activity timestamp."""
        self.last_activity = datetime.now(UTC)

    def begin_turn(self, agent_id: str) -> CancellationToken:
        """Mark a turn as started for the given agent and hand out a fresh token."""
        logger.info(f"Session {self.session_id} starting turn with agent {agent_id}")
        self.current_agent_id = agent_id
        self.busy = True
        self.cancel_token = CancellationToken()
        self.update_activity()
        return self.cancel_token

    def end_turn(self) -> None:
        """Mark the in-flight turn as finished."""
        self.busy = False
        self.update_activity()

    def cancel(self) -> bool:
        """Request cancellation of the in-flight turn, if any."""
        if not self.busy:
            return False
        self.cancel_token.cancel()
        return True
