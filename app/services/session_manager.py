"""Session management for in-memory storage."""

from datetime import UTC, datetime, timedelta

from cuid2 import cuid_wrapper

from app.models.session import Session
from app.utils.cancellation import CancellationToken
from app.utils.logging import get_logger

logger = get_logger(__name__)

cuid = cuid_wrapper()


class SessionBusyError(RuntimeError):
    """Raised when a project already has a turn in flight."""


class InMemorySessionManager:
    """In-memory session manager with one session per project."""

    def __init__(self, session_timeout_minutes: int = 60):
        """Initialize session manager.

        Args:
            session_timeout_minutes: Minutes of inactivity before an idle session expires
        """
        self.sessions: dict[str, Session] = {}
        self.session_timeout = timedelta(minutes=session_timeout_minutes)

    def get_or_create_session(self, project_id: str) -> Session:
        """Get the project's session, creating it if needed.

        Args:
            project_id: Project identifier

        Returns:
            Session object (existing or newly created)
        """
        self._cleanup_expired_sessions()

        session = self.sessions.get(project_id)
        if session:
            session.update_activity()
            return session

        session = Session(session_id=self._generate_session_id(), project_id=project_id)
        self.sessions[project_id] = session
        logger.debug(f"Created session {session.session_id} for project {project_id}")
        return session

    def get_session(self, project_id: str) -> Session | None:
        """Get the project's session, if any."""
        self._cleanup_expired_sessions()
        return self.sessions.get(project_id)

    def begin_turn(self, project_id: str, agent_id: str) -> CancellationToken:
        """Start a turn for the project.

        Raises:
            SessionBusyError: If another turn of the project is still running
        """
        session = self.get_or_create_session(project_id)
        if session.busy:
            raise SessionBusyError(f"A turn is already running for project {project_id}")
        return session.begin_turn(agent_id)

    def end_turn(self, project_id: str) -> None:
        """Mark the project's turn as finished."""
        session = self.sessions.get(project_id)
        if session:
            session.end_turn()

    def cancel_turn(self, project_id: str) -> bool:
        """Cancel the project's in-flight turn.

        Returns:
            True if a running turn was signalled, False if nothing was running
        """
        session = self.sessions.get(project_id)
        cancelled = bool(session and session.cancel())
        if cancelled:
            logger.info(f"Cancellation requested for project {project_id}")
        return cancelled

    def delete_session(self, project_id: str) -> bool:
        """Delete a session.

        Returns:
            True if session was deleted, False if not found
        """
        if project_id in self.sessions:
            del self.sessions[project_id]
            return True
        return False

    def _generate_session_id(self) -> str:
        """Generate a new CUID-based session ID."""
        return cuid()

    def _cleanup_expired_sessions(self) -> None:
        """Remove idle sessions that expired."""
        current_time = datetime.now(UTC)
        expired_sessions = [
            project_id
            for project_id, session in self.sessions.items()
            if not session.busy and current_time - session.last_activity > self.session_timeout
        ]

        for project_id in expired_sessions:
            del self.sessions[project_id]

    def get_session_count(self) -> int:
        """Get current number of active sessions."""
        self._cleanup_expired_sessions()
        return len(self.sessions)

    def get_busy_session_count(self) -> int:
        """Get current number of sessions with a turn in flight."""
        return sum(1 for session in self.sessions.values() if session.busy)


session_manager = InMemorySessionManager()
