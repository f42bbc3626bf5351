"""Conversation service: the entry point for user turns and project history."""

from dataclasses import dataclass

from app.agents.mentions import MentionResult, parse_mentions
from app.agents.registry import is_registered
from app.clients.anthropic import ModelClient, ModelTransportError, get_anthropic_client
from app.graphs.nodes import assistant_history_text
from app.graphs.state import LoopConfig, LoopDependencies
from app.models.events import EventSink, LoopEvent
from app.models.llm import LLMMessage
from app.models.messages import ConversationMessage
from app.models.project import Project, ProjectFile, ProjectVersion
from app.services.orchestrator import DelegationOrchestrator, OrchestrationResult
from app.services.sandbox import SandboxRuntime, get_sandbox_runtime
from app.services.session_manager import InMemorySessionManager, session_manager
from app.services.storage import (
    FileStore,
    InMemoryFileStore,
    InMemoryMessageStore,
    InMemoryProjectStore,
    MessageStore,
    ProjectStore,
)
from app.services.versions import InMemoryVersionStore, VersionStore
from app.tools.executor import ToolExecutor
from app.utils.cancellation import CancellationToken
from app.utils.logging import get_logger, log_context
from app.utils.response_parser import parse_response

logger = get_logger(__name__)

DEFAULT_PROJECT_NAME = "New Project"

PROJECT_NAME_PROMPT = (
    "Generate a short project name (2-5 words) for the following request. "
    "Reply with the name only, without quotes or punctuation.\n\nRequest: {prompt}"
)


class FileNotFoundInProjectError(LookupError):
    """Raised when a project file does not exist."""


@dataclass
class PreparedTurn:
    """A validated turn, ready to run."""

    project: Project
    mention: MentionResult
    user_message: ConversationMessage
    history: list[LLMMessage]
    cancel_token: CancellationToken

    @property
    def agent_id(self) -> str:
        return self.mention.agent.id


def build_history(messages: list[ConversationMessage]) -> list[LLMMessage]:
    """Model history from persisted messages.

    Specialist messages stay out of the main conversation; their results reached the
    leader as reports. Assistant content is replayed without tool-call metadata.
    """
    history: list[LLMMessage] = []
    for message in messages:
        if message.delegated_from:
            continue
        if message.role == "user":
            history.append(LLMMessage(role="user", content=message.content))
            continue
        text = assistant_history_text(parse_response(message.content), message.tool_calls)
        if text:
            history.append(LLMMessage(role="assistant", content=text))
    return history


class ConversationService:
    """Service for running conversation turns and managing project state."""

    def __init__(
        self,
        model_client: ModelClient,
        project_store: ProjectStore,
        message_store: MessageStore,
        file_store: FileStore,
        version_store: VersionStore,
        runtime: SandboxRuntime,
        sessions: InMemorySessionManager,
        config: LoopConfig | None = None,
        executor: ToolExecutor | None = None,
    ):
        """Initialize conversation service.

        Args:
            model_client: Streaming chat model
            project_store: Project ownership and metadata
            message_store: Conversation history
            file_store: Project files
            version_store: File snapshots
            runtime: Sandbox for commands and preview
            sessions: Per-project session context
            config: Loop limits (defaults from environment)
            executor: Tool executor (defaults to the global tool catalog)
        """
        self.model_client = model_client
        self.project_store = project_store
        self.message_store = message_store
        self.file_store = file_store
        self.version_store = version_store
        self.runtime = runtime
        self.sessions = sessions
        self.config = config or LoopConfig.from_env()
        self.executor = executor or ToolExecutor()

    async def prepare_turn(self, project_id: str, user_id: str, text: str) -> PreparedTurn:
        """Validate a user message and persist it.

        Ownership is checked before anything is written.

        Raises:
            ProjectNotFoundError: If the caller does not own the project
            ValueError: If the message is empty or too long
            SessionBusyError: If a turn is already running for the project
        """
        project = await self.project_store.get_owned_project(project_id, user_id)

        if not text or not text.strip():
            raise ValueError("Message cannot be empty")
        self._validate_message_tokens(text)

        messages = await self.message_store.list_messages(project_id)
        session = self.sessions.get_or_create_session(project_id)
        previous_agent_id = session.current_agent_id or self._last_agent_id(messages)
        mention = parse_mentions(text, previous_agent_id)

        cancel_token = self.sessions.begin_turn(project_id, mention.agent.id)
        try:
            user_message = await self.message_store.append(
                ConversationMessage(project_id=project_id, role="user", content=text)
            )
        except Exception:
            self.sessions.end_turn(project_id)
            raise

        history = build_history(messages)
        history.append(LLMMessage(role="user", content=mention.stripped_text or text))

        logger.info(
            f"Prepared turn for project {project_id} with agent {mention.agent.id} "
            f"(mentions: {[agent.id for agent in mention.mentions]})"
        )
        return PreparedTurn(
            project=project,
            mention=mention,
            user_message=user_message,
            history=history,
            cancel_token=cancel_token,
        )

    async def run_turn(self, turn: PreparedTurn, sink: EventSink) -> OrchestrationResult | None:
        """Run a prepared turn to completion, publishing events to the sink.

        Model failures and cancellation end the turn with an error or cancelled event;
        only messages that completed before them stay persisted.

        Returns:
            The orchestration result, or None if the turn failed
        """
        project_id = turn.project.id
        dependencies = LoopDependencies(
            model_client=self.model_client,
            message_store=self.message_store,
            file_store=self.file_store,
            runtime=self.runtime,
            executor=self.executor,
            config=self.config,
            cancel_token=turn.cancel_token,
            sink=sink,
        )

        try:
            await sink(
                LoopEvent(
                    type="turn_started",
                    agent_id=turn.agent_id,
                    data={
                        "user_message": turn.user_message.model_dump(mode="json"),
                        "mentions": [agent.id for agent in turn.mention.mentions],
                    },
                )
            )
            with log_context(project_id):
                result = await DelegationOrchestrator(dependencies).run(project_id, turn.agent_id, turn.history)

            if result.stop_reason == "cancelled":
                await sink(
                    LoopEvent(type="cancelled", agent_id=turn.agent_id, data={"reason": turn.cancel_token.reason})
                )
                return result

            version = None
            if result.files_changed:
                version = await self._snapshot(turn, result)

            await sink(
                LoopEvent(
                    type="done",
                    agent_id=turn.agent_id,
                    data={
                        "final_content": result.final_content,
                        "stop_reason": result.stop_reason,
                        "rounds": result.rounds,
                        "version_number": version.version_number if version else None,
                    },
                )
            )
            return result

        except ModelTransportError as e:
            logger.error(f"Model failure during turn for project {project_id}: {e}")
            await sink(
                LoopEvent(
                    type="error",
                    agent_id=turn.agent_id,
                    data={"message": "The model request failed. Please try again.", "detail": str(e)},
                )
            )
            return None
        except Exception as e:
            logger.error(f"Turn failed for project {project_id}: {e}", exc_info=True)
            await sink(
                LoopEvent(
                    type="error",
                    agent_id=turn.agent_id,
                    data={"message": "I apologize, but I'm experiencing technical difficulties. Please try again."},
                )
            )
            return None
        finally:
            self.sessions.end_turn(project_id)

    async def send_message(
        self, project_id: str, user_id: str, text: str, sink: EventSink
    ) -> OrchestrationResult | None:
        """Prepare and run a turn in one call."""
        turn = await self.prepare_turn(project_id, user_id, text)
        return await self.run_turn(turn, sink)

    async def cancel_turn(self, project_id: str, user_id: str) -> bool:
        """Cancel the project's in-flight turn, if any."""
        await self.project_store.get_owned_project(project_id, user_id)
        return self.sessions.cancel_turn(project_id)

    async def _snapshot(self, turn: PreparedTurn, result: OrchestrationResult) -> ProjectVersion | None:
        files = {file.path: file.content for file in await self.file_store.list_files(turn.project.id)}
        last_message_id = result.messages[-1].id if result.messages else None
        return await self.version_store.create_snapshot(
            turn.project.id,
            files,
            agent_id=turn.agent_id,
            description=turn.user_message.content[:100],
            message_id=last_message_id,
        )

    def _validate_message_tokens(self, message: str) -> None:
        """Validate message doesn't exceed token limits.

        Raises:
            ValueError: If message exceeds token limit
        """
        self.model_client.validate_message_tokens(message)

    @staticmethod
    def _last_agent_id(messages: list[ConversationMessage]) -> str | None:
        for message in reversed(messages):
            if message.role == "assistant" and not message.delegated_from and is_registered(message.agent_id):
                return message.agent_id
        return None

    # Projects

    async def create_project(self, user_id: str, name: str | None = None, prompt: str | None = None) -> Project:
        """Create a project, naming it from the prompt when no name is given."""
        if not name or not name.strip():
            name = await self.generate_project_name(prompt) if prompt else DEFAULT_PROJECT_NAME
        return await self.project_store.create_project(user_id, name.strip())

    async def generate_project_name(self, prompt: str) -> str:
        """Ask the model for a short project name, falling back to a default."""
        try:
            name = await self.model_client.complete(PROJECT_NAME_PROMPT.format(prompt=prompt[:500]), max_tokens=30)
        except ModelTransportError as e:
            logger.warning(f"Project name generation failed, using default: {e}")
            return DEFAULT_PROJECT_NAME

        lines = [line.strip() for line in name.splitlines() if line.strip()]
        name = lines[0].strip("\"'").strip() if lines else ""
        return name[:50] or DEFAULT_PROJECT_NAME

    async def list_projects(self, user_id: str) -> list[Project]:
        return await self.project_store.list_projects(user_id)

    # Messages

    async def list_messages(self, project_id: str, user_id: str) -> list[ConversationMessage]:
        await self.project_store.get_owned_project(project_id, user_id)
        return await self.message_store.list_messages(project_id)

    async def delete_messages(self, project_id: str, user_id: str, message_ids: list[str]) -> int:
        await self.project_store.get_owned_project(project_id, user_id)
        deleted = await self.message_store.delete_messages(project_id, message_ids)
        logger.info(f"Deleted {deleted} messages from project {project_id}")
        return deleted

    async def clear_messages(self, project_id: str, user_id: str) -> int:
        """Clear the history and forget which agent was active."""
        await self.project_store.get_owned_project(project_id, user_id)
        deleted = await self.message_store.clear(project_id)
        session = self.sessions.get_session(project_id)
        if session and not session.busy:
            session.current_agent_id = None
        logger.info(f"Cleared {deleted} messages from project {project_id}")
        return deleted

    # Files

    async def list_files(self, project_id: str, user_id: str) -> list[ProjectFile]:
        await self.project_store.get_owned_project(project_id, user_id)
        return await self.file_store.list_files(project_id)

    async def get_file(self, project_id: str, user_id: str, path: str) -> ProjectFile:
        await self.project_store.get_owned_project(project_id, user_id)
        file = await self.file_store.get_file(project_id, path)
        if file is None:
            raise FileNotFoundInProjectError(f"File not found: {path}")
        return file

    async def write_file(self, project_id: str, user_id: str, path: str, content: str) -> ProjectFile:
        await self.project_store.get_owned_project(project_id, user_id)
        return await self.file_store.write_file(project_id, path, content)

    async def delete_file(self, project_id: str, user_id: str, path: str) -> None:
        await self.project_store.get_owned_project(project_id, user_id)
        if not await self.file_store.delete_file(project_id, path):
            raise FileNotFoundInProjectError(f"File not found: {path}")

    # Versions

    async def list_versions(self, project_id: str, user_id: str) -> list[ProjectVersion]:
        await self.project_store.get_owned_project(project_id, user_id)
        return await self.version_store.list_versions(project_id)

    async def restore_version(self, project_id: str, user_id: str, version_id: str) -> ProjectVersion:
        """Replace the project's files with a snapshot.

        Raises:
            ProjectNotFoundError: If the caller does not own the project
            VersionNotFoundError: If the version is not part of the project
        """
        await self.project_store.get_owned_project(project_id, user_id)
        version = await self.version_store.get_version(project_id, version_id)
        await self.file_store.replace_all(project_id, version.files)
        logger.info(f"Restored project {project_id} to version {version.version_number}")
        return version

    # Sandbox

    async def get_terminal_output(self, project_id: str, user_id: str) -> list[str]:
        await self.project_store.get_owned_project(project_id, user_id)
        return self.runtime.terminal_output(project_id)


_conversation_service: ConversationService | None = None


def get_conversation_service() -> ConversationService:
    """Get or create the conversation service with in-memory stores."""
    global _conversation_service
    if _conversation_service is None:
        _conversation_service = ConversationService(
            model_client=get_anthropic_client(),
            project_store=InMemoryProjectStore(),
            message_store=InMemoryMessageStore(),
            file_store=InMemoryFileStore(),
            version_store=InMemoryVersionStore(),
            runtime=get_sandbox_runtime(),
            sessions=session_manager,
        )
    return _conversation_service
