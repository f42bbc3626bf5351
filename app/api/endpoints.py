"""API endpoints for the project studio service."""

import asyncio
from collections.abc import AsyncIterator
from datetime import UTC, datetime
from typing import Annotated

from fastapi import APIRouter, Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.responses import JSONResponse, StreamingResponse

from app import __version__
from app.agents.mentions import suggest_agents
from app.agents.registry import list_agents
from app.models.conversation import (
    AgentResponse,
    CancelResponse,
    DeleteMessagesRequest,
    FileResponse,
    FileWriteRequest,
    HealthResponse,
    MessageRequest,
    MessageView,
    ProjectCreateRequest,
    ProjectResponse,
    TerminalResponse,
    ToolCallView,
    VersionResponse,
)
from app.models.events import LoopEvent
from app.models.messages import ConversationMessage
from app.models.project import Project, ProjectFile, ProjectVersion
from app.services.conversation import (
    ConversationService,
    FileNotFoundInProjectError,
    PreparedTurn,
    get_conversation_service,
)
from app.services.session_manager import SessionBusyError
from app.services.storage import ProjectNotFoundError
from app.services.versions import VersionNotFoundError
from app.utils.logging import get_logger
from app.utils.response_parser import parse_response

logger = get_logger(__name__)

router = APIRouter()

UserId = Annotated[str, Header(alias="X-User-Id", min_length=1)]
Service = Annotated[ConversationService, Depends(get_conversation_service)]


def _project_response(project: Project) -> ProjectResponse:
    return ProjectResponse(id=project.id, name=project.name, created_at=project.created_at)


def _message_view(message: ConversationMessage) -> MessageView:
    """Display projection: assistant content without tool-call or reasoning markup."""
    content = message.content
    reasoning = message.reasoning
    if message.role == "assistant":
        parsed = parse_response(message.content)
        content = parsed.visible_text
        reasoning = reasoning or parsed.reasoning

    return MessageView(
        id=message.id,
        role=message.role,
        content=content,
        reasoning=reasoning,
        agent_id=message.agent_id,
        delegated_from=message.delegated_from,
        tool_calls=[ToolCallView(**call.model_dump(mode="json")) for call in message.tool_calls],
        created_at=message.created_at,
    )


def _file_response(file: ProjectFile) -> FileResponse:
    return FileResponse(path=file.path, content=file.content, updated_at=file.updated_at)


def _version_response(version: ProjectVersion) -> VersionResponse:
    return VersionResponse(
        id=version.id,
        version_number=version.version_number,
        description=version.description,
        agent_id=version.agent_id,
        message_id=version.message_id,
        file_count=len(version.files),
        created_at=version.created_at,
    )


class TurnStream:
    """Runs a turn in the background and relays its events as NDJSON lines.

    The turn starts when the stream is created, so it ends and releases the project
    even if the response body is never read. A client that disconnects mid-stream
    cancels the turn.
    """

    def __init__(self, service: ConversationService, turn: PreparedTurn):
        self.turn = turn
        self.queue: asyncio.Queue[LoopEvent | None] = asyncio.Queue()
        self.task = asyncio.create_task(self._run(service))

    async def _sink(self, event: LoopEvent) -> None:
        await self.queue.put(event)

    async def _run(self, service: ConversationService) -> None:
        try:
            await service.run_turn(self.turn, self._sink)
        finally:
            await self.queue.put(None)

    async def __aiter__(self) -> AsyncIterator[str]:
        try:
            while True:
                event = await self.queue.get()
                if event is None:
                    break
                yield event.to_line()
        finally:
            if not self.task.done():
                logger.info(f"Client left during turn for project {self.turn.project.id}, cancelling")
                self.turn.cancel_token.cancel("client disconnected")
            await self.task


# Conversation


@router.post("/projects/{project_id}/messages", tags=["Conversation"])
async def send_message(project_id: str, request: MessageRequest, user_id: UserId, service: Service) -> StreamingResponse:
    """Send a message to the project's conversation and stream the turn as NDJSON events."""
    try:
        turn = await service.prepare_turn(project_id, user_id, request.message)
    except ValueError as e:
        logger.warning(f"Message validation error for project {project_id}: {e}")
        raise HTTPException(status_code=400, detail=str(e)) from e

    logger.info(f"Streaming turn for project {project_id} with agent {turn.agent_id}")
    return StreamingResponse(TurnStream(service, turn), media_type="application/x-ndjson")


@router.post("/projects/{project_id}/cancel", response_model=CancelResponse, tags=["Conversation"])
async def cancel_turn(project_id: str, user_id: UserId, service: Service) -> CancelResponse:
    """Cancel the project's in-flight turn."""
    return CancelResponse(cancelled=await service.cancel_turn(project_id, user_id))


@router.get("/projects/{project_id}/messages", response_model=list[MessageView], tags=["Conversation"])
async def list_messages(project_id: str, user_id: UserId, service: Service) -> list[MessageView]:
    """List the conversation history."""
    return [_message_view(message) for message in await service.list_messages(project_id, user_id)]


@router.delete("/projects/{project_id}/messages/{message_id}", tags=["Conversation"])
async def delete_message(project_id: str, message_id: str, user_id: UserId, service: Service) -> dict[str, int]:
    """Delete one message."""
    deleted = await service.delete_messages(project_id, user_id, [message_id])
    if not deleted:
        raise HTTPException(status_code=404, detail=f"Message not found: {message_id}")
    return {"deleted": deleted}


@router.post("/projects/{project_id}/messages/delete", tags=["Conversation"])
async def delete_messages(
    project_id: str, request: DeleteMessagesRequest, user_id: UserId, service: Service
) -> dict[str, int]:
    """Delete several messages."""
    return {"deleted": await service.delete_messages(project_id, user_id, request.message_ids)}


@router.delete("/projects/{project_id}/messages", tags=["Conversation"])
async def clear_messages(project_id: str, user_id: UserId, service: Service) -> dict[str, int]:
    """Clear the whole conversation history."""
    return {"deleted": await service.clear_messages(project_id, user_id)}


# Projects


@router.post("/projects", response_model=ProjectResponse, status_code=201, tags=["Projects"])
async def create_project(request: ProjectCreateRequest, user_id: UserId, service: Service) -> ProjectResponse:
    """Create a project; without a name, one is generated from the prompt."""
    project = await service.create_project(user_id, name=request.name, prompt=request.prompt)
    return _project_response(project)


@router.get("/projects", response_model=list[ProjectResponse], tags=["Projects"])
async def list_projects(user_id: UserId, service: Service) -> list[ProjectResponse]:
    """List the caller's projects."""
    return [_project_response(project) for project in await service.list_projects(user_id)]


# Files


@router.get("/projects/{project_id}/files", response_model=list[FileResponse], tags=["Files"])
async def list_files(project_id: str, user_id: UserId, service: Service) -> list[FileResponse]:
    """List project files."""
    return [_file_response(file) for file in await service.list_files(project_id, user_id)]


@router.get("/projects/{project_id}/files/{path:path}", response_model=FileResponse, tags=["Files"])
async def get_file(project_id: str, path: str, user_id: UserId, service: Service) -> FileResponse:
    """Read a project file."""
    return _file_response(await service.get_file(project_id, user_id, path))


@router.put("/projects/{project_id}/files/{path:path}", response_model=FileResponse, tags=["Files"])
async def write_file(
    project_id: str, path: str, request: FileWriteRequest, user_id: UserId, service: Service
) -> FileResponse:
    """Create or replace a project file."""
    try:
        file = await service.write_file(project_id, user_id, path, request.content)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    return _file_response(file)


@router.delete("/projects/{project_id}/files/{path:path}", status_code=204, tags=["Files"])
async def delete_file(project_id: str, path: str, user_id: UserId, service: Service) -> None:
    """Delete a project file."""
    await service.delete_file(project_id, user_id, path)


# Versions


@router.get("/projects/{project_id}/versions", response_model=list[VersionResponse], tags=["Versions"])
async def list_versions(project_id: str, user_id: UserId, service: Service) -> list[VersionResponse]:
    """List file snapshots, newest first."""
    return [_version_response(version) for version in await service.list_versions(project_id, user_id)]


@router.post(
    "/projects/{project_id}/versions/{version_id}/restore", response_model=VersionResponse, tags=["Versions"]
)
async def restore_version(project_id: str, version_id: str, user_id: UserId, service: Service) -> VersionResponse:
    """Replace the project files with a snapshot."""
    return _version_response(await service.restore_version(project_id, user_id, version_id))


# Sandbox


@router.get("/projects/{project_id}/terminal", response_model=TerminalResponse, tags=["Sandbox"])
async def get_terminal(project_id: str, user_id: UserId, service: Service) -> TerminalResponse:
    """Recent output of the project's commands and preview server."""
    return TerminalResponse(lines=await service.get_terminal_output(project_id, user_id))


# Agents


@router.get("/agents", response_model=list[AgentResponse], tags=["Agents"])
async def get_agents() -> list[AgentResponse]:
    """List the agents in registration order."""
    return [AgentResponse(**agent.as_dict()) for agent in list_agents()]


@router.get("/agents/suggest", response_model=list[AgentResponse], tags=["Agents"])
async def suggest(q: Annotated[str, Query(description="Partial name typed after '@'")] = "") -> list[AgentResponse]:
    """Suggest agents for a partially typed mention."""
    return [AgentResponse(**agent.as_dict()) for agent in suggest_agents(q)]


@router.get("/health", response_model=HealthResponse, tags=["Health"])
async def health_check() -> HealthResponse:
    """Health check endpoint."""
    return HealthResponse(
        status="healthy",
        timestamp=datetime.now(UTC),
        version=__version__,
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Map domain errors raised by the service to HTTP responses."""

    @app.exception_handler(ProjectNotFoundError)
    @app.exception_handler(FileNotFoundInProjectError)
    @app.exception_handler(VersionNotFoundError)
    async def not_found_handler(request: Request, exc: LookupError) -> JSONResponse:
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(SessionBusyError)
    async def busy_handler(request: Request, exc: SessionBusyError) -> JSONResponse:
        logger.warning(f"Rejected concurrent turn: {exc}")
        return JSONResponse(status_code=409, content={"detail": str(exc)})
