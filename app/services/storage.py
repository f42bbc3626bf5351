"""Persistence interfaces and in-memory implementations.

Projects, messages and files are owned by these stores; the conversation core only
reads and writes through the protocols below.
"""

import re
from datetime import UTC, datetime
from typing import Protocol

from cuid2 import cuid_wrapper

from app.models.messages import ConversationMessage
from app.models.project import Project, ProjectFile
from app.utils.logging import get_logger

logger = get_logger(__name__)

cuid = cuid_wrapper()


class ProjectNotFoundError(LookupError):
    """Raised when a project does not exist or is not owned by the caller."""


def normalize_path(path: str) -> str:
    """Normalise a project path: no leading or trailing slashes, no empty segments."""
    path = re.sub(r"/+", "/", path.strip().replace("\\", "/"))
    path = path.strip("/")
    if path in ("", "."):
        return ""
    return "/".join(part for part in path.split("/") if part not in ("", "."))


class ProjectStore(Protocol):
    """Interface for project storage."""

    async def create_project(self, user_id: str, name: str) -> Project:
        """Create a project owned by the user."""
        ...

    async def get_owned_project(self, project_id: str, user_id: str) -> Project:
        """Get a project, checking ownership.

        Raises:
            ProjectNotFoundError: If the project does not exist or belongs to someone else
        """
        ...

    async def list_projects(self, user_id: str) -> list[Project]:
        """List the user's projects, newest first."""
        ...


class MessageStore(Protocol):
    """Interface for the append-only message history of each project."""

    async def append(self, message: ConversationMessage) -> ConversationMessage:
        """Append a finalised message."""
        ...

    async def list_messages(self, project_id: str) -> list[ConversationMessage]:
        """List a project's messages in creation order."""
        ...

    async def delete_messages(self, project_id: str, message_ids: list[str]) -> int:
        """Delete messages by id, returning how many were removed."""
        ...

    async def clear(self, project_id: str) -> int:
        """Delete a project's whole history."""
        ...


class FileStore(Protocol):
    """Interface for project files keyed by (project, path)."""

    async def list_files(self, project_id: str) -> list[ProjectFile]:
        """List files sorted by path."""
        ...

    async def get_file(self, project_id: str, path: str) -> ProjectFile | None:
        """Get a file, or None if it does not exist."""
        ...

    async def write_file(self, project_id: str, path: str, content: str) -> ProjectFile:
        """Create or replace a file."""
        ...

    async def delete_file(self, project_id: str, path: str) -> bool:
        """Delete a file, returning False if it did not exist."""
        ...

    async def replace_all(self, project_id: str, files: dict[str, str]) -> None:
        """Replace every file of the project with the given set."""
        ...


class InMemoryProjectStore:
    """In-memory project storage."""

    def __init__(self):
        self.projects: dict[str, Project] = {}

    async def create_project(self, user_id: str, name: str) -> Project:
        project = Project(id=cuid(), user_id=user_id, name=name)
        self.projects[project.id] = project
        logger.info(f"Created project {project.id} ({name!r}) for user {user_id}")
        return project

    async def get_owned_project(self, project_id: str, user_id: str) -> Project:
        project = self.projects.get(project_id)
        if project is None or project.user_id != user_id:
            logger.warning(f"Project {project_id} not found for user {user_id}")
            raise ProjectNotFoundError(f"Project not found: {project_id}")
        return project

    async def list_projects(self, user_id: str) -> list[Project]:
        owned = [project for project in self.projects.values() if project.user_id == user_id]
        return sorted(owned, key=lambda project: project.created_at, reverse=True)


class InMemoryMessageStore:
    """In-memory message history."""

    def __init__(self):
        self.messages: dict[str, list[ConversationMessage]] = {}

    async def append(self, message: ConversationMessage) -> ConversationMessage:
        self.messages.setdefault(message.project_id, []).append(message)
        logger.debug(f"Persisted {message.role} message {message.id} for project {message.project_id}")
        return message

    async def list_messages(self, project_id: str) -> list[ConversationMessage]:
        return list(self.messages.get(project_id, []))

    async def delete_messages(self, project_id: str, message_ids: list[str]) -> int:
        history = self.messages.get(project_id, [])
        ids = set(message_ids)
        kept = [message for message in history if message.id not in ids]
        self.messages[project_id] = kept
        return len(history) - len(kept)

    async def clear(self, project_id: str) -> int:
        return len(self.messages.pop(project_id, []))


class InMemoryFileStore:
    """In-memory file storage."""

    def __init__(self):
        self.files: dict[str, dict[str, ProjectFile]] = {}

    async def list_files(self, project_id: str) -> list[ProjectFile]:
        return sorted(self.files.get(project_id, {}).values(), key=lambda file: file.path)

    async def get_file(self, project_id: str, path: str) -> ProjectFile | None:
        return self.files.get(project_id, {}).get(normalize_path(path))

    async def write_file(self, project_id: str, path: str, content: str) -> ProjectFile:
        normalized = normalize_path(path)
        if not normalized:
            raise ValueError("File path cannot be empty")
        file = ProjectFile(path=normalized, content=content, updated_at=datetime.now(UTC))
        self.files.setdefault(project_id, {})[normalized] = file
        return file

    async def delete_file(self, project_id: str, path: str) -> bool:
        return self.files.get(project_id, {}).pop(normalize_path(path), None) is not None

    async def replace_all(self, project_id: str, files: dict[str, str]) -> None:
        self.files[project_id] = {
            normalize_path(path): ProjectFile(path=normalize_path(path), content=content)
            for path, content in files.items()
        }
