"""Project, file and version data models."""

from dataclasses import dataclass, field
from datetime import UTC, datetime


@dataclass
class Project:
    """A user's project."""

    id: str
    user_id: str
    name: str
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = field(default_factory=lambda: datetime.now(UTC))


@dataclass
class ProjectFile:
    """A file in a project, unique per (project, path)."""

    path: str
    content: str
    updated_at: datetime = field(default_factory=lambda: datetime.now(UTC))


@dataclass
class ProjectVersion:
    """A snapshot of every file in a project at a point in the conversation."""

    id: str
    project_id: str
    version_number: int
    files: dict[str, str]
    description: str | None = None
    agent_id: str | None = None
    message_id: str | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
