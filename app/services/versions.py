"""Version snapshots of project files."""

from typing import Protocol

from cuid2 import cuid_wrapper

from app.models.project import ProjectVersion
from app.utils.logging import get_logger

logger = get_logger(__name__)

cuid = cuid_wrapper()


class VersionNotFoundError(LookupError):
    """Raised when a version does not exist in the project."""


class VersionStore(Protocol):
    """Interface for version snapshot storage."""

    async def create_snapshot(
        self,
        project_id: str,
        files: dict[str, str],
        agent_id: str | None = None,
        description: str | None = None,
        message_id: str | None = None,
    ) -> ProjectVersion | None:
        """Record a snapshot of the given files.

        Returns:
            The new version, or None if there were no files to snapshot
        """
        ...

    async def list_versions(self, project_id: str) -> list[ProjectVersion]:
        """List versions, newest first."""
        ...

    async def get_version(self, project_id: str, version_id: str) -> ProjectVersion:
        """Get a version.

        Raises:
            VersionNotFoundError: If the version is not part of the project
        """
        ...


class InMemoryVersionStore:
    """In-memory version storage."""

    def __init__(self):
        self.versions: dict[str, list[ProjectVersion]] = {}

    async def create_snapshot(
        self,
        project_id: str,
        files: dict[str, str],
        agent_id: str | None = None,
        description: str | None = None,
        message_id: str | None = None,
    ) -> ProjectVersion | None:
        if not files:
            return None

        history = self.versions.setdefault(project_id, [])
        next_number = max((version.version_number for version in history), default=0) + 1
        version = ProjectVersion(
            id=cuid(),
            project_id=project_id,
            version_number=next_number,
            files=dict(files),
            description=description,
            agent_id=agent_id,
            message_id=message_id,
        )
        history.append(version)
        logger.info(f"Created version {next_number} of project {project_id} with {len(files)} files")
        return version

    async def list_versions(self, project_id: str) -> list[ProjectVersion]:
        return sorted(self.versions.get(project_id, []), key=lambda version: version.version_number, reverse=True)

    async def get_version(self, project_id: str, version_id: str) -> ProjectVersion:
        for version in self.versions.get(project_id, []):
            if version.id == version_id:
                return version
        raise VersionNotFoundError(f"Version not found: {version_id}")
