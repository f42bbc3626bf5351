"""Tools that read and modify project files."""

from pydantic import BaseModel, Field, field_validator

from app.services.storage import normalize_path
from app.tools.base import ToolContext, ToolDefinition, ToolError, ToolOutcome
from app.utils.logging import get_logger

logger = get_logger(__name__)

MAX_LIST_DEPTH = 10


class WriteFileInput(BaseModel):
    """Input schema for write_file."""

    path: str = Field(..., min_length=1, description="File path relative to the project root", examples=["src/App.tsx"])
    content: str = Field(..., description="Complete file content")


class UpdateFileInput(BaseModel):
    """Input schema for update_file."""

    path: str = Field(..., min_length=1, description="File path relative to the project root")
    old_content: str = Field(..., min_length=1, description="Exact snippet to replace, copied from the file")
    new_content: str = Field(..., description="Replacement snippet")


class ReadFileInput(BaseModel):
    """Input schema for read_file."""

    path: str = Field(..., min_length=1, description="File path relative to the project root")


class DeleteFileInput(BaseModel):
    """Input schema for delete_file."""

    path: str = Field(..., min_length=1, description="File path relative to the project root")


class ListDirectoryInput(BaseModel):
    """Input schema for list_directory."""

    path: str = Field("", description="Directory to list; empty for the project root")
    depth: int = Field(1, description=f"How many levels to descend (1-{MAX_LIST_DEPTH})")

    @field_validator("depth")
    @classmethod
    def clamp_depth(cls, v: int) -> int:
        return max(1, min(v, MAX_LIST_DEPTH))


class SearchFilesInput(BaseModel):
    """Input schema for search_files."""

    pattern: str = Field(..., min_length=1, description="Case-insensitive substring to look for in file paths")


async def write_file(params: WriteFileInput, context: ToolContext) -> ToolOutcome:
    file = await context.file_store.write_file(context.project_id, params.path, params.content)
    logger.info(f"{context.agent.id} wrote {file.path} ({len(params.content)} chars)")
    return ToolOutcome(f"File written: {file.path}")


async def update_file(params: UpdateFileInput, context: ToolContext) -> ToolOutcome:
    file = await context.file_store.get_file(context.project_id, params.path)
    if file is None:
        raise ToolError(f"File not found: {params.path}")

    if params.old_content not in file.content:
        raise ToolError(
            f"Failed to update {params.path}: old_content was not found in the file. "
            "Read the file and retry with an exact snippet."
        )

    updated = file.content.replace(params.old_content, params.new_content, 1)
    await context.file_store.write_file(context.project_id, file.path, updated)
    logger.info(f"{context.agent.id} updated {file.path}")
    return ToolOutcome(f"File updated: {file.path}")


async def read_file(params: ReadFileInput, context: ToolContext) -> ToolOutcome:
    file = await context.file_store.get_file(context.project_id, params.path)
    if file is None:
        # Reported as a normal result, not an error
        return ToolOutcome(f"File not found: {params.path}")
    return ToolOutcome(file.content)


async def delete_file(params: DeleteFileInput, context: ToolContext) -> ToolOutcome:
    if not await context.file_store.delete_file(context.project_id, params.path):
        raise ToolError(f"Failed to delete {params.path}: file not found")
    logger.info(f"{context.agent.id} deleted {normalize_path(params.path)}")
    return ToolOutcome(f"File deleted: {normalize_path(params.path)}")


def _build_tree(paths: list[str]) -> dict[str, dict | None]:
    """Nest file paths into a tree; directories map to dicts, files to None."""
    root: dict[str, dict | None] = {}
    for path in paths:
        node = root
        *directories, filename = path.split("/")
        for name in directories:
            child = node.get(name)
            if child is None:
                child = node[name] = {}
            node = child
        node.setdefault(filename, None)
    return root


def _render_tree(tree: dict[str, dict | None], depth: int, level: int = 0) -> list[str]:
    indent = "  " * level
    lines: list[str] = []

    for name in sorted(name for name, child in tree.items() if child is not None):
        lines.append(f"{indent}📁 {name}/")
        if level + 1 < depth:
            lines.extend(_render_tree(tree[name], depth, level + 1))

    for name in sorted(name for name, child in tree.items() if child is None):
        lines.append(f"{indent}📄 {name}")

    return lines


async def list_directory(params: ListDirectoryInput, context: ToolContext) -> ToolOutcome:
    paths = [file.path for file in await context.file_store.list_files(context.project_id)]
    base = normalize_path(params.path)

    if not base:
        if not paths:
            return ToolOutcome("Directory is empty: /")
        relative = paths
    else:
        if base in paths:
            raise ToolError(f"Not a directory: {base}")
        prefix = base + "/"
        relative = [path[len(prefix) :] for path in paths if path.startswith(prefix)]
        if not relative:
            raise ToolError(f"Directory not found: {base}")

    return ToolOutcome("\n".join(_render_tree(_build_tree(relative), params.depth)))


async def search_files(params: SearchFilesInput, context: ToolContext) -> ToolOutcome:
    needle = params.pattern.lower()
    matches = [
        file.path for file in await context.file_store.list_files(context.project_id) if needle in file.path.lower()
    ]
    if not matches:
        return ToolOutcome(f"No files found matching: {params.pattern}")
    return ToolOutcome("\n".join(matches))


def create_file_tools() -> list[ToolDefinition]:
    """Create the file tools."""
    return [
        ToolDefinition(
            name="write_file",
            description="Create a new file or completely rewrite an existing one.",
            input_schema_class=WriteFileInput,
            handler=write_file,
            mutates_files=True,
        ),
        ToolDefinition(
            name="update_file",
            description=(
                "Replace the first occurrence of an exact snippet in an existing file. "
                "Use read_file first so old_content matches exactly."
            ),
            input_schema_class=UpdateFileInput,
            handler=update_file,
            mutates_files=True,
        ),
        ToolDefinition(
            name="read_file",
            description="Read the full content of a project file.",
            input_schema_class=ReadFileInput,
            handler=read_file,
        ),
        ToolDefinition(
            name="delete_file",
            description="Delete a project file.",
            input_schema_class=DeleteFileInput,
            handler=delete_file,
            mutates_files=True,
        ),
        ToolDefinition(
            name="list_directory",
            description="List files and directories as an indented tree, directories first.",
            input_schema_class=ListDirectoryInput,
            handler=list_directory,
        ),
        ToolDefinition(
            name="search_files",
            description="Find project files whose path contains the given text.",
            input_schema_class=SearchFilesInput,
            handler=search_files,
        ),
    ]
