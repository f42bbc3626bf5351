"""Tools that run commands in the sandbox."""

from pydantic import BaseModel, Field

from app.tools.base import ToolContext, ToolDefinition, ToolError, ToolOutcome
from app.utils.logging import get_logger

logger = get_logger(__name__)


class RunCommandInput(BaseModel):
    """Input schema for run_command."""

    command: str = Field(..., min_length=1, description="Shell command to run in the project root", examples=["ls -la"])


class RunPreviewInput(BaseModel):
    """Input schema for run_preview (takes no arguments)."""


async def run_command(params: RunCommandInput, context: ToolContext) -> ToolOutcome:
    files = {file.path: file.content for file in await context.file_store.list_files(context.project_id)}
    try:
        await context.runtime.mount(context.project_id, files)
        result = await context.runtime.run(context.project_id, params.command, timeout=context.command_timeout)
    except Exception as e:
        raise ToolError(f"Command failed: {e}") from e

    if result.timed_out:
        return ToolOutcome(result.output)

    text = result.output.rstrip() or "(no output)"
    if result.exit_code:
        text += f"\n[exit code {result.exit_code}]"
    return ToolOutcome(text)


async def run_preview(params: RunPreviewInput, context: ToolContext) -> ToolOutcome:
    files = {file.path: file.content for file in await context.file_store.list_files(context.project_id)}
    if not files:
        raise ToolError("No files to preview yet; write the project files first")

    try:
        await context.runtime.start_preview(context.project_id, files)
    except Exception as e:
        raise ToolError(f"Failed to start preview: {e}") from e

    logger.info(f"Preview started for project {context.project_id} with {len(files)} files")
    return ToolOutcome("Preview started. Dependencies are installing and the dev server is starting.")


def create_command_tools() -> list[ToolDefinition]:
    """Create the sandbox command tools."""
    return [
        ToolDefinition(
            name="run_command",
            description=(
                "Run a shell command in the project sandbox and return its combined output. "
                "Do not use it for npm install; call run_preview instead."
            ),
            input_schema_class=RunCommandInput,
            handler=run_command,
        ),
        ToolDefinition(
            name="run_preview",
            description="Install dependencies and (re)start the preview dev server with the current files.",
            input_schema_class=RunPreviewInput,
            handler=run_preview,
        ),
    ]
