"""Execution of model-requested tool calls."""

from collections.abc import Awaitable, Callable

from pydantic import ValidationError

from app.models.messages import ToolCall, ToolCallStatus
from app.tools.base import ToolContext, ToolError, ToolOutcome
from app.tools.registry import ToolsRegistry, get_tools_registry
from app.utils.logging import get_logger
from app.utils.response_parser import RAW_ARGUMENTS_KEY

logger = get_logger(__name__)

StatusCallback = Callable[[ToolCall], Awaitable[None]]


def _format_validation_error(error: ValidationError) -> str:
    parts = []
    for detail in error.errors():
        location = ".".join(str(part) for part in detail["loc"]) or "arguments"
        parts.append(f"{location}: {detail['msg']}")
    return "; ".join(parts)


class ToolExecutor:
    """Runs tool calls against the registry and reports their status transitions."""

    def __init__(self, registry: ToolsRegistry | None = None):
        self.registry = registry or get_tools_registry()

    async def execute(
        self,
        tool_call: ToolCall,
        context: ToolContext,
        on_status: StatusCallback | None = None,
    ) -> ToolOutcome:
        """Execute one tool call.

        The call moves pending -> running -> completed/error and on_status is invoked
        after each move. Failures of the tool itself never propagate; they become an
        error result the model can react to.

        Args:
            tool_call: Call to execute (mutated in place)
            context: Project, agent and collaborators for the handler
            on_status: Optional hook for status changes

        Returns:
            The tool outcome
        """
        tool_call.transition(ToolCallStatus.RUNNING)
        if on_status:
            await on_status(tool_call)

        outcome = await self._run(tool_call, context)

        status = ToolCallStatus.ERROR if outcome.is_error else ToolCallStatus.COMPLETED
        tool_call.transition(status, outcome.text)
        if on_status:
            await on_status(tool_call)

        logger.debug(f"Tool {tool_call.name} ({tool_call.id}) finished with status {status}")
        return outcome

    async def _run(self, tool_call: ToolCall, context: ToolContext) -> ToolOutcome:
        tool = self.registry.get(tool_call.name)
        if tool is None:
            logger.warning(f"Model requested unknown tool: {tool_call.name}")
            return ToolOutcome(f"Unknown tool: {tool_call.name}", is_error=True)

        if not context.agent.can_use(tool_call.name):
            logger.warning(f"{context.agent.id} requested tool outside its allow-list: {tool_call.name}")
            return ToolOutcome(f"Tool not permitted for {context.agent.name_en}: {tool_call.name}", is_error=True)

        if RAW_ARGUMENTS_KEY in tool_call.arguments:
            return ToolOutcome(
                f"Invalid arguments for {tool_call.name}: could not parse "
                f"{tool_call.arguments[RAW_ARGUMENTS_KEY]!r} as a JSON object",
                is_error=True,
            )

        try:
            params = tool.parse_input(tool_call.arguments)
        except ValidationError as e:
            return ToolOutcome(f"Invalid arguments for {tool_call.name}: {_format_validation_error(e)}", is_error=True)

        logger.info(f"Executing tool {tool_call.name} for {context.agent.id} in project {context.project_id}")
        try:
            return await tool.handler(params, context)
        except ToolError as e:
            return ToolOutcome(str(e), is_error=True)
        except Exception as e:
            logger.error(f"Tool {tool_call.name} raised: {e}", exc_info=True)
            return ToolOutcome(f"Error executing {tool_call.name}: {e}", is_error=True)
