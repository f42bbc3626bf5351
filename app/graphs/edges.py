"""Edge logic and routing for the conversation loop graph."""

from typing import Literal

from app.graphs.state import LoopState
from app.utils.logging import get_logger

logger = get_logger(__name__)


def route_model_output(state: LoopState) -> Literal["tools", "finish", "end"]:
    """Route from the model node.

    Ends immediately on cancellation or the iteration ceiling, executes tools when
    any were requested, and otherwise finishes with the plain answer.
    """
    if state.stop_reason:
        logger.debug(f"Routing to end, stop reason: {state.stop_reason}")
        return "end"

    if state.pending_tool_calls:
        return "tools"

    return "finish"


def route_tool_output(state: LoopState) -> Literal["model", "end"]:
    """Route from tool execution.

    A delegation pauses the loop; otherwise the results go back to the model.
    """
    if state.stop_reason:
        return "end"
    return "model"
