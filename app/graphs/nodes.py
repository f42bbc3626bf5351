"""Node implementations for the conversation loop graph."""

from contextlib import aclosing
from typing import Any

from cuid2 import cuid_wrapper
from langchain_core.runnables import RunnableConfig

from app.agents.registry import resolve_agent
from app.graphs.state import LoopDependencies, LoopState
from app.models.llm import LLMMessage, ParsedResponse
from app.models.messages import ConversationMessage, DelegationRequest, ToolCall
from app.tools.base import ToolContext
from app.utils.logging import get_logger
from app.utils.response_parser import clean_partial, parse_response

logger = get_logger(__name__)

cuid = cuid_wrapper()


def get_dependencies(config: RunnableConfig) -> LoopDependencies:
    """Get the loop collaborators from the run config."""
    return config["configurable"]["dependencies"]


def assistant_history_text(parsed: ParsedResponse | None, tool_calls: list[ToolCall]) -> str:
    """Text of an assistant turn as the model sees it in later rounds."""
    if parsed and parsed.visible_text:
        return parsed.visible_text
    if tool_calls:
        return f"(called tools: {', '.join(call.name for call in tool_calls)})"
    return ""


def tool_results_message(tool_calls: list[ToolCall]) -> str:
    """Synthetic user message feeding tool results back to the model."""
    blocks = [f"[{call.id}]: {call.result or ''}" for call in tool_calls]
    return "Tool results:\n" + "\n\n".join(blocks) + "\n\nPlease continue based on these results."


async def call_model_node(state: LoopState, config: RunnableConfig) -> dict[str, Any]:
    """Stream one model response and parse it.

    Checks cancellation and the iteration ceiling before calling the model, and
    cancellation again after every streamed chunk.
    """
    deps = get_dependencies(config)

    if deps.cancel_token.cancelled:
        logger.info(f"Loop for {state.agent_id} cancelled before iteration {state.iteration + 1}")
        return {"stop_reason": "cancelled"}

    if state.iteration >= deps.config.max_iterations:
        logger.warning(
            f"Loop for {state.agent_id} in project {state.project_id} hit the iteration ceiling "
            f"({deps.config.max_iterations}), stopping with max_iterations"
        )
        return {"stop_reason": "max_iterations"}

    agent = resolve_agent(state.agent_id)
    iteration = state.iteration + 1
    message_id = cuid()
    tools = deps.executor.registry.get_llm_tools(agent)

    logger.info(f"Iteration {iteration} for {agent.id} in project {state.project_id}")
    await deps.emit("message_started", agent.id, message_id=message_id, delegated_from=state.delegated_from)

    raw = ""
    async with aclosing(deps.model_client.stream_chat(state.history, agent.system_prompt, tools)) as stream:
        async for chunk in stream:
            raw += chunk
            if deps.cancel_token.cancelled:
                logger.info(f"Loop for {agent.id} cancelled mid-stream, dropping message {message_id}")
                return {"stop_reason": "cancelled", "iteration": iteration}
            await deps.emit("text_delta", agent.id, message_id=message_id, delta=chunk, content=clean_partial(raw))

    parsed = parse_response(raw)
    tool_calls = [ToolCall(id=call.id, name=call.name, arguments=call.arguments) for call in parsed.tool_calls]
    if tool_calls:
        logger.info(f"{agent.id} requested {len(tool_calls)} tool calls: {[call.name for call in tool_calls]}")

    return {
        "iteration": iteration,
        "message_id": message_id,
        "raw_response": raw,
        "parsed": parsed,
        "pending_tool_calls": tool_calls,
    }


async def _persist_assistant_message(
    state: LoopState, deps: LoopDependencies, tool_calls: list[ToolCall]
) -> ConversationMessage:
    message = ConversationMessage(
        id=state.message_id or cuid(),
        project_id=state.project_id,
        role="assistant",
        content=state.raw_response,
        reasoning=state.parsed.reasoning if state.parsed else None,
        agent_id=state.agent_id,
        delegated_from=state.delegated_from,
        tool_calls=tool_calls,
    )
    await deps.message_store.append(message)
    await deps.emit("message_completed", state.agent_id, message=message.model_dump(mode="json"))
    return message


async def execute_tools_node(state: LoopState, config: RunnableConfig) -> dict[str, Any]:
    """Execute the requested tool calls one after another and feed the results back."""
    deps = get_dependencies(config)
    agent = resolve_agent(state.agent_id)
    context = ToolContext(
        project_id=state.project_id,
        agent=agent,
        file_store=deps.file_store,
        runtime=deps.runtime,
        command_timeout=deps.config.command_timeout,
    )

    async def publish_status(call: ToolCall) -> None:
        await deps.emit("tool_status", agent.id, message_id=state.message_id, tool_call=call.model_dump(mode="json"))

    delegations: list[DelegationRequest] = []
    mutated = False
    for call in state.pending_tool_calls:
        outcome = await deps.executor.execute(call, context, on_status=publish_status)
        if outcome.delegation:
            delegations.append(outcome.delegation)
        if deps.executor.registry.is_mutating(call.name):
            mutated = True

    # One refresh per iteration, after every call has finished
    if mutated:
        files = await deps.file_store.list_files(state.project_id)
        await deps.emit("files_changed", agent.id, paths=[file.path for file in files])

    message = await _persist_assistant_message(state, deps, state.pending_tool_calls)

    update: dict[str, Any] = {
        "pending_tool_calls": [],
        "messages": [*state.messages, message],
        "history": [
            *state.history,
            LLMMessage(role="assistant", content=assistant_history_text(state.parsed, message.tool_calls)),
            LLMMessage(role="user", content=tool_results_message(message.tool_calls)),
        ],
        "files_changed": state.files_changed or mutated,
    }
    if state.parsed and state.parsed.visible_text:
        update["final_content"] = state.parsed.visible_text

    if delegations:
        logger.info(f"{agent.id} delegated {len(delegations)} tasks: {[d.agent_id for d in delegations]}")
        update["delegations"] = delegations
        update["stop_reason"] = "delegation"

    return update


async def finish_node(state: LoopState, config: RunnableConfig) -> dict[str, Any]:
    """Persist the plain answer that ends the loop."""
    deps = get_dependencies(config)
    message = await _persist_assistant_message(state, deps, [])
    logger.info(f"Loop for {state.agent_id} done after {state.iteration} iterations")
    return {
        "messages": [*state.messages, message],
        "final_content": state.parsed.visible_text if state.parsed else "",
        "stop_reason": "done",
    }
