"""Conversation loop graph: one agent driven through model calls and tool rounds."""

from dataclasses import dataclass, field

from langgraph.graph import END, StateGraph

from app.graphs.edges import route_model_output, route_tool_output
from app.graphs.nodes import call_model_node, execute_tools_node, finish_node
from app.graphs.state import LoopDependencies, LoopState, StopReason
from app.models.llm import LLMMessage
from app.models.messages import ConversationMessage, DelegationRequest
from app.utils.logging import get_logger, log_context

logger = get_logger(__name__)


def create_loop_graph():
    """Create the conversation loop graph.

    call_model streams and parses one response; execute_tools runs the requested
    calls and loops back; finish persists a plain answer.

    Returns:
        Compiled LangGraph workflow
    """
    workflow = StateGraph(LoopState)

    workflow.add_node("call_model", call_model_node)
    workflow.add_node("execute_tools", execute_tools_node)
    workflow.add_node("finish", finish_node)

    workflow.set_entry_point("call_model")

    workflow.add_conditional_edges(
        "call_model",
        route_model_output,
        {
            "tools": "execute_tools",
            "finish": "finish",
            "end": END,
        },
    )

    workflow.add_conditional_edges(
        "execute_tools",
        route_tool_output,
        {
            "model": "call_model",
            "end": END,
        },
    )

    workflow.add_edge("finish", END)

    return workflow.compile()


_loop_graph = None


def get_loop_graph():
    """Get or create the compiled loop graph (it holds no per-run state)."""
    global _loop_graph
    if _loop_graph is None:
        _loop_graph = create_loop_graph()
    return _loop_graph


@dataclass
class LoopResult:
    """Outcome of one loop run."""

    agent_id: str
    final_content: str
    stop_reason: StopReason
    iterations: int
    messages: list[ConversationMessage] = field(default_factory=list)
    delegations: list[DelegationRequest] = field(default_factory=list)
    files_changed: bool = False
    last_turn_text: str = ""


class ConversationLoop:
    """Runs the loop graph for one agent."""

    def __init__(self, dependencies: LoopDependencies):
        """Initialize the loop.

        Args:
            dependencies: Model client, stores, runtime, limits, cancellation and event sink
        """
        self.dependencies = dependencies
        self.graph = get_loop_graph()

    async def run(
        self,
        project_id: str,
        agent_id: str,
        history: list[LLMMessage],
        delegated_from: str | None = None,
    ) -> LoopResult:
        """Drive one agent until it answers, delegates, is cancelled or hits the ceiling.

        Args:
            project_id: Project the conversation belongs to
            agent_id: Agent to run
            history: Messages sent to the model, ending with the new user input
            delegated_from: Agent that delegated this run, if any

        Returns:
            Final clean content, stop reason and the messages persisted by this run

        Raises:
            ModelTransportError: If the model boundary fails; nothing of the failed
                iteration is persisted
        """
        initial_state = LoopState(
            project_id=project_id,
            agent_id=agent_id,
            delegated_from=delegated_from,
            history=list(history),
        )
        config = {
            "configurable": {"dependencies": self.dependencies},
            "recursion_limit": self.dependencies.config.recursion_limit,
        }

        with log_context(project_id, agent_id):
            result = await self.graph.ainvoke(initial_state, config)
        state = LoopState.model_validate(result) if isinstance(result, dict) else result

        logger.info(
            f"Loop for {agent_id} in project {project_id} stopped: {state.stop_reason} "
            f"after {state.iteration} iterations"
        )
        return LoopResult(
            agent_id=agent_id,
            final_content=state.final_content,
            stop_reason=state.stop_reason or "done",
            iterations=state.iteration,
            messages=state.messages,
            delegations=state.delegations,
            files_changed=state.files_changed,
            last_turn_text=next(
                (message.content for message in reversed(state.history) if message.role == "assistant"),
                state.final_content,
            ),
        )
