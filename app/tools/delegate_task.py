"""Delegation tool available to the team leader."""

from pydantic import BaseModel, Field

from app.agents.registry import LEADER_AGENT_ID, is_registered, list_agents, resolve_agent
from app.models.messages import DelegationRequest
from app.tools.base import ToolContext, ToolDefinition, ToolError, ToolOutcome


def _specialist_ids() -> list[str]:
    return [agent.id for agent in list_agents() if agent.id != LEADER_AGENT_ID]


class DelegateTaskInput(BaseModel):
    """Input schema for delegate_task."""

    agent_id: str = Field(
        ...,
        description="Id of the team member who should do the work",
        json_schema_extra={"enum": _specialist_ids()},
    )
    task: str = Field(..., min_length=1, description="What the team member should do")
    requirements: str = Field("", description="Concrete requirements and acceptance criteria")
    context: str = Field("", description="Background the team member needs, including earlier results")


async def delegate_task(params: DelegateTaskInput, context: ToolContext) -> ToolOutcome:
    if not is_registered(params.agent_id):
        raise ToolError(f"Unknown agent: {params.agent_id}. Choose one of: {', '.join(_specialist_ids())}")

    target = resolve_agent(params.agent_id)
    if target.id == LEADER_AGENT_ID:
        raise ToolError("Cannot delegate to the team leader")
    if target.id == context.agent.id:
        raise ToolError(f"{target.name_en} cannot delegate to itself")

    request = DelegationRequest(
        agent_id=target.id,
        task=params.task,
        requirements=params.requirements,
        context=params.context,
    )
    return ToolOutcome(f"Delegated to {target.name_en}", delegation=request)


def create_delegate_task_tool() -> ToolDefinition:
    """Create the delegate_task tool."""
    return ToolDefinition(
        name="delegate_task",
        description=(
            "Hand a sub-task to a specialist on the team. The specialist runs after your turn "
            "and their report is sent back to you."
        ),
        input_schema_class=DelegateTaskInput,
        handler=delegate_task,
    )
