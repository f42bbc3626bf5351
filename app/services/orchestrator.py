"""Leader to specialist delegation rounds on top of the conversation loop."""

from dataclasses import dataclass, field
from typing import Literal

from app.agents.registry import resolve_agent
from app.graphs.conversation import ConversationLoop, LoopResult
from app.graphs.state import LoopDependencies
from app.models.llm import LLMMessage
from app.models.messages import ConversationMessage, DelegationRequest
from app.utils.logging import get_logger

logger = get_logger(__name__)

OrchestrationStopReason = Literal["done", "max_iterations", "max_rounds", "cancelled"]


@dataclass
class DelegationReport:
    """Final output of one specialist run."""

    agent_id: str
    agent_name: str
    task: str
    content: str
    stop_reason: str


@dataclass
class OrchestrationResult:
    """Outcome of a turn including every delegation round."""

    agent_id: str
    final_content: str
    stop_reason: OrchestrationStopReason
    rounds: int = 0
    reports: list[DelegationReport] = field(default_factory=list)
    messages: list[ConversationMessage] = field(default_factory=list)
    files_changed: bool = False


def build_delegation_message(leader_name: str, request: DelegationRequest) -> str:
    """Seed message of a specialist run."""
    sections = [f"Task from {leader_name}:\n{request.task}"]
    if request.requirements:
        sections.append(f"Requirements:\n{request.requirements}")
    if request.context:
        sections.append(f"Context:\n{request.context}")
    sections.append("When you are done, report what you did and anything the team leader should know.")
    return "\n\n".join(sections)


def build_reports_message(reports: list[DelegationReport]) -> str:
    """Synthetic message handing specialist reports back to the leader."""
    blocks = [
        f"### Report from {report.agent_name} ({report.agent_id})\n{report.content or '(no report)'}"
        for report in reports
    ]
    return (
        "The team members have finished their tasks. Their reports:\n\n"
        + "\n\n".join(blocks)
        + "\n\nDecide whether more work needs to be delegated, or summarise the results for the user."
    )


class DelegationOrchestrator:
    """Runs the initiating agent and, while it delegates, its specialists."""

    def __init__(self, dependencies: LoopDependencies):
        """Initialize the orchestrator.

        Args:
            dependencies: Collaborators shared by every loop of the turn
        """
        self.dependencies = dependencies
        self.loop = ConversationLoop(dependencies)

    async def run(self, project_id: str, agent_id: str, history: list[LLMMessage]) -> OrchestrationResult:
        """Run one user turn.

        Each round runs every pending delegation in order, each in a fresh loop, then
        re-invokes the initiating agent with its last message and the reports. The
        round cap is a soft stop: the initiator's last answer becomes the result.

        Args:
            project_id: Project the conversation belongs to
            agent_id: Initiating agent
            history: Prior conversation ending with the user's message

        Returns:
            Final content and everything persisted during the turn
        """
        max_rounds = self.dependencies.config.max_delegation_rounds
        leader_history = list(history)

        result = await self.loop.run(project_id, agent_id, leader_history)
        outcome = OrchestrationResult(
            agent_id=agent_id,
            final_content=result.final_content,
            stop_reason="done",
            messages=list(result.messages),
            files_changed=result.files_changed,
        )

        while result.stop_reason == "delegation" and result.delegations:
            if outcome.rounds >= max_rounds:
                logger.warning(
                    f"Delegation round cap ({max_rounds}) reached in project {project_id}; "
                    f"dropping {len(result.delegations)} pending delegations"
                )
                outcome.stop_reason = "max_rounds"
                return outcome

            outcome.rounds += 1
            logger.info(f"Delegation round {outcome.rounds} for {agent_id}: {len(result.delegations)} tasks")

            round_reports: list[DelegationReport] = []
            for request in result.delegations:
                specialist = await self._run_specialist(project_id, agent_id, request)
                outcome.messages.extend(specialist.messages)
                outcome.files_changed = outcome.files_changed or specialist.files_changed

                if specialist.stop_reason == "cancelled":
                    outcome.stop_reason = "cancelled"
                    return outcome

                report = DelegationReport(
                    agent_id=specialist.agent_id,
                    agent_name=resolve_agent(specialist.agent_id).name_en,
                    task=request.task,
                    content=specialist.final_content,
                    stop_reason=specialist.stop_reason,
                )
                round_reports.append(report)
                outcome.reports.append(report)
                await self.dependencies.emit(
                    "delegation_completed",
                    report.agent_id,
                    delegated_from=agent_id,
                    stop_reason=report.stop_reason,
                    report=report.content,
                )

            leader_history = [
                *leader_history,
                LLMMessage(role="assistant", content=result.last_turn_text),
                LLMMessage(role="user", content=build_reports_message(round_reports)),
            ]
            result = await self.loop.run(project_id, agent_id, leader_history)
            outcome.messages.extend(result.messages)
            outcome.files_changed = outcome.files_changed or result.files_changed
            outcome.final_content = result.final_content or outcome.final_content

        if result.stop_reason in ("cancelled", "max_iterations"):
            outcome.stop_reason = result.stop_reason
        return outcome

    async def _run_specialist(self, project_id: str, leader_id: str, request: DelegationRequest) -> LoopResult:
        leader = resolve_agent(leader_id)
        target = resolve_agent(request.agent_id)
        logger.info(f"{leader.id} delegating to {target.id}: {request.task}")
        await self.dependencies.emit(
            "delegation_started",
            target.id,
            delegated_from=leader.id,
            task=request.task,
            requirements=request.requirements,
            context=request.context,
        )

        seed = [LLMMessage(role="user", content=build_delegation_message(leader.name_en, request))]
        return await self.loop.run(project_id, target.id, seed, delegated_from=leader.id)
