"""Resolution of @mentions in user input to agents."""

import re
from dataclasses import dataclass, field

from app.agents.registry import is_registered, list_agents, resolve_agent
from app.models.agent import AgentIdentity

# Aliases beyond each agent's id and display names
CURATED_ALIASES: dict[str, str] = {
    "领导": "leader",
    "开发": "engineer",
    "分析师": "analyst",
    "teamleader": "leader",
    "team leader": "leader",
    "product manager": "pm",
    "dev": "engineer",
    "developer": "engineer",
    "data analyst": "analyst",
}


@dataclass
class MentionResult:
    """Outcome of parsing user input for mentions."""

    agent: AgentIdentity
    stripped_text: str
    mentions: list[AgentIdentity] = field(default_factory=list)


def _build_alias_table() -> list[tuple[str, str]]:
    """Aliases in registration order, then sorted longest first (stable)."""
    aliases: list[tuple[str, str]] = []
    seen: set[str] = set()

    candidates = [(name, agent.id) for agent in list_agents() for name in (agent.id, agent.name, agent.name_en)]
    candidates.extend(CURATED_ALIASES.items())

    for alias, agent_id in candidates:
        key = alias.lower()
        if key in seen:
            continue
        seen.add(key)
        aliases.append((key, agent_id))

    return sorted(aliases, key=lambda item: len(item[0]), reverse=True)


def _alias_pattern(alias: str) -> str:
    escaped = re.escape(alias)
    # Latin aliases must not run into a longer word ("@devops" is not "@dev")
    if alias[-1].isascii() and alias[-1].isalnum():
        escaped += r"(?![a-z0-9_])"
    return escaped


_ALIASES = _build_alias_table()
_ALIAS_LOOKUP = dict(_ALIASES)
_MENTION_REGEX = re.compile(
    "@(" + "|".join(_alias_pattern(alias) for alias, _ in _ALIASES) + ")",
    re.IGNORECASE,
)
_PARTIAL_MENTION = re.compile(r"@([^\s@]*)$")


def parse_mentions(text: str, previous_agent_id: str | None = None) -> MentionResult:
    """Parse @mentions from user input.

    The first mention selects the agent. Without a mention the conversation stays
    with the agent of the previous turn, or the default agent on a fresh conversation.

    Args:
        text: Raw user input
        previous_agent_id: Agent that produced the previous turn, if any

    Returns:
        Selected agent, the input with every mention removed, and all mentioned agents
        in order of first occurrence
    """
    mentions: list[AgentIdentity] = []
    for match in _MENTION_REGEX.finditer(text):
        agent = resolve_agent(_ALIAS_LOOKUP[match.group(1).lower()])
        if agent not in mentions:
            mentions.append(agent)

    stripped = _MENTION_REGEX.sub("", text)
    stripped = re.sub(r"[ \t]{2,}", " ", stripped).strip()

    if mentions:
        agent = mentions[0]
    elif is_registered(previous_agent_id):
        agent = resolve_agent(previous_agent_id)
    else:
        agent = resolve_agent(None)

    return MentionResult(agent=agent, stripped_text=stripped, mentions=mentions)


def partial_mention(text: str, cursor: int | None = None) -> str | None:
    """Return the partial name being typed after an '@' just before the cursor."""
    before = text if cursor is None else text[:cursor]
    match = _PARTIAL_MENTION.search(before)
    return match.group(1) if match else None


def suggest_agents(partial: str) -> list[AgentIdentity]:
    """Agents whose aliases or display names contain the partial name."""
    lowered = partial.lower()
    matched: list[str] = []

    for alias, agent_id in _ALIASES:
        if lowered in alias and agent_id not in matched:
            matched.append(agent_id)

    # Keep registration order for display
    return [agent for agent in list_agents() if agent.id in matched]
