"""Agent identity model."""

from dataclasses import dataclass


@dataclass(frozen=True)
class AgentIdentity:
    """A named role with its instruction prompt and tool allow-list."""

    id: str
    name: str
    name_en: str
    description: str
    system_prompt: str
    tools: tuple[str, ...]
    color: str
    icon: str = ""

    def can_use(self, tool_name: str) -> bool:
        """Check whether the tool is on this agent's allow-list."""
        return tool_name in self.tools

    def as_dict(self) -> dict[str, object]:
        """Return the public part of the identity (no prompt)."""
        return {
            "id": self.id,
            "name": self.name,
            "name_en": self.name_en,
            "description": self.description,
            "tools": list(self.tools),
            "color": self.color,
            "icon": self.icon,
        }
