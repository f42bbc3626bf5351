"""Tests for the agent registry and the tool catalog."""

from app.agents.registry import LEADER_AGENT_ID, default_agent, is_registered, list_agents, resolve_agent
from app.tools.registry import ToolsRegistry


class TestAgentRegistry:
    """Tests for agent resolution."""

    def test_resolve_known_agent(self):
        """Test resolution by id, ignoring case and whitespace."""
        assert resolve_agent("pm").name_en == "Product Manager"
        assert resolve_agent(" SEO ").id == "seo"

    def test_resolve_unknown_falls_back_to_engineer(self):
        """Test the fixed default identity."""
        assert resolve_agent("ghost").id == "engineer"
        assert resolve_agent(None) == default_agent()

    def test_is_registered(self):
        """Test registration checks."""
        assert is_registered("leader")
        assert not is_registered("ghost")
        assert not is_registered(None)

    def test_list_is_ordered(self):
        """Test registration order."""
        assert [agent.id for agent in list_agents()] == ["leader", "pm", "engineer", "architect", "analyst", "seo"]

    def test_only_leader_can_delegate(self):
        """Test that delegation is single-level."""
        delegators = [agent.id for agent in list_agents() if agent.can_use("delegate_task")]
        assert delegators == [LEADER_AGENT_ID]

    def test_architect_is_read_only(self):
        """Test the read-only role's allow-list."""
        architect = resolve_agent("architect")
        assert not architect.can_use("write_file")
        assert not architect.can_use("run_command")
        assert architect.can_use("read_file")

    def test_public_dict_has_no_prompt(self):
        """Test that the public view omits the instruction prompt."""
        data = resolve_agent("engineer").as_dict()
        assert "system_prompt" not in data
        assert data["tools"][0] == "write_file"


class TestToolsRegistry:
    """Tests for the tool catalog."""

    def test_every_allowed_tool_is_registered(self):
        """Test that allow-lists only name real tools."""
        registry = ToolsRegistry()
        for agent in list_agents():
            for name in agent.tools:
                assert registry.has_tool(name), f"{agent.id} allows unknown tool {name}"

    def test_llm_tools_are_filtered_to_allow_list(self):
        """Test the per-agent filtering of offered tools."""
        registry = ToolsRegistry()
        tools = registry.get_llm_tools(resolve_agent("architect"))
        assert [tool.name for tool in tools] == ["read_file", "list_directory", "search_files"]

    def test_llm_tools_carry_json_schema(self):
        """Test the schema offered for a tool."""
        registry = ToolsRegistry()
        write_file = next(tool for tool in registry.get_llm_tools(resolve_agent("engineer")) if tool.name == "write_file")

        assert write_file.input_schema["type"] == "object"
        assert set(write_file.input_schema["required"]) == {"path", "content"}

    def test_delegate_schema_lists_specialists(self):
        """Test that the leader cannot be offered as a delegation target."""
        registry = ToolsRegistry()
        schema = registry.get("delegate_task").get_json_schema()
        targets = schema["properties"]["agent_id"]["enum"]

        assert LEADER_AGENT_ID not in targets
        assert "pm" in targets and "engineer" in targets

    def test_mutating_tools(self):
        """Test which tools change project files."""
        registry = ToolsRegistry()
        assert {name for name in registry.get_tool_names() if registry.is_mutating(name)} == {
            "write_file",
            "update_file",
            "delete_file",
        }
        assert not registry.is_mutating("unknown")
