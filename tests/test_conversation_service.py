"""Tests for the conversation service."""

import pytest

from app.clients.anthropic import ModelTransportError
from app.graphs.state import LoopConfig
from app.models.messages import ConversationMessage, ToolCall, ToolCallStatus
from app.services.conversation import (
    DEFAULT_PROJECT_NAME,
    ConversationService,
    FileNotFoundInProjectError,
    build_history,
)
from app.services.session_manager import InMemorySessionManager, SessionBusyError
from app.services.storage import ProjectNotFoundError
from app.services.versions import VersionNotFoundError
from tests.fakes import EventRecorder, tool_response

USER_ID = "user_1"


@pytest.fixture
def sessions():
    return InMemorySessionManager()


@pytest.fixture
def service(model, project_store, message_store, file_store, version_store, runtime, sessions):
    return ConversationService(
        model_client=model,
        project_store=project_store,
        message_store=message_store,
        file_store=file_store,
        version_store=version_store,
        runtime=runtime,
        sessions=sessions,
        config=LoopConfig(),
    )


@pytest.fixture
async def project(service):
    return await service.create_project(USER_ID, name="Demo")


class TestPrepareTurn:
    """Tests for validating and persisting user input."""

    @pytest.mark.asyncio
    async def test_foreign_project_rejected_before_side_effects(self, service, project, message_store, sessions):
        """Test that ownership is checked before anything is written."""
        with pytest.raises(ProjectNotFoundError):
            await service.prepare_turn(project.id, "someone_else", "hello")

        assert await message_store.list_messages(project.id) == []
        assert sessions.get_session(project.id) is None

    @pytest.mark.asyncio
    async def test_empty_message_rejected(self, service, project):
        """Test that blank input is a validation error."""
        with pytest.raises(ValueError):
            await service.prepare_turn(project.id, USER_ID, "   ")

    @pytest.mark.asyncio
    async def test_oversized_message_rejected(self, service, project, model, message_store):
        """Test that the token limit is enforced before persisting."""
        with pytest.raises(ValueError, match="token limit"):
            await service.prepare_turn(project.id, USER_ID, "x" * (model.max_message_chars + 1))

        assert await message_store.list_messages(project.id) == []

    @pytest.mark.asyncio
    async def test_second_turn_is_rejected_while_busy(self, service, project):
        """Test that a project runs one turn at a time."""
        await service.prepare_turn(project.id, USER_ID, "first")

        with pytest.raises(SessionBusyError):
            await service.prepare_turn(project.id, USER_ID, "second")

    @pytest.mark.asyncio
    async def test_mention_is_stripped_for_the_model(self, service, project, model, message_store):
        """Test that the original text is persisted and the stripped text is sent."""
        model.responses = ["PRD coming up."]

        turn = await service.prepare_turn(project.id, USER_ID, "@pm write a PRD")
        await service.run_turn(turn, EventRecorder())

        assert turn.agent_id == "pm"
        assert model.calls[0]["messages"][-1].content == "write a PRD"
        persisted = await message_store.list_messages(project.id)
        assert persisted[0].content == "@pm write a PRD"
        assert persisted[1].agent_id == "pm"

    @pytest.mark.asyncio
    async def test_fresh_conversation_goes_to_default_agent(self, service, project):
        """Test the default agent without a mention."""
        turn = await service.prepare_turn(project.id, USER_ID, "make a counter")
        assert turn.agent_id == "engineer"


class TestRunTurn:
    """Tests for running whole turns."""

    @pytest.mark.asyncio
    async def test_conversation_continues_with_previous_agent(self, service, project, model):
        """Test that an unmentioned follow-up goes to the agent of the previous turn."""
        model.responses = ["Design reviewed.", "More details."]
        recorder = EventRecorder()

        await service.send_message(project.id, USER_ID, "@architect review the design", recorder)
        turn = await service.prepare_turn(project.id, USER_ID, "go deeper")
        await service.run_turn(turn, recorder)

        assert turn.agent_id == "architect"
        assert [message.role for message in model.calls[1]["messages"]] == ["user", "assistant", "user"]
        assert model.calls[1]["messages"][1].content == "Design reviewed."

    @pytest.mark.asyncio
    async def test_done_event_and_snapshot_after_file_changes(self, service, project, model, version_store):
        """Test that a turn that changed files records a version."""
        model.responses = [
            tool_response("", ("w1", "write_file", {"path": "index.html", "content": "<h1>Hi</h1>"})),
            "Page created.",
        ]
        recorder = EventRecorder()

        result = await service.send_message(project.id, USER_ID, "make a page", recorder)

        assert result.stop_reason == "done"
        assert recorder.events[0].type == "turn_started"
        done = recorder.of_type("done")
        assert len(done) == 1
        assert done[0].data["final_content"] == "Page created."
        assert done[0].data["version_number"] == 1

        versions = await version_store.list_versions(project.id)
        assert versions[0].files == {"index.html": "<h1>Hi</h1>"}
        assert versions[0].message_id == result.messages[-1].id

    @pytest.mark.asyncio
    async def test_turn_without_file_changes_has_no_snapshot(self, service, project, model, version_store):
        """Test that read-only turns do not create versions."""
        model.responses = ["Nothing to change."]
        recorder = EventRecorder()

        await service.send_message(project.id, USER_ID, "hello", recorder)

        assert recorder.of_type("done")[0].data["version_number"] is None
        assert await version_store.list_versions(project.id) == []

    @pytest.mark.asyncio
    async def test_model_failure_becomes_error_event(self, service, project, model, message_store, sessions):
        """Test that a transport failure ends the turn cleanly."""
        model.responses = [ModelTransportError("upstream unavailable")]
        recorder = EventRecorder()

        result = await service.send_message(project.id, USER_ID, "hello", recorder)

        assert result is None
        assert recorder.of_type("error")[0].data["message"] == "The model request failed. Please try again."
        assert [message.role for message in await message_store.list_messages(project.id)] == ["user"]
        assert not sessions.get_session(project.id).busy

    @pytest.mark.asyncio
    async def test_cancelled_turn_emits_cancelled(self, service, project, model, sessions):
        """Test cancelling a running turn through the service."""
        model.responses = ["A long answer that streams over several chunks."]
        turn = await service.prepare_turn(project.id, USER_ID, "hello")

        recorder = EventRecorder()

        async def sink(event):
            await recorder(event)
            if event.type == "text_delta":
                await service.cancel_turn(project.id, USER_ID)

        result = await service.run_turn(turn, sink)

        assert result.stop_reason == "cancelled"
        assert recorder.of_type("cancelled")[0].data["reason"] == "cancelled by user"
        assert not recorder.of_type("done")
        assert not sessions.get_session(project.id).busy

    @pytest.mark.asyncio
    async def test_cancel_without_running_turn(self, service, project):
        """Test that cancelling an idle project reports nothing to cancel."""
        assert await service.cancel_turn(project.id, USER_ID) is False


class TestProjects:
    """Tests for project creation and naming."""

    @pytest.mark.asyncio
    async def test_name_generated_from_prompt(self, service, model):
        """Test that the model reply is cleaned into a name."""
        model.completion = '  "Todo Tracker"\nextra line'

        project = await service.create_project(USER_ID, prompt="I want to track my todos")

        assert project.name == "Todo Tracker"
        assert "I want to track my todos" in model.completions[0]

    @pytest.mark.asyncio
    async def test_name_skips_blank_lines_and_quotes(self, service, model):
        """Test that the first non-empty line is used, without its quotes."""
        model.completion = "\n\n  'Recipe Box'  \nBecause you cook"

        project = await service.create_project(USER_ID, prompt="recipes")

        assert project.name == "Recipe Box"

    @pytest.mark.asyncio
    async def test_name_falls_back_on_model_failure(self, service, model):
        """Test the default name when the model is unavailable."""
        model.completion = ModelTransportError("down")

        project = await service.create_project(USER_ID, prompt="anything")

        assert project.name == DEFAULT_PROJECT_NAME

    @pytest.mark.asyncio
    async def test_explicit_name_skips_model(self, service, model):
        """Test that a given name is used as is."""
        project = await service.create_project(USER_ID, name=" Shop ")

        assert project.name == "Shop"
        assert model.completions == []

    @pytest.mark.asyncio
    async def test_projects_listed_per_user(self, service):
        """Test that users only see their own projects."""
        await service.create_project(USER_ID, name="Mine")
        await service.create_project("other", name="Theirs")

        assert [project.name for project in await service.list_projects(USER_ID)] == ["Mine"]


class TestFilesAndVersions:
    """Tests for file access and version restore."""

    @pytest.mark.asyncio
    async def test_missing_file_raises(self, service, project):
        """Test reading and deleting a file that does not exist."""
        with pytest.raises(FileNotFoundInProjectError):
            await service.get_file(project.id, USER_ID, "nope.txt")
        with pytest.raises(FileNotFoundInProjectError):
            await service.delete_file(project.id, USER_ID, "nope.txt")

    @pytest.mark.asyncio
    async def test_restore_replaces_all_files(self, service, project, version_store):
        """Test that restoring a version brings back exactly its files."""
        await service.write_file(project.id, USER_ID, "a.txt", "one")
        version = await version_store.create_snapshot(project.id, {"a.txt": "one"})
        await service.write_file(project.id, USER_ID, "a.txt", "two")
        await service.write_file(project.id, USER_ID, "b.txt", "new")

        restored = await service.restore_version(project.id, USER_ID, version.id)

        assert restored.version_number == 1
        files = await service.list_files(project.id, USER_ID)
        assert [(file.path, file.content) for file in files] == [("a.txt", "one")]

    @pytest.mark.asyncio
    async def test_restore_unknown_version(self, service, project):
        """Test restoring a version that does not exist."""
        with pytest.raises(VersionNotFoundError):
            await service.restore_version(project.id, USER_ID, "missing")


class TestHistory:
    """Tests for history management."""

    @pytest.mark.asyncio
    async def test_clear_forgets_current_agent(self, service, project, model, sessions):
        """Test that clearing the history resets agent continuation."""
        model.responses = ["Hi from the analyst."]
        await service.send_message(project.id, USER_ID, "@analyst hello", EventRecorder())

        deleted = await service.clear_messages(project.id, USER_ID)

        assert deleted == 2
        assert sessions.get_session(project.id).current_agent_id is None
        turn = await service.prepare_turn(project.id, USER_ID, "again")
        assert turn.agent_id == "engineer"

    def test_build_history_skips_specialist_messages(self):
        """Test that delegated runs stay out of the main history."""
        messages = [
            ConversationMessage(project_id="p", role="user", content="build it"),
            ConversationMessage(
                project_id="p",
                role="assistant",
                agent_id="leader",
                content=tool_response("", ("d1", "delegate_task", {"agent_id": "pm", "task": "PRD"})),
                tool_calls=[
                    ToolCall(
                        id="d1",
                        name="delegate_task",
                        status=ToolCallStatus.COMPLETED,
                        result="Delegated to Product Manager",
                    )
                ],
            ),
            ConversationMessage(project_id="p", role="assistant", agent_id="pm", delegated_from="leader", content="PRD"),
            ConversationMessage(project_id="p", role="assistant", agent_id="leader", content="All done."),
        ]

        history = build_history(messages)

        assert [(message.role, message.content) for message in history] == [
            ("user", "build it"),
            ("assistant", "(called tools: delegate_task)"),
            ("assistant", "All done."),
        ]
