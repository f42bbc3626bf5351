"""Tests for API endpoints."""

import json

import pytest
from fastapi.testclient import TestClient

from app.graphs.state import LoopConfig
from app.api.endpoints import TurnStream
from app.main import app
from app.services.conversation import ConversationService, get_conversation_service
from app.services.session_manager import InMemorySessionManager
from tests.fakes import tool_response

HEADERS = {"X-User-Id": "user_1"}


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
def client(service):
    app.dependency_overrides[get_conversation_service] = lambda: service
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def project_id(client):
    response = client.post("/projects", json={"name": "Demo"}, headers=HEADERS)
    return response.json()["id"]


def read_events(response) -> list[dict]:
    return [json.loads(line) for line in response.text.splitlines() if line.strip()]


class TestHealthEndpoint:
    """Tests for the health check endpoint."""

    def test_health_check_response_structure(self, client):
        """Test that health check returns expected JSON structure."""
        response = client.get("/health")
        data = response.json()

        assert response.status_code == 200
        assert response.headers["content-type"] == "application/json"
        assert data["status"] == "healthy"
        assert data["version"] == "0.1.0"
        assert "timestamp" in data


class TestProjectEndpoints:
    """Tests for project creation and listing."""

    def test_create_requires_user_header(self, client):
        """Test that requests without a user id are rejected."""
        response = client.post("/projects", json={"name": "Demo"})
        assert response.status_code == 422

    def test_create_with_generated_name(self, client, model):
        """Test that a prompt without a name gets a generated name."""
        model.completion = "Recipe Book"

        response = client.post("/projects", json={"prompt": "an app for my recipes"}, headers=HEADERS)

        assert response.status_code == 201
        assert response.json()["name"] == "Recipe Book"

    def test_list_only_own_projects(self, client, project_id):
        """Test that another user cannot see the project."""
        assert [project["id"] for project in client.get("/projects", headers=HEADERS).json()] == [project_id]
        assert client.get("/projects", headers={"X-User-Id": "intruder"}).json() == []


class TestConversationEndpoints:
    """Tests for sending messages and reading history."""

    def test_turn_streams_ndjson_events(self, client, model, project_id):
        """Test that a turn is streamed as one JSON event per line."""
        model.responses = ["Hello! What shall we build?"]

        response = client.post(f"/projects/{project_id}/messages", json={"message": "hi"}, headers=HEADERS)

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("application/x-ndjson")
        events = read_events(response)
        types = [event["type"] for event in events]
        assert types[0] == "turn_started"
        assert "text_delta" in types
        assert types[-1] == "done"
        assert events[-1]["data"]["final_content"] == "Hello! What shall we build?"

    def test_history_hides_tool_metadata(self, client, model, project_id):
        """Test that listed assistant content is the visible text only."""
        model.responses = [
            tool_response("Writing the page.", ("w1", "write_file", {"path": "index.html", "content": "<p>"})),
            "Done.",
        ]
        client.post(f"/projects/{project_id}/messages", json={"message": "make a page"}, headers=HEADERS)

        messages = client.get(f"/projects/{project_id}/messages", headers=HEADERS).json()

        assert [message["role"] for message in messages] == ["user", "assistant", "assistant"]
        assert messages[1]["content"] == "Writing the page."
        assert messages[1]["tool_calls"][0]["name"] == "write_file"
        assert messages[1]["tool_calls"][0]["status"] == "completed"
        assert all("<!--" not in message["content"] for message in messages)

    def test_foreign_project_is_not_found(self, client, project_id):
        """Test that another user's project looks like it does not exist."""
        response = client.post(
            f"/projects/{project_id}/messages", json={"message": "hi"}, headers={"X-User-Id": "intruder"}
        )
        assert response.status_code == 404

    def test_empty_message_is_bad_request(self, client, project_id):
        """Test validation errors on the message."""
        response = client.post(f"/projects/{project_id}/messages", json={"message": "  "}, headers=HEADERS)
        assert response.status_code == 400

    def test_busy_project_conflicts(self, client, project_id, sessions):
        """Test that a second concurrent turn is rejected."""
        sessions.begin_turn(project_id, "engineer")

        response = client.post(f"/projects/{project_id}/messages", json={"message": "hi"}, headers=HEADERS)

        assert response.status_code == 409

    def test_cancel_idle_project(self, client, project_id):
        """Test cancelling when no turn is running."""
        response = client.post(f"/projects/{project_id}/cancel", headers=HEADERS)
        assert response.json() == {"cancelled": False}

    def test_delete_and_clear_messages(self, client, model, project_id):
        """Test deleting one message and clearing the rest."""
        model.responses = ["One.", "Two."]
        client.post(f"/projects/{project_id}/messages", json={"message": "a"}, headers=HEADERS)
        client.post(f"/projects/{project_id}/messages", json={"message": "b"}, headers=HEADERS)
        messages = client.get(f"/projects/{project_id}/messages", headers=HEADERS).json()

        response = client.delete(f"/projects/{project_id}/messages/{messages[0]['id']}", headers=HEADERS)
        assert response.json() == {"deleted": 1}
        assert client.delete(f"/projects/{project_id}/messages/missing", headers=HEADERS).status_code == 404

        assert client.delete(f"/projects/{project_id}/messages", headers=HEADERS).json() == {"deleted": 3}
        assert client.get(f"/projects/{project_id}/messages", headers=HEADERS).json() == []


class TestTurnStream:
    """Tests for relaying a running turn."""

    @pytest.mark.asyncio
    async def test_unread_stream_still_releases_the_project(self, service, model, sessions):
        """Test that a response whose body is never read does not leave the project busy."""
        project = await service.create_project("user_1", name="Demo")
        model.responses = ["Hello."]
        turn = await service.prepare_turn(project.id, "user_1", "hi")

        stream = TurnStream(service, turn)
        await stream.task

        assert not sessions.get_session(project.id).busy
        next_turn = await service.prepare_turn(project.id, "user_1", "again")
        assert next_turn.user_message.content == "again"

    @pytest.mark.asyncio
    async def test_events_buffered_until_read(self, service, model):
        """Test that a late reader still receives the whole turn."""
        project = await service.create_project("user_1", name="Demo")
        model.responses = ["Hello."]
        stream = TurnStream(service, await service.prepare_turn(project.id, "user_1", "hi"))
        await stream.task

        events = [json.loads(line) async for line in stream]

        assert events[0]["type"] == "turn_started"
        assert events[-1]["type"] == "done"


class TestFileAndVersionEndpoints:
    """Tests for files and version snapshots."""

    def test_write_read_delete_file(self, client, project_id):
        """Test the file lifecycle with nested paths."""
        written = client.put(f"/projects/{project_id}/files/src/App.tsx", json={"content": "app"}, headers=HEADERS)
        assert written.status_code == 200
        assert written.json()["path"] == "src/App.tsx"

        assert client.get(f"/projects/{project_id}/files/src/App.tsx", headers=HEADERS).json()["content"] == "app"
        assert [file["path"] for file in client.get(f"/projects/{project_id}/files", headers=HEADERS).json()] == [
            "src/App.tsx"
        ]

        assert client.delete(f"/projects/{project_id}/files/src/App.tsx", headers=HEADERS).status_code == 204
        assert client.get(f"/projects/{project_id}/files/src/App.tsx", headers=HEADERS).status_code == 404

    def test_versions_list_and_restore(self, client, model, project_id):
        """Test that a file-changing turn can be restored later."""
        model.responses = [
            tool_response("", ("w1", "write_file", {"path": "a.txt", "content": "v1"})),
            "Saved.",
        ]
        client.post(f"/projects/{project_id}/messages", json={"message": "save"}, headers=HEADERS)
        client.put(f"/projects/{project_id}/files/a.txt", json={"content": "edited"}, headers=HEADERS)

        versions = client.get(f"/projects/{project_id}/versions", headers=HEADERS).json()
        assert [version["version_number"] for version in versions] == [1]
        assert versions[0]["file_count"] == 1

        restored = client.post(f"/projects/{project_id}/versions/{versions[0]['id']}/restore", headers=HEADERS)
        assert restored.status_code == 200
        assert client.get(f"/projects/{project_id}/files/a.txt", headers=HEADERS).json()["content"] == "v1"

        missing = client.post(f"/projects/{project_id}/versions/missing/restore", headers=HEADERS)
        assert missing.status_code == 404


class TestSandboxEndpoints:
    """Tests for reading sandbox output."""

    def test_terminal_shows_command_output(self, client, model, project_id):
        """Test that output of the agent's commands can be read back."""
        model.responses = [tool_response("", ("c1", "run_command", {"command": "npm test"})), "Tests pass."]
        client.post(f"/projects/{project_id}/messages", json={"message": "run the tests"}, headers=HEADERS)

        response = client.get(f"/projects/{project_id}/terminal", headers=HEADERS)

        assert response.status_code == 200
        assert response.json() == {"lines": ["$ npm test", "ok"]}

    def test_terminal_of_foreign_project(self, client, project_id):
        """Test that another user cannot read the output."""
        response = client.get(f"/projects/{project_id}/terminal", headers={"X-User-Id": "intruder"})
        assert response.status_code == 404


class TestAgentEndpoints:
    """Tests for the agent catalog."""

    def test_agents_in_registration_order(self, client):
        """Test the agent list without prompts."""
        agents = client.get("/agents").json()

        assert [agent["id"] for agent in agents] == ["leader", "pm", "engineer", "architect", "analyst", "seo"]
        assert "system_prompt" not in agents[0]

    def test_suggest_by_partial_name(self, client):
        """Test mention suggestions."""
        suggestions = client.get("/agents/suggest", params={"q": "arch"}).json()
        assert [agent["id"] for agent in suggestions] == ["architect"]
