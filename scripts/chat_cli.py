#!/usr/bin/env python3
"""Interactive chat CLI for talking to a project's agent team."""

import json
import sys

import httpx
from rich.console import Console
from rich.live import Live
from rich.markdown import Markdown
from rich.panel import Panel
from rich.prompt import Prompt

STATUS_ICONS = {"pending": "⏳", "running": "⚙️", "completed": "✅", "error": "❌"}


class ChatCLI:
    """Interactive chat interface for the agent studio service."""

    def __init__(self, base_url: str = "http://localhost:8000", user_id: str = "cli-user"):
        """Initialize chat CLI."""
        self.base_url = base_url
        self.project_id: str | None = None
        self.console = Console()
        self.client = httpx.Client(timeout=None, headers={"X-User-Id": user_id})

    def start(self) -> None:
        """Start the interactive chat session."""
        self.console.print(
            Panel.fit(
                "[bold blue]🛠️  Agent Studio - Interactive Chat[/bold blue]\n"
                "Type your messages to talk to the team. Mention an agent with @, e.g. @pm.\n"
                "Commands: /help, /agents, /files, /new, /clear, /quit",
                border_style="blue",
            )
        )

        # Test connection
        if not self._test_connection():
            self.console.print(f"[red]❌ Cannot connect to the service at {self.base_url}.[/red]")
            return

        self.console.print("[green]✅ Connected to agent studio service[/green]\n")

        # Main chat loop
        try:
            while True:
                user_input = Prompt.ask("\n[bold cyan]You[/bold cyan]")
                command = user_input.strip().lower()

                if command in ["/quit", "/exit", "quit", "exit"]:
                    break
                elif command == "/help":
                    self._show_help()
                    continue
                elif command == "/agents":
                    self._show_agents()
                    continue
                elif command == "/files":
                    self._show_files()
                    continue
                elif command == "/new":
                    self.project_id = None
                    self.console.print("[yellow]🔄 Next message starts a new project[/yellow]")
                    continue
                elif command == "/clear":
                    self._clear_history()
                    continue
                elif command == "":
                    continue

                if not self.project_id and not self._create_project(user_input):
                    continue

                self._send_message(user_input)

        except KeyboardInterrupt:
            pass
        finally:
            self.console.print("\n[yellow]👋 Goodbye![/yellow]")
            self.client.close()

    def _test_connection(self) -> bool:
        """Test connection to the service."""
        try:
            response = self.client.get(f"{self.base_url}/health")
            return response.status_code == 200
        except httpx.HTTPError:
            return False

    def _create_project(self, prompt: str) -> bool:
        response = self.client.post(f"{self.base_url}/projects", json={"prompt": prompt})
        if response.status_code != 201:
            self.console.print(f"[red]❌ API Error: {response.status_code} - {response.text}[/red]")
            return False
        project = response.json()
        self.project_id = project["id"]
        self.console.print(f"[dim]📁 Project: {project['name']} ({self.project_id})[/dim]")
        return True

    def _send_message(self, message: str) -> None:
        """Send a message and render the streamed turn."""
        url = f"{self.base_url}/projects/{self.project_id}/messages"
        try:
            with self.client.stream("POST", url, json={"message": message}) as response:
                if response.status_code != 200:
                    response.read()
                    self.console.print(f"[red]❌ API Error: {response.status_code} - {response.text}[/red]")
                    return
                self._render_stream(response)
        except KeyboardInterrupt:
            self.client.post(f"{self.base_url}/projects/{self.project_id}/cancel")
            self.console.print("[yellow]⏹ Cancelled[/yellow]")
        except httpx.HTTPError as e:
            self.console.print(f"[red]❌ Connection error: {e}[/red]")

    def _render_stream(self, response: httpx.Response) -> None:
        live: Live | None = None
        agent_id = ""
        content = ""

        def finish_live() -> None:
            nonlocal live
            if live is not None:
                live.stop()
                live = None

        for line in response.iter_lines():
            if not line.strip():
                continue
            event = json.loads(line)
            data = event.get("data", {})
            kind = event["type"]

            if kind == "message_started":
                finish_live()
                agent_id, content = event.get("agent_id") or "", ""
                live = Live(self._message_panel(agent_id, content), console=self.console, refresh_per_second=8)
                live.start()
            elif kind == "text_delta" and live is not None:
                content = data.get("content", "")
                live.update(self._message_panel(agent_id, content))
            elif kind == "tool_status":
                call = data["tool_call"]
                if call["status"] in ("completed", "error"):
                    finish_live()
                    icon = STATUS_ICONS.get(call["status"], "•")
                    self.console.print(f"  {icon} [bold]{call['name']}[/bold] [dim]{(call['result'] or '')[:120]}[/dim]")
            elif kind == "delegation_started":
                finish_live()
                self.console.print(f"[magenta]➡️  {data['delegated_from']} → {event['agent_id']}: {data['task']}[/magenta]")
            elif kind == "files_changed":
                self.console.print(f"[dim]📝 {len(data['paths'])} files in project[/dim]")
            elif kind == "cancelled":
                finish_live()
                self.console.print("[yellow]⏹ Turn cancelled[/yellow]")
            elif kind == "error":
                finish_live()
                self.console.print(f"[red]❌ {data.get('message')}[/red]")
            elif kind == "done":
                finish_live()
                if data.get("version_number"):
                    self.console.print(f"[dim]💾 Saved version {data['version_number']}[/dim]")

        finish_live()

    def _message_panel(self, agent_id: str, content: str) -> Panel:
        return Panel(
            Markdown(content or "…"),
            title=f"[bold green]🤖 {agent_id}[/bold green]",
            border_style="green",
            padding=(1, 2),
        )

    def _show_agents(self) -> None:
        agents = self.client.get(f"{self.base_url}/agents").json()
        lines = "\n".join(f"• [bold]@{agent['id']}[/bold] {agent['name_en']} - {agent['description']}" for agent in agents)
        self.console.print(Panel(lines, title="[yellow]👥 Team[/yellow]", border_style="yellow"))

    def _show_files(self) -> None:
        if not self.project_id:
            self.console.print("[dim]No project yet[/dim]")
            return
        files = self.client.get(f"{self.base_url}/projects/{self.project_id}/files").json()
        listing = "\n".join(f"📄 {file['path']}" for file in files) or "[dim]No files[/dim]"
        self.console.print(Panel(listing, title="[yellow]📁 Files[/yellow]", border_style="yellow"))

    def _clear_history(self) -> None:
        if not self.project_id:
            return
        response = self.client.delete(f"{self.base_url}/projects/{self.project_id}/messages")
        self.console.print(f"[yellow]🔄 Cleared {response.json().get('deleted', 0)} messages[/yellow]")

    def _show_help(self) -> None:
        """Show help information."""
        help_text = """
[bold]Available Commands:[/bold]
• /help - Show this help message
• /agents - List the team
• /files - List the project's files
• /new - Start a new project with the next message
• /clear - Clear the conversation history
• /quit or /exit - Exit the chat

[bold]Example Conversation:[/bold]
1. "@leader build a todo app with a product spec first"
2. "@engineer add a dark mode toggle"
3. "@architect review the component structure"

[bold]Tips:[/bold]
• Without a mention, the agent of the previous turn answers
• Press Ctrl+C during a turn to cancel it
        """

        self.console.print(Panel(help_text.strip(), title="[cyan]❓ Help[/cyan]", border_style="cyan"))


def main():
    """Main entry point for the chat CLI."""
    base_url = sys.argv[1] if len(sys.argv) > 1 else "http://localhost:8000"
    user_id = sys.argv[2] if len(sys.argv) > 2 else "cli-user"

    chat = ChatCLI(base_url, user_id)
    chat.start()


if __name__ == "__main__":
    main()
