#!/usr/bin/env python3
"""Interactive chat CLI for testing the CRM assistant service."""

import json
import sys

import httpx
from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.prompt import Confirm, Prompt


class ChatCLI:
    """Interactive chat interface for the CRM assistant service."""

    def __init__(
        self, base_url: str = "http://localhost:8000", workspace_id: str = "demo-workspace", user_id: str = "demo-user"
    ):
        """Initialize chat CLI."""
        self.base_url = base_url
        self.conversation_id: str | None = None
        self.console = Console()
        self.client = httpx.Client(
            timeout=httpx.Timeout(120.0, connect=10.0),
            headers={"X-Workspace-ID": workspace_id, "X-User-ID": user_id},
        )

    def start(self) -> None:
        """Start the interactive chat session."""
        self.console.print(
            Panel.fit(
                "[bold blue]CRM Assistant - Interactive Chat[/bold blue]\n"
                "Type your messages to chat with the AI assistant.\n"
                "Commands: /help, /new, /quit",
                border_style="blue",
            )
        )

        # Test connection
        if not self._test_connection():
            self.console.print(f"[red]Cannot connect to the service at {self.base_url}. Make sure it's running.[/red]")
            return

        self.console.print("[green]Connected to CRM assistant service[/green]\n")

        # Main chat loop
        try:
            while True:
                user_input = Prompt.ask("\n[bold cyan]You[/bold cyan]")

                if user_input.lower() in ["/quit", "/exit", "quit", "exit"]:
                    break
                elif user_input.lower() == "/help":
                    self._show_help()
                    continue
                elif user_input.lower() == "/new":
                    self.conversation_id = None
                    self.console.print("[yellow]Started a new conversation[/yellow]")
                    continue
                elif user_input.strip() == "":
                    continue

                if not self.conversation_id and not self._create_conversation():
                    continue

                self._stream("/api/v1/chat/completions", {"conversationId": self.conversation_id, "message": user_input})

        except KeyboardInterrupt:
            pass
        finally:
            self.console.print("\n[yellow]Goodbye![/yellow]")
            self.client.close()

    def _test_connection(self) -> bool:
        """Test connection to the service."""
        try:
            response = self.client.get(f"{self.base_url}/health")
            return response.status_code == 200
        except httpx.HTTPError:
            return False

    def _create_conversation(self) -> bool:
        """Create a conversation for the next message."""
        try:
            response = self.client.post(f"{self.base_url}/api/v1/chat/conversations", json={})
        except httpx.HTTPError as e:
            self.console.print(f"[red]Connection error: {e}[/red]")
            return False

        if response.status_code != 201:
            self.console.print(f"[red]API Error: {response.status_code} - {response.text}[/red]")
            return False

        self.conversation_id = response.json()["id"]
        return True

    def _stream(self, path: str, payload: dict) -> None:
        """POST a request and render the event stream, following confirmations."""
        pending: dict | None = None
        text_parts: list[str] = []

        try:
            with self.client.stream("POST", f"{self.base_url}{path}", json=payload) as response:
                if response.status_code != 200:
                    response.read()
                    self.console.print(f"[red]API Error: {response.status_code} - {response.text}[/red]")
                    return

                for line in response.iter_lines():
                    if not line.startswith("data: "):
                        continue
                    data = line[len("data: ") :]
                    if data == "[DONE]":
                        break

                    event = json.loads(data)
                    if event["type"] == "token":
                        text_parts.append(event["content"])
                        self.console.print(event["content"], end="", markup=False, highlight=False)
                    elif event["type"] == "tool_executing":
                        self.console.print(f"\n[dim]Running {event['name']} {json.dumps(event['arguments'])}[/dim]")
                    elif event["type"] == "tool_call_pending":
                        pending = event
                    elif event["type"] == "error":
                        self.console.print(f"\n[red]Error: {event['error']}[/red]")

        except httpx.HTTPError as e:
            self.console.print(f"[red]Connection error: {e}[/red]")
            return

        if text_parts:
            self.console.print()
            self._display_response("".join(text_parts))

        if pending:
            self._confirm(pending)

    def _confirm(self, pending: dict) -> None:
        """Ask the user to approve a paused tool call and send the decision."""
        self.console.print(
            Panel(
                f"[bold]{pending['name']}[/bold]\n\n{json.dumps(pending['arguments'], indent=2)}",
                title="[yellow]Approval required[/yellow]",
                border_style="yellow",
            )
        )
        approved = Confirm.ask("Approve this action?", default=False)
        self._stream(
            "/api/v1/chat/tool-confirm",
            {
                "conversationId": self.conversation_id,
                "messageId": pending["messageId"],
                "toolCallId": pending["toolCallId"],
                "approved": approved,
            },
        )

    def _display_response(self, text: str) -> None:
        """Display the final assistant text with markdown formatting."""
        self.console.print(
            Panel(
                Markdown(text),
                title="[bold green]CRM Assistant[/bold green]",
                border_style="green",
                padding=(1, 2),
            )
        )

    def _show_help(self) -> None:
        """Show help information."""
        help_text = """
[bold]Available Commands:[/bold]
• /help - Show this help message
• /new - Start a new conversation
• /quit or /exit - Exit the chat

[bold]Example Conversation:[/bold]
1. "What kinds of records are in this workspace?"
2. "Create a contact named Jane Doe with email jane@example.com"
3. Approve the create_record call when prompted
4. "Add a note to Jane saying we met at the conference"

[bold]Tips:[/bold]
• Reading data runs immediately; creating, updating and deleting asks for approval
• Rejecting an action tells the assistant, which will suggest alternatives
        """

        self.console.print(Panel(help_text.strip(), title="[cyan]Help[/cyan]", border_style="cyan"))


def main():
    """Main entry point for the chat CLI."""
    base_url = sys.argv[1] if len(sys.argv) > 1 else "http://localhost:8000"
    workspace_id = sys.argv[2] if len(sys.argv) > 2 else "demo-workspace"
    user_id = sys.argv[3] if len(sys.argv) > 3 else "demo-user"

    chat = ChatCLI(base_url, workspace_id, user_id)
    chat.start()


if __name__ == "__main__":
    main()
