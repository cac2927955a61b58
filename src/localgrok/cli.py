"""CLI interface for localgrok with streaming answers and Ctrl+C cancellation."""

from __future__ import annotations

import asyncio
import logging
import os
import shutil
import signal
import time
from dataclasses import replace
from pathlib import Path

import click
from prompt_toolkit import PromptSession
from prompt_toolkit.formatted_text import HTML
from prompt_toolkit.history import FileHistory
from rich.console import Console
from rich.live import Live
from rich.markdown import Markdown
from rich.table import Table

from localgrok import __version__
from localgrok.config import LocalGrokConfig, load_config
from localgrok.core.orchestrator import StreamingOrchestrator
from localgrok.events.bus import EventBus
from localgrok.llm.client import AsyncOllamaClient, OllamaError
from localgrok.search.client import SearxngClient
from localgrok.session import ChatSession, TurnInProgressError
from localgrok.tools.builtin import register_builtins
from localgrok.tools.registry import ToolRegistry
from localgrok.types import (
    Cancelled,
    EventType,
    Failed,
    Finalized,
    ToolActivity,
    TurnEvent,
    TurnState,
)

console = Console()


class StreamingDisplay:
    """Renders turn events to the terminal in real time."""

    def __init__(self, con: Console):
        self.con = con
        self._live: Live | None = None
        self._reasoning = ""

    def attach(self, bus: EventBus) -> None:
        bus.subscribe("*", self.handle)

    def handle(self, event: TurnEvent):
        if event.type == EventType.TURN_STATE:
            if event.data["state"] == TurnState.THINKING:
                self.con.print("[dim italic]thinking...[/dim italic]")

        elif event.type == EventType.STREAM_REASONING:
            self._reasoning += event.data["delta"]

        elif event.type == EventType.STREAM_CONTENT:
            text = event.data["text"]
            if self._live is None:
                if not text:
                    return
                self._live = Live(Markdown(text), console=self.con, refresh_per_second=12)
                self._live.start()
            else:
                self._live.update(Markdown(text))

        elif event.type == EventType.TOOL_ACTIVITY:
            self._on_tool(event.data["activity"])

        elif event.type == EventType.TURN_DONE:
            outcome: Finalized = event.data["outcome"]
            self._stop(outcome.visible_text)
            if outcome.tool_used:
                self.con.print(f"[dim]{outcome.tool_label}[/dim]")

        elif event.type == EventType.TURN_CANCELLED:
            outcome_c: Cancelled = event.data["outcome"]
            self._stop(outcome_c.visible_text)
            self.con.print("[yellow](stopped)[/yellow]")

        elif event.type == EventType.TURN_ERROR:
            self._stop()
            self.con.print(f"[red]Error: {event.data['reason']}[/red]")

    def _on_tool(self, activity: ToolActivity):
        if activity.invocation is None:
            return
        if activity.pending:
            self._stop("")
            query = getattr(activity.invocation, "query", "")
            self.con.print(f"[yellow]> {activity.display_name}[/yellow] [dim]{query}[/dim]")
        else:
            self.con.print(f"[green]OK[/green] [dim]{activity.display_name}[/dim]")

    def _stop(self, final: str | None = None):
        if self._live is not None:
            if final is not None:
                self._live.update(Markdown(final))
            self._live.stop()
            self._live = None
        elif final:
            self.con.print(Markdown(final))
        if self._reasoning.strip():
            first = self._reasoning.strip().split("\n")[0][:80]
            self.con.print(f"[dim italic]thought: {first}...[/dim italic]")
        self._reasoning = ""


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------

def _on_off(flag: bool) -> str:
    return "[green]on[/green]" if flag else "[dim]off[/dim]"


def handle_command(
    cmd: str,
    chat: ChatSession,
    client: AsyncOllamaClient,
    search: SearxngClient,
    registry: ToolRegistry,
    loop: asyncio.AbstractEventLoop,
) -> bool | str:
    """Handle /commands. Returns True if handled, 'quit' to exit."""
    parts = cmd.strip().split(maxsplit=1)
    command = parts[0].lower()
    arg = parts[1].strip() if len(parts) > 1 else ""
    opts = chat.options

    if command in ("/quit", "/exit", "/q"):
        return "quit"

    elif command == "/clear":
        chat.clear()
        console.print("[dim]Conversation cleared.[/dim]")
        return True

    elif command == "/models":
        try:
            models = loop.run_until_complete(client.list_models())
        except OllamaError as e:
            console.print(f"[red]{e}[/red]")
            return True
        if not models:
            console.print("[dim]No models installed on the server.[/dim]")
        for name in models:
            mark = " *" if name == opts.model else ""
            console.print(f"  {name}{mark}")
        return True

    elif command == "/model":
        if not arg:
            console.print(f"[dim]Model: {opts.model}[/dim]")
        else:
            chat.update_options(model=arg)
            console.print(f"[dim]Model: {arg}[/dim]")
        return True

    elif command == "/think":
        chat.update_options(think=not opts.think)
        console.print(f"Reasoning: {_on_off(chat.options.think)}")
        return True

    elif command == "/tools":
        chat.update_options(tools_enabled=not opts.tools_enabled)
        console.print(f"Tools: {_on_off(chat.options.tools_enabled)}")
        if chat.options.tools_enabled:
            for tool in registry.list_tools():
                console.print(f"  [bold]{tool.name}[/bold]: {tool.description[:80]}")
        return True

    elif command == "/brain":
        enabled = not (opts.think and opts.tools_enabled)
        chat.update_options(think=enabled, tools_enabled=enabled)
        console.print(f"Reasoning + tools: {_on_off(enabled)}")
        return True

    elif command == "/status":
        online = loop.run_until_complete(client.check_connection())
        table = Table(show_header=False, box=None)
        table.add_row("Server", f"{client.server.base_url} "
                      + ("[green](online)[/green]" if online else "[red](offline)[/red]"))
        table.add_row("Search", search.spec.base_url
                      if search.is_configured and search.spec else "[dim]not configured[/dim]")
        table.add_row("Model", opts.model)
        table.add_row("Reasoning", _on_off(opts.think))
        table.add_row("Tools", _on_off(opts.tools_enabled))
        table.add_row("Messages", str(len(chat.history)))
        console.print(table)
        return True

    elif command == "/help":
        console.print("""[bold]Commands:[/bold]
  /models          - List models installed on the server
  /model <name>    - Switch model
  /think           - Toggle reasoning
  /tools           - Toggle web search and clock tools
  /brain           - Toggle reasoning and tools together
  /status          - Show server, search and session status
  /clear           - Clear conversation
  /quit            - Exit

  Ctrl+C while a response is streaming stops it and keeps the partial answer.
        """)
        return True

    return False


def _resolve_model(client: AsyncOllamaClient, config: LocalGrokConfig,
                   loop: asyncio.AbstractEventLoop) -> str:
    """Fall back to the first installed model if the configured one is missing."""
    try:
        models = loop.run_until_complete(client.list_models())
    except OllamaError as e:
        console.print(f"[yellow]Server unavailable: {e}[/yellow]")
        return config.model
    if models and config.model not in models:
        console.print(
            f"[yellow]Model {config.model} not found, using {models[0]}[/yellow]"
        )
        return models[0]
    return config.model


def _run_turn(chat: ChatSession, text: str, bus: EventBus,
              loop: asyncio.AbstractEventLoop):
    """Run one turn with Ctrl+C bound to cancellation."""
    try:
        loop.add_signal_handler(signal.SIGINT, chat.cancel)
    except NotImplementedError:
        # No loop signal handlers on this platform; Ctrl+C raises instead.
        pass
    try:
        return loop.run_until_complete(chat.send(text, bus.callbacks()))
    finally:
        try:
            loop.remove_signal_handler(signal.SIGINT)
        except NotImplementedError:
            pass


@click.command()
@click.option("--config", "-c", "config_path", default=None,
              help="Path to localgrok.yaml (auto-detected from CWD or ~/.config/localgrok/)")
@click.option("--model", "-m", default=None, help="Model name (overrides config)")
@click.option("--prompt", "-p", "prompt_text", default=None,
              help="Ask a single question non-interactively and exit")
@click.option("--verbose", "-v", is_flag=True, help="Verbose logging")
def main(config_path: str | None, model: str | None, prompt_text: str | None,
         verbose: bool):
    """localgrok - chat with a local LLM that can search the web."""
    if verbose:
        logging.basicConfig(level=logging.DEBUG)
    else:
        logging.basicConfig(level=logging.WARNING)

    config = load_config(config_path)
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    client = AsyncOllamaClient(config.server, timeout=config.timeout)
    search = SearxngClient(config.search_spec)
    registry = ToolRegistry()
    register_builtins(registry, search)

    options = replace(
        config.turn_options(),
        model=model or _resolve_model(client, config, loop),
    )

    orchestrator = StreamingOrchestrator(client, registry, options)
    chat = ChatSession(orchestrator, options)
    bus = EventBus()
    display = StreamingDisplay(console)
    display.attach(bus)

    def _shutdown():
        loop.run_until_complete(client.close())
        loop.run_until_complete(search.close())
        loop.close()

    # Non-interactive mode
    if prompt_text:
        try:
            outcome = _run_turn(chat, prompt_text, bus, loop)
        finally:
            _shutdown()
        if isinstance(outcome, Failed):
            raise SystemExit(1)
        return

    console.print(
        f"[bold bright_cyan]localgrok[/bold bright_cyan] [bold]v{__version__}[/bold]"
        "  [dim]Local LLM chat with web search[/dim]"
    )
    console.print(f"[dim]Server: {config.server.base_url}  Model: {options.model}[/dim]")
    console.print("[dim]Type /help for commands[/dim]\n")

    def _get_prompt():
        cols = shutil.get_terminal_size().columns
        color = "ansigreen" if chat.options.tools_enabled else "ansiblue"
        return HTML(f"<dim>{'─' * cols}</dim>\n<{color}><b>❯ </b></{color}>")

    history_path = Path(os.path.expanduser("~/.config/localgrok/history"))
    history_path.parent.mkdir(parents=True, exist_ok=True)
    session = PromptSession(history=FileHistory(str(history_path)))

    try:
        while True:
            try:
                user_input = session.prompt(_get_prompt).strip()
            except (EOFError, KeyboardInterrupt):
                console.print("\n[dim]Goodbye![/dim]")
                break

            if not user_input:
                continue

            if user_input.startswith("/"):
                try:
                    result = handle_command(user_input, chat, client, search, registry, loop)
                except TurnInProgressError as e:
                    console.print(f"[red]{e}[/red]")
                    continue
                if result == "quit":
                    console.print("[dim]Goodbye![/dim]")
                    break
                if result:
                    continue
                console.print(f"[red]Unknown command: {user_input.split()[0]}[/red]")
                continue

            start = time.monotonic()
            try:
                outcome = _run_turn(chat, user_input, bus, loop)
            except KeyboardInterrupt:
                console.print("\n[yellow](stopped)[/yellow]")
                continue
            if isinstance(outcome, (Finalized, Cancelled)):
                console.print(f"[dim]({time.monotonic() - start:.1f}s)[/dim]\n")
    finally:
        _shutdown()


if __name__ == "__main__":
    main()
