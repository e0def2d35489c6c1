#!/usr/bin/env python3
"""
Voice Kiosk terminal client.

Rich output with an async prompt_toolkit input line. The terminal stands in
for the kiosk screen: transcript lines, the streaming subtitle, pipeline
state, command tips, toasts and background tasks are printed as the engine
reports them. Anything typed that is not a slash command is sent as text.

Usage: voicekiosk [--ws-url ws://kiosk:8080/ws] [--http-base http://kiosk:8080]
"""

from __future__ import annotations

import argparse
import asyncio
import logging
from dataclasses import replace

from prompt_toolkit import PromptSession
from prompt_toolkit.history import InMemoryHistory
from prompt_toolkit.patch_stdout import patch_stdout
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from voicekiosk import __version__
from voicekiosk.app import KioskClient
from voicekiosk.core.config import KioskConfig, config as default_config
from voicekiosk.core.logging import setup_logging
from voicekiosk.events.models import PartKind
from voicekiosk.sync.models import ChatMessage
from voicekiosk.transport.envelopes import PipelineState

logger = logging.getLogger(__name__)

HELP = """\
[bold]/ptt[/bold] start capture      [bold]/stop[/bold] stop capture
[bold]/mode[/bold] ptt|natural       [bold]/channel[/bold] voice|keyboard
[bold]/sessions[/bold] list          [bold]/session[/bold] <key> switch
[bold]/new[/bold] <name> create      [bold]/delete[/bold] <key> delete
[bold]/tasks[/bold] list             [bold]/inspect[/bold] <task id>
[bold]/abort[/bold] inspected task   [bold]/cancel[/bold] cancel command
[bold]/quit[/bold] exit"""

STATE_STYLE = {
    PipelineState.IDLE: "dim",
    PipelineState.TRIGGERED: "bold green",
    PipelineState.RECORDING: "green",
    PipelineState.TRANSCRIBING: "yellow",
    PipelineState.THINKING: "magenta",
    PipelineState.RESPONDING: "cyan",
}


class KioskTUI:
    """Prints the engine mirror and turns typed lines into commands."""

    def __init__(self, client: KioskClient, console: Console | None = None) -> None:
        self.client = client
        self.console = console or Console()
        self._printed = 0  # history entries already on screen
        self._subtitle_shown = 0  # subtitle characters already on screen

        client.engine.on_change(self._on_engine_change)
        client.tasks.on_change(self._on_tasks_change)
        client.aggregator.on_change(self._on_events_change)

    # ── Rendering ─────────────────────────────────────────────────────────

    def _print_message(self, msg: ChatMessage) -> None:
        if msg.is_error:
            self.console.print(Text(f"  ⚠ {msg.text}", style="bold red"))
        elif msg.role == "user":
            self.console.print(Text(f"you → {msg.text}", style="white"))
        else:
            self.console.print(Text(msg.text, style="cyan"))

    def _on_engine_change(self, field: str) -> None:
        engine = self.client.engine

        if field == "history":
            # A shorter history means a reload; print it from the top
            if len(engine.history) < self._printed:
                self._printed = 0
            for msg in engine.history[self._printed:]:
                self._print_message(msg)
            self._printed = len(engine.history)

        elif field == "subtitle":
            # Stream only the new tail; a cleared subtitle ends the line
            if len(engine.subtitle) > self._subtitle_shown:
                self.console.print(
                    Text(engine.subtitle[self._subtitle_shown:], style="dim cyan"), end=""
                )
            elif not engine.subtitle and self._subtitle_shown:
                self.console.print()
            self._subtitle_shown = len(engine.subtitle)

        elif field == "session":
            self._printed = 0
            self._subtitle_shown = 0
            self.console.rule(f"[bold]{escape(engine.session_key)}[/bold]", style="dim")

        elif field == "state":
            style = STATE_STYLE.get(engine.state, "white")
            info = f" [dim]({escape(engine.state_info)})[/dim]" if engine.state_info else ""
            self.console.print(
                f"[{style}]● {engine.state.value}[/{style}] "
                f"[dim]{engine.mode.value}[/dim]{info}"
            )

        elif field == "channel":
            self.console.print(f"[magenta]channel: {engine.channel.value}[/magenta]")

        elif field == "connected":
            if engine.connected:
                self.console.print("[green]connected[/green]")
            else:
                self.console.print("[bold red]disconnected, reconnecting…[/bold red]")

        elif field == "command_tips":
            for tip in engine.command_tips[-1:]:
                self.console.print(
                    Panel(escape(tip.text), title=tip.role, border_style="yellow", padding=(0, 1))
                )

        elif field == "toast":
            if engine.toast:
                self.console.print(f"[bold yellow]✦ {escape(engine.toast)}[/bold yellow]")

    def _on_tasks_change(self) -> None:
        summary = self.client.tasks.summary()
        if summary:
            self.console.print(f"[dim]{summary}[/dim]")

    def _on_events_change(self) -> None:
        messages = self.client.aggregator.messages
        if not messages:
            return
        part = messages[-1].parts[-1] if messages[-1].parts else None
        if part is None:
            return
        if part.kind is PartKind.TOOL:
            self.console.print(f"[dim]⚙ {escape(part.tool_name or 'tool')} {part.state or ''}[/dim]")

    def _print_sessions(self) -> None:
        table = Table(show_header=True, header_style="bold", box=None)
        table.add_column("")
        table.add_column("session")
        table.add_column("key", style="dim")
        for opt in self.client.directory.options():
            marker = "●" if opt.current else ""
            label = opt.label + (" [dim](pending)[/dim]" if opt.pending else "")
            if not opt.selectable:
                label = f"[strike]{label}[/strike] [dim](voice)[/dim]"
            table.add_row(marker, label, escape(opt.key))
        self.console.print(table)

    def _print_tasks(self) -> None:
        tasks = self.client.tasks.tasks
        if not tasks:
            self.console.print("[dim]No background tasks.[/dim]")
            return
        table = Table(show_header=True, header_style="bold", box=None)
        table.add_column("id", style="dim")
        table.add_column("status")
        table.add_column("description")
        for task in tasks:
            table.add_row(escape(task.task_id), task.status.value, escape(task.description))
        self.console.print(table)

    def _print_inspection(self) -> None:
        inspector = self.client.inspector
        task = inspector.task
        if task is None:
            self.console.print("[dim]Nothing inspected.[/dim]")
            return
        lines = [
            f"[bold]{escape(task.description or task.task_id)}[/bold]",
            f"status {task.status.value}  elapsed {inspector.elapsed_label}  "
            f"progress {inspector.progress}%",
        ]
        for todo in inspector.todos:
            box = "☑" if todo.status == "completed" else "☐"
            lines.append(f"{box} {escape(todo.content)}")
        for message in inspector.aggregator.messages[-3:]:
            for part in message.parts:
                if part.text_bearing and part.text:
                    style = "dim italic" if part.kind is PartKind.REASONING else "cyan"
                    lines.append(f"[{style}]{escape(part.text[-300:])}[/{style}]")
        self.console.print(Panel("\n".join(lines), border_style="cyan", padding=(0, 1)))

    # ── Commands ──────────────────────────────────────────────────────────

    async def handle_line(self, line: str) -> bool:
        """Run one input line. Returns False when the user asked to quit."""
        line = line.strip()
        if not line:
            return True
        if not line.startswith("/"):
            await self.client.engine.send_text(line)
            return True

        command, _, arg = line.partition(" ")
        arg = arg.strip()
        engine = self.client.engine
        directory = self.client.directory

        if command in ("/quit", "/exit", "/q"):
            return False
        elif command == "/help":
            self.console.print(Panel(HELP, border_style="dim", padding=(0, 1)))
        elif command == "/ptt":
            await engine.start_capture()
        elif command == "/stop":
            await engine.stop_capture()
        elif command == "/mode":
            if not await engine.set_mode(arg):
                self.console.print("[red]usage: /mode ptt|natural[/red]")
        elif command == "/channel":
            if not await engine.switch_channel(arg):
                self.console.print("[red]usage: /channel voice|keyboard[/red]")
        elif command == "/sessions":
            await directory.refresh()
            self._print_sessions()
        elif command == "/session":
            if not await directory.select(arg):
                self.console.print(f"[red]cannot switch to {escape(arg) or '?'}[/red]")
        elif command == "/new":
            if await directory.create(arg) is None:
                self.console.print("[red]usage: /new <name>[/red]")
        elif command == "/delete":
            if not await directory.delete(arg or engine.session_key):
                self.console.print("[red]delete failed[/red]")
        elif command == "/tasks":
            self._print_tasks()
        elif command == "/inspect":
            if arg:
                if not await self.client.inspector.open(arg):
                    self.console.print(f"[red]unknown task {escape(arg)}[/red]")
            self._print_inspection()
        elif command == "/abort":
            if not await self.client.inspector.abort():
                self.console.print("[red]abort failed[/red]")
        elif command == "/cancel":
            await engine.cancel_command()
        else:
            self.console.print(f"[red]unknown command {escape(command)}[/red] (try /help)")
        return True

    # ── Main loop ─────────────────────────────────────────────────────────

    async def run(self) -> None:
        self.console.print()
        self.console.print(
            Panel(
                f"[bold cyan]Voice Kiosk[/bold cyan] v{__version__} — Terminal Client\n"
                "Type to send text. [bold]/help[/bold] for commands, [bold]/quit[/bold] to exit.",
                border_style="dim",
                padding=(0, 1),
            )
        )
        self.console.print()

        await self.client.start()
        session: PromptSession = PromptSession(history=InMemoryHistory())

        try:
            while True:
                try:
                    with patch_stdout():
                        line = await session.prompt_async(
                            [("class:prompt", "kiosk → ")],
                            style=_prompt_style(),
                        )
                except (EOFError, KeyboardInterrupt):
                    break
                if not await self.handle_line(line):
                    break
        finally:
            await self.client.stop()
            self.console.print("\n[dim]Goodbye.[/dim]")


def _prompt_style():
    """prompt_toolkit style for the input prompt."""
    from prompt_toolkit.styles import Style

    return Style.from_dict({"prompt": "#888888"})


def build_config(args: argparse.Namespace, base: KioskConfig = default_config) -> KioskConfig:
    """Apply command-line overrides on top of the environment config."""
    server = base.server
    if args.ws_url:
        server = replace(server, ws_url=args.ws_url)
    if args.http_base:
        server = replace(server, http_base=args.http_base)
    if args.events_base:
        server = replace(server, events_base=args.events_base)
    return replace(base, server=server)


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Voice Kiosk terminal client")
    parser.add_argument("--ws-url", help="Pipeline websocket URL")
    parser.add_argument("--http-base", help="Session directory base URL")
    parser.add_argument("--events-base", help="Task event stream base URL")
    parser.add_argument(
        "--log-file",
        default="voicekiosk.log",
        help="Log file (keeps the terminal free for the UI)",
    )
    args = parser.parse_args(argv)

    setup_logging(log_file=args.log_file)
    tui = KioskTUI(KioskClient(build_config(args)))
    try:
        asyncio.run(tui.run())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
