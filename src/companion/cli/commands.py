"""Slash command handlers for the interactive terminal."""

from __future__ import annotations

import shlex
from typing import TYPE_CHECKING

from rich.console import Console
from rich.table import Table

from companion.errors import CompanionError, SessionNotFoundError
from companion.session.intents import (
    CycleMode,
    EditMemory,
    ExitAndSave,
    ExitWithoutSaving,
    NewSession,
    Reindex,
    Resume,
    SetMode,
)
from companion.session.models import Mode

if TYPE_CHECKING:
    from companion.session.controller import ModeController

# Sent by the Shift+Tab key binding
CYCLE_COMMAND = "/cycle"

HELP_ROWS = [
    ("/help", "Show this help message"),
    ("/new", "Start a new session"),
    ("/resume <id>", "Resume a saved session"),
    ("/sessions", "List saved sessions"),
    ("/reindex", "Rebuild the project index and reconnect tool servers"),
    ("/memory", "Edit project memory in $EDITOR"),
    ("/ask /plan /code /auto", "Switch mode (Shift+Tab cycles)"),
    ("/mode", "Show the current mode"),
    ("/status", "Show session, context and tool server status"),
    ("/exit", "Save the session and exit"),
    ("/quit", "Exit without saving"),
]


class CommandHandler:
    """Handles slash commands by turning them into controller intents."""

    def __init__(self, controller: ModeController, console: Console) -> None:
        self.controller = controller
        self.console = console

    async def handle(self, line: str) -> bool:
        """Handle a slash command. Returns False when the REPL should exit."""
        try:
            parts = shlex.split(line)
        except ValueError as e:
            self.console.print(f"[red]{e}[/red]")
            return True
        if not parts:
            return True

        cmd = parts[0].lower()
        args = parts[1:]

        if cmd == "/exit":
            path = await self.controller.handle(ExitAndSave())
            if path:
                self.console.print(f"[dim]Session saved to {path}[/dim]")
            return False
        if cmd == "/quit":
            await self.controller.handle(ExitWithoutSaving())
            return False

        handlers = {
            "/help": self._cmd_help,
            "/new": self._cmd_new,
            "/resume": self._cmd_resume,
            "/sessions": self._cmd_sessions,
            "/reindex": self._cmd_reindex,
            "/memory": self._cmd_memory,
            "/mode": self._cmd_mode,
            "/status": self._cmd_status,
            CYCLE_COMMAND: self._cmd_cycle,
        }
        mode_names = {f"/{mode.value}": mode for mode in Mode}

        try:
            if cmd in mode_names:
                await self.controller.handle(SetMode(mode_names[cmd]))
            elif cmd in handlers:
                await handlers[cmd](args)
            else:
                self.console.print(f"[red]Unknown command: {cmd}[/red]")
                self.console.print("Type [bold]/help[/bold] for available commands.")
        except CompanionError as e:
            self.console.print(f"[red]{e}[/red]")
        return True

    async def _cmd_help(self, args: list[str]) -> None:
        table = Table(title="Available Commands")
        table.add_column("Command", style="bold")
        table.add_column("Description")
        for cmd, desc in HELP_ROWS:
            table.add_row(cmd, desc)
        self.console.print(table)

    async def _cmd_new(self, args: list[str]) -> None:
        session = await self.controller.handle(NewSession())
        self.console.print(f"[dim]New session {session.session_id}[/dim]")

    async def _cmd_resume(self, args: list[str]) -> None:
        if not args:
            self.console.print("[red]Usage: /resume <session-id>[/red]")
            return
        try:
            session = await self.controller.handle(Resume(args[0]))
        except SessionNotFoundError as e:
            self.console.print(f"[red]{e}[/red]")
            return
        self.console.print(
            f"Resumed [bold]{session.title}[/bold] ({len(session.turns)} turns, "
            f"mode {session.mode.label})"
        )

    async def _cmd_sessions(self, args: list[str]) -> None:
        store = self.controller.store
        sessions = store.list_sessions() if store is not None else []
        if not sessions:
            self.console.print("[dim]No saved sessions[/dim]")
            return
        table = Table(title="Saved Sessions")
        table.add_column("Session ID")
        table.add_column("Title")
        table.add_column("Turns", justify="right")
        table.add_column("Updated")
        for meta in sessions:
            table.add_row(
                meta.session_id,
                meta.title,
                str(meta.turn_count),
                meta.updated_at.strftime("%Y-%m-%d %H:%M"),
            )
        self.console.print(table)

    async def _cmd_reindex(self, args: list[str]) -> None:
        await self.controller.handle(Reindex())
        self.console.print(f"[dim]{len(self.controller.session.tools)} tools available[/dim]")

    async def _cmd_memory(self, args: list[str]) -> None:
        try:
            text = await self.controller.handle(EditMemory())
        except RuntimeError as e:
            self.console.print(f"[red]{e}[/red]")
            return
        self.console.print(f"[dim]Project memory reloaded ({len(text)} chars)[/dim]")

    async def _cmd_mode(self, args: list[str]) -> None:
        self.console.print(f"Mode: [bold]{self.controller.session.mode.label}[/bold]")

    async def _cmd_cycle(self, args: list[str]) -> None:
        await self.controller.handle(CycleMode())

    async def _cmd_status(self, args: list[str]) -> None:
        snapshot = self.controller.snapshot()
        capacity = self.controller.context.budget.capacity
        self.console.print("[bold]Status:[/bold]")
        self.console.print(f"  Session: {snapshot.title} ({snapshot.session_id})")
        self.console.print(f"  Mode: {snapshot.mode.label}")
        self.console.print(f"  Context: {snapshot.context_tokens}/{capacity} tokens")
        self.console.print(f"  Tokens appended: {snapshot.token_counter}")
        self.console.print(f"  Tools: {len(snapshot.tool_names)}")
        client = self.controller.external_client
        if client is not None:
            for name, status in client.status().items():
                self.console.print(f"    {name}: {status.value}")
