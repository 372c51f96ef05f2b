"""Interactive REPL: prompt_toolkit input, rich output."""

from __future__ import annotations

import asyncio
import os
import signal
import sys
from typing import TYPE_CHECKING

from prompt_toolkit import PromptSession
from prompt_toolkit.auto_suggest import AutoSuggestFromHistory
from prompt_toolkit.history import FileHistory
from prompt_toolkit.key_binding import KeyBindings
from rich.console import Console
from rich.markdown import Markdown

from companion.cli.commands import CYCLE_COMMAND, CommandHandler
from companion.errors import SessionBusyError
from companion.session.events import SessionUpdate, UpdateKind
from companion.session.intents import Submit
from companion.session.controller import OutcomeStatus
from companion.tools.parser import strip_tool_calls

if TYPE_CHECKING:
    from pathlib import Path

    from companion.session.controller import ModeController
    from companion.tools.executor import PreparedCall

console = Console()

_PREVIEW_LINES = 8


def _key_bindings() -> KeyBindings:
    bindings = KeyBindings()

    @bindings.add("s-tab")
    def _(event) -> None:
        event.app.exit(result=CYCLE_COMMAND)

    return bindings


async def open_in_editor(path: Path) -> None:
    """MemoryEditor that opens ``$EDITOR`` on the file and waits for it."""
    editor = os.environ.get("VISUAL") or os.environ.get("EDITOR")
    if not editor:
        editor = "notepad" if sys.platform == "win32" else "vi"
    process = await asyncio.create_subprocess_exec(*editor.split(), str(path))
    await process.wait()


class TerminalRenderer:
    """Prints controller updates as they happen."""

    def __init__(self, out: Console) -> None:
        self.console = out

    def __call__(self, update: SessionUpdate) -> None:
        kind = update.kind
        if kind is UpdateKind.ASSISTANT_MESSAGE:
            text = strip_tool_calls(update.message)
            if text:
                self.console.print(Markdown(text))
        elif kind is UpdateKind.TOOL_CALL:
            call = update.data["call"]
            args = ", ".join(f"{k}={_short(v)}" for k, v in call.arguments.items())
            self.console.print(f"[cyan]→ {call.name}[/cyan]([dim]{args}[/dim])")
        elif kind is UpdateKind.TOOL_RESULT:
            result = update.data["result"]
            style = "green" if result.success else "red"
            label = result.kind.value if result.kind else ("ok" if result.success else "failed")
            self.console.print(f"  [{style}]{label}[/{style}]")
            lines = result.output.splitlines()
            for line in lines[:_PREVIEW_LINES]:
                self.console.print(f"  [dim]{line}[/dim]", highlight=False, markup=False)
            if len(lines) > _PREVIEW_LINES:
                self.console.print(f"  [dim]... {len(lines) - _PREVIEW_LINES} more lines[/dim]")
        elif kind is UpdateKind.MODE_CHANGED:
            self.console.print(f"[dim]Mode: {update.message}[/dim]")
        elif kind is UpdateKind.COMPACTION:
            self.console.print("[dim]Context compacted[/dim]")
        elif kind is UpdateKind.ERROR:
            self.console.print(f"[red]{update.message}[/red]")
        elif kind is UpdateKind.CANCELLED:
            self.console.print(f"[yellow]{update.message}[/yellow]")


def _short(value: object, limit: int = 60) -> str:
    text = repr(value)
    return text if len(text) <= limit else text[: limit - 3] + "..."


class InteractiveRepl:
    """Interactive REPL with slash commands."""

    def __init__(self, controller: ModeController, history_file: Path | None = None) -> None:
        self.controller = controller
        self.commands = CommandHandler(controller, console)
        self._running = False

        history = FileHistory(str(history_file)) if history_file else None
        self.session: PromptSession[str] = PromptSession(
            history=history,
            auto_suggest=AutoSuggestFromHistory(),
            key_bindings=_key_bindings(),
        )
        self._confirm_session: PromptSession[str] = PromptSession()

        controller.confirmer = self.confirm
        controller.add_listener(TerminalRenderer(console))

    async def confirm(self, prepared: PreparedCall) -> bool:
        """Ask the user whether a gated call may run."""
        call = prepared.call
        reason = prepared.classification.reason if prepared.classification else None
        console.print(f"[bold yellow]Allow {call.name}?[/bold yellow]")
        for key, value in call.arguments.items():
            console.print(f"  {key}: {_short(value, 200)}", highlight=False, markup=False)
        if reason:
            console.print(f"  [yellow]{reason}[/yellow]")
        loop = asyncio.get_running_loop()
        try:
            answer = await loop.run_in_executor(
                None, lambda: self._confirm_session.prompt("[y/N] ")
            )
        except KeyboardInterrupt:
            # Ctrl+C at the confirmation prompt cancels the whole turn
            self.controller.cancel()
            await asyncio.sleep(0)
            return False
        except EOFError:
            return False
        return answer.strip().lower() in ("y", "yes")

    async def submit(self, text: str) -> None:
        loop = asyncio.get_running_loop()
        try:
            loop.add_signal_handler(signal.SIGINT, self.controller.cancel)
            installed = True
        except (NotImplementedError, RuntimeError):
            installed = False  # Windows event loops
        try:
            outcome = await self.controller.handle(Submit(text))
        except SessionBusyError as e:
            console.print(f"[red]{e}[/red]")
            return
        finally:
            if installed:
                loop.remove_signal_handler(signal.SIGINT)

        if outcome.status is OutcomeStatus.ITERATION_LIMIT:
            console.print("[yellow]AUTO stopped at the iteration limit[/yellow]")
        elif outcome.status is OutcomeStatus.ROUND_LIMIT:
            console.print("[yellow]Stopped after the maximum number of tool rounds[/yellow]")

    async def run(self) -> None:
        """Run the interactive REPL."""
        self._running = True

        console.print("[bold]Companion[/bold] - Interactive Mode")
        console.print(
            "Type [bold]/help[/bold] for commands, Shift+Tab to cycle modes, "
            "[bold]/exit[/bold] to save and leave.\n"
        )

        loop = asyncio.get_running_loop()
        while self._running:
            mode = self.controller.session.mode
            try:
                line = await loop.run_in_executor(
                    None,
                    lambda: self.session.prompt(f"{mode.label}> "),
                )
            except KeyboardInterrupt:
                continue
            except EOFError:
                await self.commands.handle("/exit")
                break

            line = line.strip()
            if not line:
                continue

            if line.startswith("/"):
                self._running = await self.commands.handle(line)
            else:
                await self.submit(line)

        self._running = False

    def stop(self) -> None:
        """Stop the REPL."""
        self._running = False
