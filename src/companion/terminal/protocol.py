"""Terminal executor protocol."""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from companion.terminal.result import ShellResult


@runtime_checkable
class TerminalExecutor(Protocol):
    """Runs one command in the project directory and reports how it went."""

    async def execute(
        self,
        command: str,
        args: list[str] | None = None,
        cwd: str | None = None,
        env: dict[str, str] | None = None,
        timeout: float | None = 30.0,
    ) -> ShellResult:
        """Execute a command.

        With ``args`` the command is exec'd directly; without, ``command`` is
        handed to the shell so pipelines and redirects work.
        """
        ...
