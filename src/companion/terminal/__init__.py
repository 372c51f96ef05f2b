"""Local command execution for the execute_command tool."""

from companion.terminal.protocol import TerminalExecutor
from companion.terminal.result import ShellResult
from companion.terminal.subprocess_executor import SubprocessTerminalExecutor

__all__ = [
    "ShellResult",
    "SubprocessTerminalExecutor",
    "TerminalExecutor",
]
