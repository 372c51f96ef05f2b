"""Subprocess-based terminal executor for local shell execution."""

from __future__ import annotations

import asyncio
import os
import shlex
import time

from companion.terminal.result import ShellResult


class SubprocessTerminalExecutor:
    """Execute commands using asyncio subprocesses.

    On timeout the process is killed and reaped before returning, so no
    child outlives the call.
    """

    def __init__(self, default_cwd: str = ".") -> None:
        self._default_cwd = default_cwd

    async def execute(
        self,
        command: str,
        args: list[str] | None = None,
        cwd: str | None = None,
        env: dict[str, str] | None = None,
        timeout: float | None = 30.0,
    ) -> ShellResult:
        """Execute a command.

        Args:
            command: Program name, or a full shell command line when ``args`` is None.
            args: Optional argument list; selects direct exec.
            cwd: Working directory. Uses default_cwd if None.
            env: Additional environment variables.
            timeout: Timeout in seconds. None for no timeout.
        """
        start_time = time.perf_counter()

        if args is not None:
            full_command = shlex.join([command, *args])
        else:
            full_command = command

        working_dir = cwd or self._default_cwd

        process_env = os.environ.copy()
        if env:
            process_env.update(env)

        def elapsed() -> float:
            return (time.perf_counter() - start_time) * 1000

        try:
            if args is not None:
                process = await asyncio.create_subprocess_exec(
                    command,
                    *args,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.STDOUT,  # Merge stderr into stdout
                    stdin=asyncio.subprocess.DEVNULL,
                    cwd=working_dir,
                    env=process_env,
                )
            else:
                process = await asyncio.create_subprocess_shell(
                    command,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.STDOUT,
                    stdin=asyncio.subprocess.DEVNULL,
                    cwd=working_dir,
                    env=process_env,
                )
        except FileNotFoundError:
            return ShellResult(
                command=full_command,
                exit_code=127,  # Standard "command not found" exit code
                output=f"Command not found: {command}",
                status="error",
                duration_ms=elapsed(),
            )
        except PermissionError:
            return ShellResult(
                command=full_command,
                exit_code=126,  # Standard "permission denied" exit code
                output=f"Permission denied: {command}",
                status="error",
                duration_ms=elapsed(),
            )
        except OSError as e:
            return ShellResult(
                command=full_command,
                exit_code=1,
                output=f"OS error: {e}",
                status="error",
                duration_ms=elapsed(),
            )

        try:
            stdout_data, _ = await asyncio.wait_for(process.communicate(), timeout=timeout)
        except asyncio.TimeoutError:
            await _kill(process)
            return ShellResult(
                command=full_command,
                exit_code=None,
                output=f"Command timed out after {timeout}s",
                status="timeout",
                duration_ms=elapsed(),
            )
        except asyncio.CancelledError:
            await _kill(process)
            raise

        exit_code = process.returncode
        return ShellResult(
            command=full_command,
            exit_code=exit_code,
            output=stdout_data.decode("utf-8", errors="replace"),
            status="ok" if exit_code == 0 else "error",
            duration_ms=elapsed(),
        )


async def _kill(process: asyncio.subprocess.Process) -> None:
    try:
        process.kill()
    except ProcessLookupError:
        return  # Already gone
    await process.wait()
