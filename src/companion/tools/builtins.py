"""Built-in tools: file access, directory listing, search and shell commands."""

from __future__ import annotations

import difflib
import shlex
from collections.abc import Awaitable, Callable
from typing import Any

from companion.errors import ToolExecutionError
from companion.terminal.protocol import TerminalExecutor
from companion.tools.safety import SafetyPolicy
from companion.tools.types import (
    Classification,
    Danger,
    ToolDescriptor,
    ToolResult,
)
from companion.tools.workspace import Workspace

Invoke = Callable[[dict[str, Any]], Awaitable[ToolResult]]
Describe = Callable[[dict[str, Any]], Awaitable[str]]
Classify = Callable[[dict[str, Any]], Classification]


class BuiltinTool:
    """Adapter turning plain async functions into a tool handler."""

    def __init__(
        self,
        descriptor: ToolDescriptor,
        invoke: Invoke,
        *,
        classify: Classify | None = None,
        describe: Describe | None = None,
    ) -> None:
        self._descriptor = descriptor
        self._invoke = invoke
        self._classify = classify
        self._describe = describe

    @property
    def descriptor(self) -> ToolDescriptor:
        return self._descriptor

    def classify(self, arguments: dict[str, Any]) -> Classification:
        if self._classify is not None:
            return self._classify(arguments)
        return Classification(self._descriptor.danger, mutating=self._descriptor.mutating)

    async def invoke(self, arguments: dict[str, Any]) -> ToolResult:
        return await self._invoke(arguments)

    async def describe(self, arguments: dict[str, Any]) -> str:
        if self._describe is not None:
            return await self._describe(arguments)
        args = ", ".join(f"{k}={v!r}" for k, v in arguments.items())
        return f"Would call {self._descriptor.name}({args})"

    def __repr__(self) -> str:
        return f"<BuiltinTool {self._descriptor.name}>"


def _object_schema(properties: dict[str, Any], required: list[str]) -> dict[str, Any]:
    return {
        "type": "object",
        "properties": properties,
        "required": required,
        "additionalProperties": False,
    }


def _parse_args(value: Any) -> list[str] | None:
    if value is None:
        return None
    if isinstance(value, list):
        return [str(v) for v in value]
    # Models often send args as one string
    return shlex.split(str(value))


def command_line(arguments: dict[str, Any]) -> str:
    """The command line exactly as ``execute_command`` will run it."""
    command = arguments["command"]
    args = _parse_args(arguments.get("args"))
    if args:
        return shlex.join([command, *args])
    return command


def create_builtin_tools(
    workspace: Workspace,
    terminal: TerminalExecutor,
    safety: SafetyPolicy,
    *,
    command_timeout: float = 30.0,
    search_max_results: int = 50,
) -> list[BuiltinTool]:
    """Build the five built-in tools bound to one workspace."""

    def confined(*keys: str, mutating: bool) -> Classify:
        def classify(arguments: dict[str, Any]) -> Classification:
            for key in keys:
                value = arguments.get(key)
                if value is not None and not workspace.contains(str(value)):
                    return Classification(
                        Danger.DENIED,
                        mutating=mutating,
                        reason=f"Access denied: {value} is outside project directory",
                    )
            return Classification(Danger.SAFE, mutating=mutating)

        return classify

    # read_file

    async def read_file(arguments: dict[str, Any]) -> ToolResult:
        return ToolResult.ok(await workspace.read_text(arguments["path"]))

    # write_file

    async def write_file(arguments: dict[str, Any]) -> ToolResult:
        path = arguments["path"]
        size = await workspace.write_text(path, arguments["content"])
        return ToolResult.ok(f"File written: {path} ({size} bytes)")

    async def describe_write(arguments: dict[str, Any]) -> str:
        path = arguments["path"]
        before = await workspace.read_existing(path)
        after = arguments["content"]
        diff = difflib.unified_diff(
            (before or "").splitlines(keepends=True),
            after.splitlines(keepends=True),
            fromfile="/dev/null" if before is None else f"a/{path}",
            tofile=f"b/{path}",
        )
        body = "".join(diff) or "(no changes)\n"
        action = "create" if before is None else "modify"
        return f"Would {action} {path}:\n{body}"

    # execute_command

    def classify_command(arguments: dict[str, Any]) -> Classification:
        return safety.classify_command(command_line(arguments))

    async def execute_command(arguments: dict[str, Any]) -> ToolResult:
        result = await terminal.execute(
            arguments["command"],
            _parse_args(arguments.get("args")),
            cwd=str(workspace.root),
            timeout=command_timeout,
        )
        if result.status == "timeout":
            raise ToolExecutionError(result.output, kind="timeout")
        if not result.success:
            output = result.output.rstrip()
            message = f"Command exited with code {result.exit_code}"
            return ToolResult(success=False, output=f"{output}\n{message}" if output else message)
        return ToolResult.ok(result.output)

    async def describe_command(arguments: dict[str, Any]) -> str:
        return f"Would run: {command_line(arguments)}"

    # list_directory

    async def list_directory(arguments: dict[str, Any]) -> ToolResult:
        entries = await workspace.list_directory(arguments.get("path") or ".")
        return ToolResult.ok("\n".join(entries) if entries else "(empty directory)")

    # search_in_files

    async def search_in_files(arguments: dict[str, Any]) -> ToolResult:
        matches = await workspace.search(
            arguments["pattern"],
            arguments.get("scope") or ".",
            max_results=search_max_results,
        )
        return ToolResult.ok("\n".join(matches) if matches else "No matches found")

    return [
        BuiltinTool(
            ToolDescriptor(
                name="read_file",
                description="Read the content of a file in the project.",
                parameters=_object_schema(
                    {"path": {"type": "string", "description": "Project-relative file path"}},
                    ["path"],
                ),
            ),
            read_file,
            classify=confined("path", mutating=False),
        ),
        BuiltinTool(
            ToolDescriptor(
                name="write_file",
                description="Create or overwrite a file in the project with the given content.",
                parameters=_object_schema(
                    {
                        "path": {"type": "string", "description": "Project-relative file path"},
                        "content": {"type": "string", "description": "Full new file content"},
                    },
                    ["path", "content"],
                ),
                mutating=True,
            ),
            write_file,
            classify=confined("path", mutating=True),
            describe=describe_write,
        ),
        BuiltinTool(
            ToolDescriptor(
                name="execute_command",
                description=(
                    "Run a command in the project directory. Without args the command "
                    "string is run by the shell."
                ),
                parameters=_object_schema(
                    {
                        "command": {"type": "string", "description": "Command or command line"},
                        "args": {
                            "type": ["array", "string"],
                            "items": {"type": "string"},
                            "description": "Optional argument list",
                        },
                    },
                    ["command"],
                ),
                mutating=True,
            ),
            execute_command,
            classify=classify_command,
            describe=describe_command,
        ),
        BuiltinTool(
            ToolDescriptor(
                name="list_directory",
                description="List files and directories; directories end with '/'.",
                parameters=_object_schema(
                    {"path": {"type": "string", "description": "Directory, default '.'"}},
                    [],
                ),
            ),
            list_directory,
            classify=confined("path", mutating=False),
        ),
        BuiltinTool(
            ToolDescriptor(
                name="search_in_files",
                description=(
                    f"Search project files for a regular expression (first {search_max_results} "
                    "matches, as path:line: text)."
                ),
                parameters=_object_schema(
                    {
                        "pattern": {"type": "string", "description": "Regex or literal text"},
                        "scope": {"type": "string", "description": "File or directory, default '.'"},
                    },
                    ["pattern"],
                ),
            ),
            search_in_files,
            classify=confined("scope", mutating=False),
        ),
    ]
