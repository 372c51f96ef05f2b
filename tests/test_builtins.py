"""Tests for the workspace and the built-in tools."""

from __future__ import annotations

import asyncio
import sys
import time

import pytest

from companion.config.schema import RuleAction, ShellRuleConfig
from companion.errors import ToolExecutionError
from companion.terminal.result import ShellResult
from companion.tools import workspace as workspace_module
from companion.tools.builtins import command_line, create_builtin_tools
from companion.tools.executor import GateAction, GateDecision, ToolExecutor
from companion.tools.registry import ToolRegistry
from companion.tools.safety import SafetyPolicy
from companion.tools.types import Danger, FailureKind, ToolCall
from companion.tools.workspace import PathOutsideProjectError, Workspace


class FakeTerminal:
    """Records commands and returns a canned ShellResult."""

    def __init__(self, result: ShellResult | None = None) -> None:
        self.result = result or ShellResult("cmd", 0, "ok\n", "ok", 1.0)
        self.calls: list[tuple[str, list[str] | None, str | None]] = []

    async def execute(self, command, args=None, cwd=None, env=None, timeout=30.0):
        self.calls.append((command, args, cwd))
        return self.result


@pytest.fixture
def project(tmp_path):
    (tmp_path / "src").mkdir()
    (tmp_path / "src" / "main.py").write_text("def main():\n    return 42\n")
    (tmp_path / "README.md").write_text("# Demo\n")
    (tmp_path / "node_modules").mkdir()
    (tmp_path / "node_modules" / "dep.js").write_text("def main() {}\n")
    return tmp_path


@pytest.fixture
def workspace(project):
    return Workspace(project, ignore_patterns=["node_modules"])


@pytest.fixture
def terminal():
    return FakeTerminal()


@pytest.fixture
def executor(workspace, terminal):
    registry = ToolRegistry()
    registry.register_all(create_builtin_tools(workspace, terminal, SafetyPolicy()))
    return ToolExecutor(registry)


class TestWorkspace:
    def test_resolve_inside(self, workspace, project) -> None:
        assert workspace.resolve("src/main.py") == workspace.root / "src" / "main.py"

    def test_resolve_outside(self, workspace) -> None:
        with pytest.raises(PathOutsideProjectError, match="outside project directory"):
            workspace.resolve("../etc/passwd")
        assert not workspace.contains("/etc/passwd")

    @pytest.mark.skipif(sys.platform == "win32", reason="symlinks need privileges")
    def test_symlink_escape(self, workspace, project, tmp_path_factory) -> None:
        outside = tmp_path_factory.mktemp("outside")
        (project / "link").symlink_to(outside)
        assert not workspace.contains("link/secret.txt")

    @pytest.mark.asyncio
    async def test_write_is_atomic_and_counts_bytes(self, workspace, project) -> None:
        size = await workspace.write_text("new/dir/file.txt", "héllo")
        assert size == len("héllo".encode())
        assert (project / "new" / "dir" / "file.txt").read_text(encoding="utf-8") == "héllo"
        assert not list((project / "new" / "dir").glob("*.tmp"))

    @pytest.mark.asyncio
    async def test_concurrent_writes_serialize(self, workspace, project) -> None:
        await asyncio.gather(*(workspace.write_text("same.txt", str(i) * 1000) for i in range(5)))
        content = (project / "same.txt").read_text()
        assert len(set(content)) == 1

    @pytest.mark.asyncio
    async def test_read_missing(self, workspace) -> None:
        with pytest.raises(ToolExecutionError, match="does not exist"):
            await workspace.read_text("missing.txt")

    @pytest.mark.asyncio
    async def test_io_timeout(self, project, monkeypatch) -> None:
        workspace = Workspace(project, io_timeout=0.01)

        async def hang(func, *args):
            await asyncio.sleep(1)

        monkeypatch.setattr(asyncio, "to_thread", hang)
        with pytest.raises(ToolExecutionError) as exc_info:
            await workspace.read_text("README.md")
        assert exc_info.value.kind == "timeout"

    @pytest.mark.asyncio
    async def test_slow_write_keeps_lock_until_done(self, project, monkeypatch, caplog) -> None:
        workspace = Workspace(project, io_timeout=0.05)
        real_write = workspace_module._atomic_write

        def slow_write(target, data):
            if data == b"first":
                time.sleep(0.3)
            real_write(target, data)

        monkeypatch.setattr(workspace_module, "_atomic_write", slow_write)

        with caplog.at_level("WARNING", logger="companion.tools.workspace"):
            first = asyncio.create_task(workspace.write_text("slow.txt", "first"))
            await asyncio.sleep(0.15)
            assert workspace._locks[workspace.root / "slow.txt"].locked()
            second = asyncio.create_task(workspace.write_text("slow.txt", "second"))

            assert await first == len("first")
            assert await second == len("second")

        assert (project / "slow.txt").read_text() == "second"
        assert "waiting for it to finish" in caplog.text

    @pytest.mark.asyncio
    async def test_cancelled_write_releases_lock_after_thread(self, project, monkeypatch) -> None:
        workspace = Workspace(project)
        real_write = workspace_module._atomic_write

        def slow_write(target, data):
            time.sleep(0.2)
            real_write(target, data)

        monkeypatch.setattr(workspace_module, "_atomic_write", slow_write)

        task = asyncio.create_task(workspace.write_text("cancel.txt", "late"))
        await asyncio.sleep(0.05)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert (project / "cancel.txt").read_text() == "late"
        assert not workspace._locks[workspace.root / "cancel.txt"].locked()

    @pytest.mark.asyncio
    async def test_search_skips_ignored_dirs(self, workspace) -> None:
        matches = await workspace.search("def main")
        assert matches == ["src/main.py:1: def main():"]

    @pytest.mark.asyncio
    async def test_search_invalid_regex_is_literal(self, workspace, project) -> None:
        (project / "notes.txt").write_text("call foo(\n")
        assert await workspace.search("foo(") == ["notes.txt:1: call foo("]

    @pytest.mark.asyncio
    async def test_search_max_results(self, workspace, project) -> None:
        (project / "many.txt").write_text("hit\n" * 10)
        assert len(await workspace.search("hit", max_results=3)) == 3


class TestFileTools:
    @pytest.mark.asyncio
    async def test_read_file(self, executor) -> None:
        result = await executor.execute(ToolCall("read_file", {"path": "src/main.py"}))
        assert result.success
        assert "return 42" in result.output

    @pytest.mark.asyncio
    async def test_read_outside_project_is_denied(self, executor) -> None:
        result = await executor.execute(ToolCall("read_file", {"path": "../secret"}))
        assert result.kind is FailureKind.DENIED
        assert "outside project directory" in result.output

    @pytest.mark.asyncio
    async def test_write_file(self, executor, project) -> None:
        prepared = executor.prepare(ToolCall("write_file", {"path": "out.txt", "content": "hi"}))
        assert prepared.classification.mutating

        result = await executor.run(prepared, GateDecision(GateAction.CONFIRM, confirmed=True))

        assert result.output == "File written: out.txt (2 bytes)"
        assert (project / "out.txt").read_text() == "hi"

    @pytest.mark.asyncio
    async def test_write_file_simulation_shows_diff(self, executor, project) -> None:
        prepared = executor.prepare(
            ToolCall("write_file", {"path": "README.md", "content": "# Renamed\n"})
        )
        result = await executor.run(prepared, GateDecision(GateAction.SIMULATE))

        assert result.output.startswith("Would modify README.md:")
        assert "-# Demo" in result.output
        assert "+# Renamed" in result.output
        assert (project / "README.md").read_text() == "# Demo\n"

    @pytest.mark.asyncio
    async def test_simulated_create(self, executor, project) -> None:
        prepared = executor.prepare(ToolCall("write_file", {"path": "new.txt", "content": "x\n"}))
        result = await executor.run(prepared, GateDecision(GateAction.SIMULATE))
        assert result.output.startswith("Would create new.txt:")
        assert not (project / "new.txt").exists()

    @pytest.mark.asyncio
    async def test_list_directory(self, executor) -> None:
        result = await executor.execute(ToolCall("list_directory", {}))
        assert result.output.splitlines() == ["README.md", "node_modules/", "src/"]

    @pytest.mark.asyncio
    async def test_list_empty_directory(self, executor, project) -> None:
        (project / "empty").mkdir()
        result = await executor.execute(ToolCall("list_directory", {"path": "empty"}))
        assert result.output == "(empty directory)"

    @pytest.mark.asyncio
    async def test_search_no_matches(self, executor) -> None:
        result = await executor.execute(ToolCall("search_in_files", {"pattern": "zzz"}))
        assert result.output == "No matches found"


class TestExecuteCommand:
    def test_command_line(self) -> None:
        assert command_line({"command": "ls"}) == "ls"
        assert command_line({"command": "echo", "args": ["a b", "c"]}) == "echo 'a b' c"

    def test_command_line_splits_string_args(self) -> None:
        assert command_line({"command": "rm", "args": "-rf build"}) == "rm -rf build"
        assert command_line({"command": "git", "args": "commit -m 'a b'"}) == "git commit -m 'a b'"

    def test_string_args_classified_as_run(self, workspace, terminal) -> None:
        policy = SafetyPolicy(shell_rules=[ShellRuleConfig("rm *", RuleAction.ALLOW)])
        registry = ToolRegistry()
        registry.register_all(create_builtin_tools(workspace, terminal, policy))
        executor = ToolExecutor(registry)

        prepared = executor.prepare(
            ToolCall("execute_command", {"command": "rm", "args": "-rf build"})
        )

        assert prepared.classification.danger is Danger.CONFIRM_REQUIRED
        assert not prepared.classification.preapproved
        assert "recursive delete" in prepared.classification.reason

    @pytest.mark.asyncio
    async def test_describe_string_args(self, executor, terminal) -> None:
        prepared = executor.prepare(
            ToolCall("execute_command", {"command": "rm", "args": "-rf build"})
        )
        result = await executor.run(prepared, GateDecision(GateAction.SIMULATE))
        assert result.output == "Would run: rm -rf build"
        assert terminal.calls == []

    @pytest.mark.asyncio
    async def test_runs_in_project_root(self, executor, terminal, workspace) -> None:
        prepared = executor.prepare(ToolCall("execute_command", {"command": "ls -la"}))
        result = await executor.run(prepared, GateDecision(GateAction.CONFIRM, confirmed=True))

        assert result.output == "ok\n"
        assert terminal.calls == [("ls -la", None, str(workspace.root))]

    @pytest.mark.asyncio
    async def test_string_args_are_split(self, executor, terminal) -> None:
        prepared = executor.prepare(
            ToolCall("execute_command", {"command": "git", "args": "log -n 1"})
        )
        await executor.run(prepared, GateDecision(GateAction.CONFIRM, confirmed=True))
        assert terminal.calls[0][1] == ["log", "-n", "1"]

    @pytest.mark.asyncio
    async def test_dangerous_command_requires_confirmation(self, executor, terminal) -> None:
        prepared = executor.prepare(ToolCall("execute_command", {"command": "rm -rf build"}))
        assert prepared.classification.danger is Danger.CONFIRM_REQUIRED

        result = await executor.run(prepared, GateDecision.execute())
        assert result.kind is FailureKind.CONFIRMATION_DECLINED
        assert terminal.calls == []

    @pytest.mark.asyncio
    async def test_nonzero_exit(self, executor, terminal) -> None:
        terminal.result = ShellResult("make", 2, "error: x\n", "error", 1.0)
        prepared = executor.prepare(ToolCall("execute_command", {"command": "make"}))
        result = await executor.run(prepared, GateDecision(GateAction.CONFIRM, confirmed=True))

        assert not result.success
        assert result.kind is FailureKind.EXECUTION_ERROR
        assert result.output == "error: x\nCommand exited with code 2"

    @pytest.mark.asyncio
    async def test_timeout(self, executor, terminal) -> None:
        terminal.result = ShellResult("sleep 99", None, "Command timed out after 30s", "timeout", 1.0)
        prepared = executor.prepare(ToolCall("execute_command", {"command": "sleep 99"}))
        result = await executor.run(prepared, GateDecision(GateAction.CONFIRM, confirmed=True))
        assert result.kind is FailureKind.TIMEOUT

    @pytest.mark.asyncio
    async def test_describe(self, executor, terminal) -> None:
        prepared = executor.prepare(ToolCall("execute_command", {"command": "make test"}))
        result = await executor.run(prepared, GateDecision(GateAction.SIMULATE))
        assert result.output == "Would run: make test"
        assert terminal.calls == []
