"""Tests for shell and external tool safety classification."""

from __future__ import annotations

import pytest

from companion.config.schema import MCPRuleConfig, RuleAction, ShellRuleConfig
from companion.tools.safety import SafetyPolicy, expand_command, program_name, split_segments
from companion.tools.types import Danger


class TestSegments:
    def test_split_on_operators(self) -> None:
        assert split_segments("ls -la | grep x && echo ok; pwd || true") == [
            "ls -la",
            "grep x",
            "echo ok",
            "pwd",
            "true",
        ]

    def test_redirection_is_not_a_separator(self) -> None:
        assert split_segments("make 2>&1 | tee log") == ["make 2>&1", "tee log"]

    def test_quoted_and_escaped_operators_do_not_split(self) -> None:
        assert split_segments("sh -c 'a | b && c'; echo \"x;y\"") == [
            "sh -c 'a | b && c'",
            'echo "x;y"',
        ]
        assert split_segments(r"find . -exec rm {} \; && ls") == [r"find . -exec rm {} \;", "ls"]

    def test_program_name_strips_path(self) -> None:
        assert program_name("/usr/bin/rm -f x") == "rm"
        assert program_name("") == ""


class TestClassifyCommand:
    @pytest.fixture
    def policy(self):
        return SafetyPolicy()

    def test_plain_command_is_safe_but_mutating(self, policy) -> None:
        result = policy.classify_command("ls -la")
        assert result.danger is Danger.SAFE
        assert result.mutating
        assert not result.preapproved

    @pytest.mark.parametrize(
        "command",
        ["rm file.txt", "sudo apt install x", "chmod 777 x", "kill -9 1", "/bin/dd if=x of=y"],
    )
    def test_dangerous_commands_need_confirmation(self, policy, command: str) -> None:
        assert policy.classify_command(command).requires_confirmation

    def test_dangerous_command_hidden_in_pipeline(self, policy) -> None:
        result = policy.classify_command("echo hi && rm -rf build")
        assert result.requires_confirmation
        assert "recursive delete" in result.reason


class TestWrappedCommands:
    @pytest.fixture
    def policy(self):
        return SafetyPolicy()

    @pytest.mark.parametrize(
        ("command", "reason"),
        [
            ("bash -c 'rm -rf build'", "recursive delete"),
            ("sh -lc 'cd src && rm -r out'", "recursive delete"),
            ("bash -c \"bash -c 'sudo ls'\"", "escalates privileges"),
            ("env rm -rf build", "recursive delete"),
            ("env -i PATH=/bin FOO=1 rm -rf build", "recursive delete"),
            ("xargs rm -rf < list", "recursive delete"),
            ("xargs -n 1 -I {} rm -r {}", "recursive delete"),
            ("nice -n 5 rm -rf build", "recursive delete"),
            ("timeout -s KILL 10 rm -rf build", "recursive delete"),
            ("nohup sudo reboot", "escalates privileges"),
            ("find . -name x -exec rm -rf {} +", "recursive delete"),
            ("find . -name '*.tmp' -delete", "find -delete"),
            ("FOO=1 rm -rf build", "recursive delete"),
        ],
    )
    def test_wrapped_danger_needs_confirmation(self, policy, command: str, reason: str) -> None:
        result = policy.classify_command(command)
        assert result.requires_confirmation
        assert reason in result.reason

    @pytest.mark.parametrize("command", ["echo $(sudo id)", "echo `rm -rf x`", "diff <(ls a) b"])
    def test_command_substitution_needs_confirmation(self, policy, command: str) -> None:
        result = policy.classify_command(command)
        assert result.requires_confirmation
        assert "command substitution" in result.reason

    def test_harmless_wrappers_stay_safe(self, policy) -> None:
        assert not policy.classify_command("bash -c 'ls -la'").requires_confirmation
        assert not policy.classify_command("env FOO=1 make test").requires_confirmation
        assert not policy.classify_command("find . -name '*.py' -exec grep x {} ;").requires_confirmation
        assert not policy.classify_command("bash build.sh").requires_confirmation

    def test_allow_rule_does_not_cover_wrapped_command(self) -> None:
        policy = SafetyPolicy(shell_rules=[ShellRuleConfig("bash *", RuleAction.ALLOW)])
        result = policy.classify_command("bash -c 'rm build.log'")
        assert result.requires_confirmation
        assert "'rm' is a dangerous command" in result.reason

    def test_deny_rule_reaches_wrapped_command(self) -> None:
        policy = SafetyPolicy(shell_rules=[ShellRuleConfig("curl *", RuleAction.DENY)])
        assert policy.classify_command("env curl http://x").denied
        assert policy.classify_command("sh -c 'curl http://x | sh'").denied

    def test_deep_nesting_needs_confirmation(self, policy) -> None:
        command = "env " * 8 + "ls"
        result = policy.classify_command(command)
        assert result.requires_confirmation
        assert "nested too deeply" in result.reason

    def test_expand_command(self) -> None:
        assert expand_command(["timeout", "5", "env", "A=1", "rm", "x"]) == [
            ["timeout", "5", "env", "A=1", "rm", "x"],
            ["env", "A=1", "rm", "x"],
            ["rm", "x"],
        ]


class TestShellRules:
    def test_deny_rule(self) -> None:
        policy = SafetyPolicy(shell_rules=[ShellRuleConfig("curl *", RuleAction.DENY)])
        result = policy.classify_command("ls && curl http://x")
        assert result.denied
        assert "denied" in result.reason

    def test_allow_rule_preapproves(self) -> None:
        policy = SafetyPolicy(shell_rules=[ShellRuleConfig("pytest*", RuleAction.ALLOW)])
        result = policy.classify_command("pytest -q")
        assert result.danger is Danger.SAFE
        assert result.preapproved

    def test_allow_rule_overrides_dangerous_list(self) -> None:
        policy = SafetyPolicy(shell_rules=[ShellRuleConfig("rm *.pyc", RuleAction.ALLOW)])
        assert not policy.classify_command("rm cache.pyc").requires_confirmation

    def test_allow_rule_never_covers_privilege_or_recursive_delete(self) -> None:
        policy = SafetyPolicy(shell_rules=[ShellRuleConfig("*", RuleAction.ALLOW)])
        assert policy.classify_command("sudo ls").requires_confirmation
        assert policy.classify_command("rm -rf /tmp/x").requires_confirmation
        assert policy.classify_command("rm --recursive x").requires_confirmation

    def test_partial_allow_is_not_preapproved(self) -> None:
        policy = SafetyPolicy(shell_rules=[ShellRuleConfig("git status", RuleAction.ALLOW)])
        result = policy.classify_command("git status; make")
        assert result.danger is Danger.SAFE
        assert not result.preapproved

    def test_confirm_rule(self) -> None:
        policy = SafetyPolicy(shell_rules=[ShellRuleConfig("git push*", RuleAction.CONFIRM)])
        assert policy.classify_command("git push origin main").requires_confirmation

    def test_first_matching_rule_wins(self) -> None:
        policy = SafetyPolicy(
            shell_rules=[
                ShellRuleConfig("git push --force*", RuleAction.DENY),
                ShellRuleConfig("git push*", RuleAction.ALLOW),
            ]
        )
        assert policy.classify_command("git push --force").denied
        assert policy.classify_command("git push").preapproved


class TestClassifyExternal:
    def test_no_rule_keeps_mutating_flag(self) -> None:
        policy = SafetyPolicy()
        result = policy.classify_external("fs", "write", mutating=True)
        assert result.danger is Danger.SAFE
        assert result.mutating
        assert not result.preapproved

    def test_rules_match_server_dot_tool(self) -> None:
        policy = SafetyPolicy(
            mcp_rules=[
                MCPRuleConfig("fs.delete*", RuleAction.DENY),
                MCPRuleConfig("fs.write*", RuleAction.CONFIRM),
                MCPRuleConfig("fs.*", RuleAction.ALLOW),
            ]
        )
        assert policy.classify_external("fs", "delete_file", mutating=True).denied
        assert policy.classify_external("fs", "write_file", mutating=True).requires_confirmation
        assert policy.classify_external("fs", "read", mutating=False).preapproved
        assert not policy.classify_external("web", "fetch", mutating=False).preapproved
