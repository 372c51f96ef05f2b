"""Safety classification for shell commands and external tool calls.

Shell rules are glob patterns matched against each segment of a command
line (split on ``|``, ``||``, ``&&`` and ``;``); the first matching rule
decides that segment. Segments with no matching rule fall back to the
built-in dangerous-command list.

A segment is classified together with every command it runs on its
behalf: ``sh -c`` scripts, the targets of wrappers such as ``env``,
``xargs`` or ``timeout``, and ``find -exec`` actions. Command
substitution cannot be inspected and always needs confirmation.
"""

from __future__ import annotations

import fnmatch
import logging
import re
import shlex
from dataclasses import dataclass, field

from companion.config.schema import MCPRuleConfig, RuleAction, ShellRuleConfig
from companion.tools.types import Classification, Danger

_log = logging.getLogger("companion.tools.safety")

DANGEROUS_COMMANDS = frozenset(
    {
        "rm",
        "rmdir",
        "sudo",
        "chmod",
        "chown",
        "dd",
        "mkfs",
        "kill",
        "pkill",
        "killall",
        "shutdown",
        "reboot",
        "halt",
        "format",
        "fdisk",
        "parted",
        "mount",
        "umount",
    }
)

# Always confirm-required, even when an allow rule matches
PRIVILEGE_COMMANDS = frozenset({"sudo", "su", "doas", "pkexec"})

SHELLS = frozenset({"sh", "bash", "zsh", "dash", "ksh", "fish"})

# Programs that run their remaining arguments as a command, mapped to the
# options that consume a value
WRAPPERS: dict[str, frozenset[str]] = {
    "env": frozenset({"-u", "--unset", "-C", "--chdir"}),
    "xargs": frozenset(
        {"-a", "-d", "-E", "-I", "-L", "-n", "-P", "-s", "--arg-file", "--delimiter"}
    ),
    "nice": frozenset({"-n", "--adjustment"}),
    "timeout": frozenset({"-k", "--kill-after", "-s", "--signal"}),
    "nohup": frozenset(),
    "command": frozenset(),
    "exec": frozenset({"-a"}),
    "time": frozenset({"-f", "--format", "-o", "--output"}),
    "stdbuf": frozenset(),
    "ionice": frozenset({"-c", "-n", "-p"}),
    "setsid": frozenset(),
}

FIND_ACTIONS = frozenset({"-exec", "-execdir", "-ok", "-okdir"})

MAX_NESTING = 4

_SEGMENT_SPLIT = re.compile(r"\|\||&&|(?<![<>])&(?!>)|[|;\n]")
_SUBSTITUTION = re.compile(r"\$\(|`|<\(|>\(")
_ASSIGNMENT = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*=")


class NestingTooDeepError(ValueError):
    """Wrappers nested beyond MAX_NESTING."""


def split_segments(command_line: str) -> list[str]:
    """Split a command line into its pipeline/list segments.

    Operators inside quotes or escaped with a backslash do not split.
    """
    segments: list[str] = []
    current: list[str] = []
    quote: str | None = None
    index = 0
    while index < len(command_line):
        char = command_line[index]
        if quote is not None:
            if char == "\\" and quote == '"':
                current.append(command_line[index : index + 2])
                index += 2
                continue
            if char == quote:
                quote = None
        elif char == "\\":
            current.append(command_line[index : index + 2])
            index += 2
            continue
        elif char in "'\"":
            quote = char
        else:
            match = _SEGMENT_SPLIT.match(command_line, index)
            if match:
                segments.append("".join(current))
                current = []
                index = match.end()
                continue
        current.append(char)
        index += 1
    segments.append("".join(current))
    return [s.strip() for s in segments if s.strip()]


def _words(segment: str) -> list[str]:
    try:
        return shlex.split(segment)
    except ValueError:
        # Unbalanced quotes
        return segment.split()


def _basename(word: str) -> str:
    return word.rsplit("/", 1)[-1]


def program_name(segment: str) -> str:
    """Bare program name of a segment ("/usr/bin/rm -f x" -> "rm")."""
    words = _words(segment)
    if not words:
        return ""
    return _basename(words[0])


def _is_recursive_delete(words: list[str]) -> bool:
    if not words or _basename(words[0]) != "rm":
        return False
    for word in words[1:]:
        if word == "--recursive":
            return True
        if word.startswith("-") and not word.startswith("--") and ("r" in word or "R" in word):
            return True
    return False


def _shell_script(args: list[str]) -> str | None:
    """The script of ``sh -c SCRIPT`` (also ``-lc``, ``-ec`` ...)."""
    for index, arg in enumerate(args):
        if arg == "--" or not arg.startswith("-"):
            return None
        if not arg.startswith("--") and "c" in arg[1:]:
            return args[index + 1] if index + 1 < len(args) else None
    return None


def _wrapped_command(program: str, args: list[str]) -> list[str]:
    """Strip a wrapper's own options, leaving the command it runs."""
    value_options = WRAPPERS[program]
    index = 0
    while index < len(args):
        arg = args[index]
        if arg == "--":
            index += 1
            break
        if program == "env" and arg in ("-S", "--split-string") and index + 1 < len(args):
            return _words(args[index + 1]) + args[index + 2 :]
        if program == "env" and _ASSIGNMENT.match(arg):
            index += 1
        elif arg.startswith("-") and len(arg) > 1:
            index += 2 if arg in value_options else 1
        else:
            break
    rest = args[index:]
    if program == "timeout" and rest:
        # Duration
        rest = rest[1:]
    return rest


def _find_actions(args: list[str]) -> list[list[str]]:
    actions = []
    index = 0
    while index < len(args):
        if args[index] in FIND_ACTIONS:
            end = index + 1
            while end < len(args) and args[end] not in (";", "+"):
                end += 1
            actions.append(args[index + 1 : end])
            index = end
        index += 1
    return actions


def expand_command(words: list[str], depth: int = 0) -> list[list[str]]:
    """Every command a word list runs: itself first, then what it wraps.

    Raises:
        NestingTooDeepError: Wrappers nest deeper than MAX_NESTING.
    """
    while words and _ASSIGNMENT.match(words[0]):
        words = words[1:]
    if not words:
        return []
    if depth > MAX_NESTING:
        raise NestingTooDeepError(shlex.join(words))

    commands = [words]
    program = _basename(words[0])
    if program in SHELLS:
        script = _shell_script(words[1:])
        if script is not None:
            for segment in split_segments(script):
                commands.extend(expand_command(_words(segment), depth + 1))
    elif program in WRAPPERS:
        commands.extend(expand_command(_wrapped_command(program, words[1:]), depth + 1))
    elif program == "find":
        for action in _find_actions(words[1:]):
            commands.extend(expand_command(action, depth + 1))
    return commands


@dataclass
class SafetyPolicy:
    """Classifies concrete calls using configured rules plus built-in lists.

    Attributes:
        shell_rules: First-match rules for command segments
        mcp_rules: First-match rules for "server.tool" names
        dangerous_commands: Programs that require confirmation by default
    """

    shell_rules: list[ShellRuleConfig] = field(default_factory=list)
    mcp_rules: list[MCPRuleConfig] = field(default_factory=list)
    dangerous_commands: frozenset[str] = DANGEROUS_COMMANDS

    def _match_shell_rule(self, segment: str) -> RuleAction | None:
        for rule in self.shell_rules:
            if fnmatch.fnmatchcase(segment, rule.pattern):
                return rule.action
        return None

    def _confirm_reason(self, words: list[str], text: str, action: RuleAction | None) -> str | None:
        program = _basename(words[0])
        if program in PRIVILEGE_COMMANDS:
            return f"'{program}' escalates privileges"
        if _is_recursive_delete(words):
            return "recursive delete"
        if program == "find" and "-delete" in words:
            return "find -delete"
        if action is RuleAction.CONFIRM:
            return f"'{text}' matches a confirm rule"
        if action is None and program in self.dangerous_commands:
            return f"'{program}' is a dangerous command"
        return None

    def classify_command(self, command_line: str) -> Classification:
        """Classify a shell command line. Shell commands are always mutating."""
        segments = split_segments(command_line)
        if not segments:
            return Classification(Danger.SAFE, mutating=True)

        confirm_reasons: list[str] = []
        all_allowed = True
        if _SUBSTITUTION.search(command_line):
            confirm_reasons.append("command substitution")
            all_allowed = False

        for segment in segments:
            try:
                commands = expand_command(_words(segment))
            except NestingTooDeepError:
                confirm_reasons.append("commands nested too deeply")
                all_allowed = False
                continue

            for index, words in enumerate(commands):
                # The segment itself is matched verbatim, wrapped commands re-joined
                text = segment if index == 0 else shlex.join(words)
                action = self._match_shell_rule(text)

                if action is RuleAction.DENY:
                    return Classification(
                        Danger.DENIED,
                        mutating=True,
                        reason=f"'{text}' is denied by a shell rule",
                    )

                reason = self._confirm_reason(words, text, action)
                if reason is not None:
                    confirm_reasons.append(reason)
                if action is not RuleAction.ALLOW:
                    all_allowed = False

        if confirm_reasons:
            _log.debug("Command %r needs confirmation: %s", command_line, confirm_reasons)
            return Classification(
                Danger.CONFIRM_REQUIRED,
                mutating=True,
                reason="; ".join(confirm_reasons),
            )
        return Classification(Danger.SAFE, mutating=True, preapproved=all_allowed)

    def classify_external(self, server: str, tool: str, *, mutating: bool) -> Classification:
        """Classify an external tool call by "server.tool" rules."""
        full_name = f"{server}.{tool}"
        for rule in self.mcp_rules:
            if fnmatch.fnmatchcase(full_name, rule.pattern):
                if rule.action is RuleAction.DENY:
                    return Classification(
                        Danger.DENIED, mutating=mutating, reason=f"{full_name} is denied by a rule"
                    )
                if rule.action is RuleAction.CONFIRM:
                    return Classification(
                        Danger.CONFIRM_REQUIRED,
                        mutating=mutating,
                        reason=f"{full_name} matches a confirm rule",
                    )
                return Classification(Danger.SAFE, mutating=mutating, preapproved=True)
        return Classification(Danger.SAFE, mutating=mutating)
