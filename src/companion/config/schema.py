"""Configuration schema dataclasses for Companion.

Defines the structure of configuration at all levels (system, user, project).
Every field has a default so partial configs merge cleanly.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


@dataclass
class LLMConfig:
    """Model provider configuration."""

    model: str = "mistral/codestral-latest"
    api_base: str | None = None  # Custom endpoint
    api_key_env: str | None = None  # Secret name looked up via fetch_secret()
    max_tokens: int = 4096
    temperature: float | None = None
    request_timeout: float = 60.0


@dataclass
class RetryConfig:
    """Retry policy for model requests."""

    max_attempts: int = 4  # 1 initial + 3 retries
    delays: list[float] = field(default_factory=lambda: [1.0, 2.0, 4.0])
    jitter: float = 0.0  # Max random seconds added to each delay


@dataclass
class AgentConfig:
    """Mode controller configuration."""

    default_mode: str = "code"
    max_auto_iterations: int = 25
    max_tool_rounds: int = 8  # Follow-up model requests per turn outside AUTO
    termination_marker: str = "<task_complete/>"
    index_context_tokens: int = 8000  # Indexed project text in the preamble; 0 disables
    index_max_files: int = 50


@dataclass
class ContextConfig:
    """Context window configuration."""

    capacity: int = 32000  # Model context size in tokens
    compaction_threshold: float = 0.9
    token_estimator: str = "heuristic"  # "heuristic" or "tiktoken"
    summarizer: str = "model"  # "model" or "extractive"
    summary_max_tokens: int = 1024


class RuleAction(Enum):
    """Outcome of a matching safety rule."""

    ALLOW = "allow"
    CONFIRM = "confirm"
    DENY = "deny"


@dataclass
class ShellRuleConfig:
    """A shell command rule for the safety gate.

    Pattern is a glob matched against each pipeline segment of the command
    string (command + args). First match wins.
    """

    pattern: str  # e.g. "git *", "rm -rf *"
    action: RuleAction = RuleAction.CONFIRM


@dataclass
class ToolsConfig:
    """Built-in tool configuration."""

    output_limit: int = 50000  # Max characters kept in a ToolResult
    command_timeout: float = 30.0  # Seconds per shell command
    io_timeout: float = 10.0  # Seconds per file operation
    search_max_results: int = 50
    shell_rules: list[ShellRuleConfig] = field(default_factory=list)
    ignore_patterns: list[str] = field(
        default_factory=lambda: [
            ".git",
            "node_modules",
            "__pycache__",
            ".venv",
            "target",
            ".companion",
        ]
    )


@dataclass
class MCPRuleConfig:
    """A rule for external tool calls.

    Patterns support glob syntax against "server.tool":
        - "filesystem.*" matches all tools on the filesystem server
        - "*.read_*" matches read tools on any server
    """

    pattern: str
    action: RuleAction = RuleAction.ALLOW


@dataclass
class MCPConfig:
    """External tool server configuration."""

    manifest: str = ".companion/mcp_servers.json"  # Project-relative
    startup_timeout: float = 30.0
    call_timeout: float = 60.0
    rules: list[MCPRuleConfig] = field(default_factory=list)


@dataclass
class LoggingConfig:
    """Logging configuration."""

    level: str | None = None  # DEBUG, INFO, WARNING, ERROR
    verbose: int | None = None  # 0-4, overrides level
    file: str | None = None  # Log file path


@dataclass
class Config:
    """Root configuration object."""

    llm: LLMConfig = field(default_factory=LLMConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    agent: AgentConfig = field(default_factory=AgentConfig)
    context: ContextConfig = field(default_factory=ContextConfig)
    tools: ToolsConfig = field(default_factory=ToolsConfig)
    mcp: MCPConfig = field(default_factory=MCPConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    # Extension point for future config sections
    extra: dict[str, Any] = field(default_factory=dict)
