"""Configuration file loading and caching.

Handles:
- YAML file parsing
- Environment variable overrides
- Config caching with reset support
- Conversion from dict to typed Config dataclass
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

import yaml

from companion.config.merge import merge_configs
from companion.config.paths import get_config_paths
from companion.config.schema import (
    AgentConfig,
    Config,
    ContextConfig,
    LLMConfig,
    LoggingConfig,
    MCPConfig,
    MCPRuleConfig,
    RetryConfig,
    RuleAction,
    ShellRuleConfig,
    ToolsConfig,
)

# Module logger (may not be configured yet at import time)
_log = logging.getLogger("companion.config")

_cached_config: Config | None = None


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Load a YAML file, returning empty dict if not found or invalid."""
    if not path.exists():
        return {}

    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
            return data if isinstance(data, dict) else {}
    except yaml.YAMLError as e:
        _log.warning("Invalid YAML in %s: %s", path, e)
        return {}
    except PermissionError:
        _log.debug("Permission denied reading %s", path)
        return {}
    except OSError as e:
        _log.warning("Error reading %s: %s", path, e)
        return {}


def env_overrides() -> dict[str, Any]:
    """Build config dict from environment variables.

    API keys are NOT loaded here - use fetch_secret() for secrets.
    """
    overrides: dict[str, Any] = {}

    log_path = os.environ.get("COMPANION_LOG")
    if log_path:
        overrides.setdefault("logging", {})["file"] = log_path

    model = os.environ.get("COMPANION_MODEL")
    if model:
        overrides.setdefault("llm", {})["model"] = model

    return overrides


def _parse_action(value: Any, default: RuleAction) -> RuleAction:
    if isinstance(value, bool):
        # allow: true / allow: false shorthand
        return RuleAction.ALLOW if value else RuleAction.DENY
    try:
        return RuleAction(str(value).lower())
    except ValueError:
        _log.warning("Unknown rule action %r, using %s", value, default.value)
        return default


def _section(data: dict[str, Any], key: str) -> dict[str, Any]:
    value = data.get(key)
    return value if isinstance(value, dict) else {}


def _pick(section: dict[str, Any], *names: str) -> dict[str, Any]:
    """Copy the listed keys that are present, leaving dataclass defaults otherwise."""
    return {name: section[name] for name in names if name in section}


def dict_to_config(data: dict[str, Any]) -> Config:
    """Convert merged dict to typed Config dataclass."""
    llm_data = _section(data, "llm")
    llm = LLMConfig(
        **_pick(
            llm_data,
            "model",
            "api_base",
            "api_key_env",
            "max_tokens",
            "temperature",
            "request_timeout",
        )
    )

    retry_data = _section(data, "retry")
    retry = RetryConfig(**_pick(retry_data, "max_attempts", "jitter"))
    if isinstance(retry_data.get("delays"), list):
        retry.delays = [float(d) for d in retry_data["delays"]]

    agent = AgentConfig(
        **_pick(
            _section(data, "agent"),
            "default_mode",
            "max_auto_iterations",
            "max_tool_rounds",
            "termination_marker",
            "index_context_tokens",
            "index_max_files",
        )
    )

    context = ContextConfig(
        **_pick(
            _section(data, "context"),
            "capacity",
            "compaction_threshold",
            "token_estimator",
            "summarizer",
            "summary_max_tokens",
        )
    )

    tools_data = _section(data, "tools")
    shell_rules = [
        ShellRuleConfig(
            pattern=r["pattern"],
            action=_parse_action(r.get("action", r.get("allow")), RuleAction.CONFIRM),
        )
        for r in tools_data.get("shell_rules", [])
        if isinstance(r, dict) and r.get("pattern")
    ]
    tools = ToolsConfig(
        shell_rules=shell_rules,
        **_pick(
            tools_data,
            "output_limit",
            "command_timeout",
            "io_timeout",
            "search_max_results",
            "ignore_patterns",
        ),
    )

    mcp_data = _section(data, "mcp")
    mcp_rules = [
        MCPRuleConfig(
            pattern=r["pattern"],
            action=_parse_action(r.get("action", r.get("allow")), RuleAction.ALLOW),
        )
        for r in mcp_data.get("rules", [])
        if isinstance(r, dict) and r.get("pattern")
    ]
    mcp = MCPConfig(
        rules=mcp_rules,
        **_pick(mcp_data, "manifest", "startup_timeout", "call_timeout"),
    )

    log_data = _section(data, "logging")
    logging_config = LoggingConfig(
        level=log_data.get("level"),
        verbose=log_data.get("verbose"),
        file=log_data.get("file"),
    )

    known_keys = {"llm", "retry", "agent", "context", "tools", "mcp", "logging"}
    extra = {k: v for k, v in data.items() if k not in known_keys}

    return Config(
        llm=llm,
        retry=retry,
        agent=agent,
        context=context,
        tools=tools,
        mcp=mcp,
        logging=logging_config,
        extra=extra,
    )


def load_config(project_root: str | Path | None = None, reload: bool = False) -> Config:
    """Load and merge config from all sources.

    Priority order (highest to lowest):
    1. Environment variables
    2. Project config ($project_root/.companion/config.yaml)
    3. User config (~/.config/companion/config.yaml or %APPDATA%)
    4. System config (/etc/companion/ or %PROGRAMDATA%)

    Args:
        project_root: Project directory for project-level config.
        reload: Force reload even if cached.
    """
    global _cached_config

    if _cached_config is not None and not reload and project_root is None:
        return _cached_config

    configs: list[dict[str, Any]] = []

    for path in get_config_paths(project_root):
        config_data = load_yaml_file(path)
        if config_data:
            _log.debug("Loaded config from %s", path)
            configs.append(config_data)

    env_config = env_overrides()
    if env_config:
        configs.append(env_config)

    config = dict_to_config(merge_configs(*configs))

    # Cache only global config (no project_root)
    if project_root is None:
        _cached_config = config

    return config


def get_config() -> Config:
    """Get the cached global config, loading it on first use."""
    if _cached_config is None:
        return load_config()
    return _cached_config


def reset_config() -> None:
    """Reset cached config (tests, or forcing a reload)."""
    global _cached_config
    _cached_config = None
