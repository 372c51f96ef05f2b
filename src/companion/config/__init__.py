"""Configuration management for Companion.

Provides hierarchical YAML-based configuration with:
- System-level config (/etc/companion/ or %PROGRAMDATA%)
- User-level config (~/.config/companion/ or %APPDATA%)
- Project-level config ($project_root/.companion/)
- Environment variable overrides (highest priority)

Example usage:
    from companion.config import load_config

    config = load_config(project_root="/path/to/project")
    print(config.llm.model)
"""

from companion.config.loader import (
    get_config,
    load_config,
    reset_config,
)
from companion.config.paths import (
    get_config_paths,
    get_project_config_path,
    get_project_dir,
    get_system_config_path,
    get_user_config_path,
)
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
from companion.config.secrets import (
    clear_secret_cache,
    fetch_secret,
)

__all__ = [
    # Main API
    "Config",
    "load_config",
    "get_config",
    "reset_config",
    # Schema types
    "AgentConfig",
    "ContextConfig",
    "LLMConfig",
    "LoggingConfig",
    "MCPConfig",
    "MCPRuleConfig",
    "RetryConfig",
    "RuleAction",
    "ShellRuleConfig",
    "ToolsConfig",
    # Secret management
    "fetch_secret",
    "clear_secret_cache",
    # Path utilities
    "get_config_paths",
    "get_project_config_path",
    "get_project_dir",
    "get_system_config_path",
    "get_user_config_path",
]
