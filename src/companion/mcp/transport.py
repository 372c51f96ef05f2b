"""Stdio transport factory for external tool servers."""

from __future__ import annotations

import os
from typing import TYPE_CHECKING, Any, AsyncContextManager

from mcp.client.stdio import StdioServerParameters, stdio_client

if TYPE_CHECKING:
    from companion.mcp.types import MCPServerConfig


def _expand_env_vars(env: dict[str, str]) -> dict[str, str]:
    """Expand ``${VAR}`` references in env values from the current environment."""
    result = {}
    for key, value in env.items():
        if value.startswith("${") and value.endswith("}"):
            result[key] = os.environ.get(value[2:-1], "")
        else:
            result[key] = value
    return result


def create_transport(config: MCPServerConfig) -> AsyncContextManager[tuple[Any, Any]]:
    """Context manager yielding (read_stream, write_stream) for a server process."""
    if not config.command:
        raise ValueError(f"Server '{config.name}' has no command")

    # Config env takes precedence over the inherited environment
    merged_env = dict(os.environ)
    merged_env.update(_expand_env_vars(config.env))

    params = StdioServerParameters(
        command=config.command,
        args=list(config.args),
        env=merged_env,
    )
    return stdio_client(params)
