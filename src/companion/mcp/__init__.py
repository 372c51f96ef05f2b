"""External tool servers (Model Context Protocol) for Companion."""

from companion.mcp.client import ExternalTool, ExternalToolClient, MCPConnection
from companion.mcp.manifest import load_manifest
from companion.mcp.types import (
    MCPConnectionStatus,
    MCPServerConfig,
    MCPToolInfo,
)

__all__ = [
    "ExternalTool",
    "ExternalToolClient",
    "MCPConnection",
    "MCPConnectionStatus",
    "MCPServerConfig",
    "MCPToolInfo",
    "load_manifest",
]
