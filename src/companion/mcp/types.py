"""External tool server type definitions."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class MCPConnectionStatus(Enum):
    """Liveness of an external tool server."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    UNAVAILABLE = "unavailable"  # Failed; stays down until an explicit reconnect


@dataclass
class MCPServerConfig:
    """One server entry from the project manifest."""

    name: str
    command: str
    args: list[str] = field(default_factory=list)
    env: dict[str, str] = field(default_factory=dict)


@dataclass
class MCPToolInfo:
    """A tool advertised by a server at discovery time."""

    name: str
    description: str
    input_schema: dict[str, Any]
    server_name: str
    read_only: bool = False


def content_to_text(blocks: list[Any]) -> str:
    """Flatten MCP content blocks to text; non-text blocks become placeholders."""
    parts = []
    for block in blocks:
        kind = getattr(block, "type", None)
        if kind == "text":
            parts.append(block.text)
        elif kind == "image":
            parts.append(f"[image: {getattr(block, 'mimeType', 'unknown')}]")
        elif kind == "resource":
            resource = block.resource
            text = getattr(resource, "text", None)
            parts.append(text if text is not None else f"[resource: {resource.uri}]")
    return "\n".join(parts)
