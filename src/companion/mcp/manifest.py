"""Project manifest of external tool servers.

``<project>/.companion/mcp_servers.json``::

    {
      "mcpServers": {
        "filesystem": {
          "command": "npx",
          "args": ["-y", "@modelcontextprotocol/server-filesystem", "."],
          "env": {"TOKEN": "${MY_TOKEN}"}
        }
      }
    }
"""

from __future__ import annotations

import json
import logging
from pathlib import Path

from companion.mcp.types import MCPServerConfig

_log = logging.getLogger("companion.mcp.manifest")


def load_manifest(path: Path) -> list[MCPServerConfig]:
    """Read server entries. A missing file means no servers.

    Malformed entries are skipped with a warning; they never stop the others.
    """
    if not path.exists():
        return []

    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        _log.warning("Could not read tool server manifest %s: %s", path, e)
        return []

    servers_data = data.get("mcpServers") if isinstance(data, dict) else None
    if not isinstance(servers_data, dict):
        _log.warning("Manifest %s has no 'mcpServers' object", path)
        return []

    servers = []
    for name, entry in servers_data.items():
        if not isinstance(entry, dict) or not isinstance(entry.get("command"), str):
            _log.warning("Skipping server '%s': missing 'command'", name)
            continue
        args = entry.get("args") or []
        env = entry.get("env") or {}
        if not isinstance(args, list) or not isinstance(env, dict):
            _log.warning("Skipping server '%s': 'args' must be a list and 'env' an object", name)
            continue
        servers.append(
            MCPServerConfig(
                name=name,
                command=entry["command"],
                args=[str(a) for a in args],
                env={str(k): str(v) for k, v in env.items()},
            )
        )
    return servers
