"""Client for external tool servers listed in the project manifest.

Each server is started over stdio, initialized, and asked for its tool list
once at connect time. Discovered tools are registered under their
advertised names as ``ExternalTool`` handlers. Those handlers only hold a
reference to the client; the live session stays owned here.

A server that fails while connected is marked UNAVAILABLE, its session and
process are closed, and its tools are withdrawn from the registry. It stays
that way until ``reconnect`` is called explicitly.
"""

from __future__ import annotations

import asyncio
import json
import logging
from contextlib import AsyncExitStack
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from mcp.client.session import ClientSession

from companion.errors import ExternalServerError
from companion.mcp.manifest import load_manifest
from companion.mcp.transport import create_transport
from companion.mcp.types import (
    MCPConnectionStatus,
    MCPServerConfig,
    MCPToolInfo,
    content_to_text,
)
from companion.tools.registry import ToolRegistry
from companion.tools.safety import SafetyPolicy
from companion.tools.types import Classification, ToolDescriptor, ToolResult

_log = logging.getLogger("companion.mcp.client")


@dataclass
class MCPConnection:
    """Represents one external server and its session."""

    name: str
    config: MCPServerConfig
    session: ClientSession | None = None
    status: MCPConnectionStatus = MCPConnectionStatus.DISCONNECTED
    tools: list[MCPToolInfo] = field(default_factory=list)
    error_message: str | None = None
    _stack: AsyncExitStack | None = None
    _call_lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    async def connect(self, timeout: float = 30.0) -> None:
        """Start the server, run the handshake and discover tools."""
        self.status = MCPConnectionStatus.CONNECTING
        stack = AsyncExitStack()
        try:
            async with asyncio.timeout(timeout):
                read_stream, write_stream = await stack.enter_async_context(
                    create_transport(self.config)
                )
                self.session = await stack.enter_async_context(
                    ClientSession(read_stream, write_stream)
                )
                await self.session.initialize()

                tools_result = await self.session.list_tools()
            self.tools = [
                MCPToolInfo(
                    name=t.name,
                    description=t.description or "",
                    input_schema=t.inputSchema or {"type": "object"},
                    server_name=self.name,
                    read_only=bool(t.annotations and t.annotations.readOnlyHint),
                )
                for t in tools_result.tools
            ]
        except Exception as e:
            self.session = None
            self.status = MCPConnectionStatus.UNAVAILABLE
            self.error_message = str(e) or type(e).__name__
            await _close_quietly(stack, self.name)
            raise ExternalServerError(self.name, f"failed to start: {self.error_message}") from e

        self._stack = stack
        self.status = MCPConnectionStatus.CONNECTED
        _log.info("Connected to tool server '%s' with %d tools", self.name, len(self.tools))

    async def disconnect(self) -> None:
        """Close the session and stop the server process."""
        if self._stack is not None:
            await _close_quietly(self._stack, self.name)
            self._stack = None
        self.session = None
        if self.status is not MCPConnectionStatus.UNAVAILABLE:
            self.status = MCPConnectionStatus.DISCONNECTED
        _log.info("Disconnected from tool server '%s'", self.name)

    async def call_tool(self, tool_name: str, arguments: dict[str, Any], timeout: float) -> ToolResult:
        """Call a tool; calls to one server never overlap.

        Raises:
            ExternalServerError: The server is down or failed during the call.
        """
        async with self._call_lock:
            if self.session is None or self.status is not MCPConnectionStatus.CONNECTED:
                raise ExternalServerError(self.name, "server is unavailable")
            try:
                result = await asyncio.wait_for(
                    self.session.call_tool(tool_name, arguments), timeout=timeout
                )
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.status = MCPConnectionStatus.UNAVAILABLE
                self.error_message = str(e) or type(e).__name__
                _log.error("Tool call %s.%s failed: %s", self.name, tool_name, self.error_message)
                await self.disconnect()
                raise ExternalServerError(
                    self.name, f"call to {tool_name} failed: {self.error_message}"
                ) from e

        text = content_to_text(result.content)
        if result.isError:
            return ToolResult(success=False, output=text or f"{tool_name} reported an error")
        if not text and result.structuredContent is not None:
            text = json.dumps(result.structuredContent, indent=2)
        return ToolResult.ok(text)


async def _close_quietly(stack: AsyncExitStack, name: str) -> None:
    try:
        await stack.aclose()
    except Exception as e:
        _log.warning("Error closing tool server '%s': %s", name, e)


class ExternalTool:
    """Tool handler for one tool on an external server."""

    def __init__(self, client: ExternalToolClient, info: MCPToolInfo) -> None:
        self._client = client
        self._info = info
        self._descriptor = ToolDescriptor(
            name=info.name,
            description=info.description,
            parameters=info.input_schema,
            source=info.server_name,
            mutating=not info.read_only,
        )

    @property
    def descriptor(self) -> ToolDescriptor:
        return self._descriptor

    def classify(self, arguments: dict[str, Any]) -> Classification:
        return self._client.safety.classify_external(
            self._info.server_name, self._info.name, mutating=self._descriptor.mutating
        )

    async def invoke(self, arguments: dict[str, Any]) -> ToolResult:
        return await self._client.call(self._info.server_name, self._info.name, arguments)

    async def describe(self, arguments: dict[str, Any]) -> str:
        return (
            f"Would call {self._info.name} on server '{self._info.server_name}' with "
            f"{json.dumps(arguments, sort_keys=True)}"
        )

    def __repr__(self) -> str:
        return f"<ExternalTool {self._info.server_name}.{self._info.name}>"


class ExternalToolClient:
    """Owns every external server connection for a session.

    Usage:
        client = ExternalToolClient(manifest_path, safety)
        await client.start(registry)
        ...
        await client.close()
    """

    def __init__(
        self,
        manifest_path: Path,
        safety: SafetyPolicy | None = None,
        *,
        startup_timeout: float = 30.0,
        call_timeout: float = 60.0,
    ) -> None:
        self.manifest_path = manifest_path
        self.safety = safety or SafetyPolicy()
        self.startup_timeout = startup_timeout
        self.call_timeout = call_timeout
        self.connections: dict[str, MCPConnection] = {}
        self._registry: ToolRegistry | None = None

    async def start(self, registry: ToolRegistry) -> list[MCPConnection]:
        """Connect every manifest server and register its tools.

        Start or discovery failures are logged and the server is skipped.
        Tool names already in the registry are rejected and logged.
        """
        self._registry = registry
        for config in load_manifest(self.manifest_path):
            if config.name in self.connections:
                _log.warning("Duplicate server name '%s' in manifest; skipping", config.name)
                continue
            connection = MCPConnection(name=config.name, config=config)
            self.connections[config.name] = connection
            try:
                await connection.connect(timeout=self.startup_timeout)
            except ExternalServerError as e:
                _log.warning("Skipping tool server: %s", e)
                continue
            registry.register_all([ExternalTool(self, info) for info in connection.tools])
        return list(self.connections.values())

    async def call(self, server: str, tool: str, arguments: dict[str, Any]) -> ToolResult:
        connection = self.connections.get(server)
        if connection is None:
            raise ExternalServerError(server, "no such server")
        try:
            return await connection.call_tool(tool, arguments, timeout=self.call_timeout)
        except ExternalServerError:
            if connection.status is MCPConnectionStatus.UNAVAILABLE:
                self._withdraw_tools(connection)
            raise

    def _withdraw_tools(self, connection: MCPConnection) -> None:
        if self._registry is None:
            return
        removed = self._registry.unregister_source(connection.name)
        if removed:
            _log.warning(
                "Tool server '%s' failed; withdrew %d tools until reconnect",
                connection.name,
                removed,
            )

    async def reconnect(self, registry: ToolRegistry) -> list[MCPConnection]:
        """Drop every server and its tools, then start again from the manifest."""
        for name in list(self.connections):
            registry.unregister_source(name)
        await self.close()
        return await self.start(registry)

    async def close(self) -> None:
        for connection in self.connections.values():
            await connection.disconnect()
        self.connections.clear()

    def status(self) -> dict[str, MCPConnectionStatus]:
        return {name: conn.status for name, conn in self.connections.items()}
