"""Shared test doubles for Companion tests."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Any

from companion.core.llm.provider import CompletionResult, Message
from companion.tools.types import Classification, Danger, ToolDescriptor, ToolResult


class FakeProvider:
    """Scripted LLM provider.

    Each entry of ``script`` is a reply string, an exception to raise, or a
    callable receiving the messages and returning either.
    """

    model = "fake/model"

    def __init__(self, script: list[Any] | None = None, default: str = "Done.") -> None:
        self.script = list(script or [])
        self.default = default
        self.requests: list[list[Message]] = []
        self.max_tokens: list[int] = []

    async def complete(
        self,
        messages: list[Message],
        *,
        max_tokens: int = 4096,
        stop: list[str] | None = None,
    ) -> CompletionResult:
        self.requests.append(list(messages))
        self.max_tokens.append(max_tokens)
        item: Any = self.script.pop(0) if self.script else self.default
        if callable(item) and not isinstance(item, BaseException):
            item = item(messages)
            if asyncio.iscoroutine(item):
                item = await item
        if isinstance(item, BaseException):
            raise item
        return CompletionResult(content=item, finish_reason="stop")


class RecordingSleep:
    """Stand-in for asyncio.sleep that records delays without waiting."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class StubTool:
    """Minimal tool handler with configurable classification and behavior."""

    def __init__(
        self,
        name: str,
        *,
        mutating: bool = False,
        danger: Danger = Danger.SAFE,
        source: str = "builtin",
        parameters: dict[str, Any] | None = None,
        invoke: Callable[[dict[str, Any]], Any] | None = None,
        reason: str | None = None,
    ) -> None:
        self._descriptor = ToolDescriptor(
            name=name,
            description=f"{name} test tool",
            parameters=parameters or {"type": "object"},
            source=source,
            danger=danger,
            mutating=mutating,
        )
        self._invoke = invoke
        self._reason = reason
        self.calls: list[dict[str, Any]] = []

    @property
    def descriptor(self) -> ToolDescriptor:
        return self._descriptor

    def classify(self, arguments: dict[str, Any]) -> Classification:
        return Classification(
            self._descriptor.danger, mutating=self._descriptor.mutating, reason=self._reason
        )

    async def invoke(self, arguments: dict[str, Any]) -> ToolResult:
        self.calls.append(arguments)
        if self._invoke is not None:
            result = self._invoke(arguments)
            if asyncio.iscoroutine(result):
                result = await result
            return result
        return ToolResult.ok(f"{self._descriptor.name} ran")

    async def describe(self, arguments: dict[str, Any]) -> str:
        return f"Would run {self._descriptor.name}"


def tool_call_block(name: str, **params: str) -> str:
    """Render a tool_call block the way the model writes it."""
    lines = ["<tool_call>", f"<name>{name}</name>", "<params>"]
    for key, value in params.items():
        lines.append(f"<{key}>{value}</{key}>")
    lines.extend(["</params>", "</tool_call>"])
    return "\n".join(lines)
