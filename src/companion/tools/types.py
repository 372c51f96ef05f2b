"""Tool descriptors, calls, results and the handler protocol."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol, runtime_checkable

BUILTIN_SOURCE = "builtin"

TRUNCATION_MARKER = "\n... (output truncated)"


class Danger(Enum):
    """Danger level of a tool or of one concrete call."""

    SAFE = "safe"
    CONFIRM_REQUIRED = "confirm-required"
    DENIED = "denied"  # Only produced by call classification


class FailureKind(Enum):
    """Why a ToolResult failed (or, for SIMULATED, why it did not run)."""

    UNKNOWN_TOOL = "unknown_tool"
    INVALID_ARGUMENTS = "invalid_arguments"
    DENIED = "denied"
    NOT_PERMITTED = "not_permitted"
    CONFIRMATION_DECLINED = "confirmation_declined"
    TIMEOUT = "timeout"
    EXECUTION_ERROR = "execution_error"
    EXTERNAL_ERROR = "external_error"
    CANCELLED = "cancelled"
    SIMULATED = "simulated"


@dataclass(frozen=True)
class ToolDescriptor:
    """Static description of a tool as advertised to the model.

    Attributes:
        name: Globally unique tool name
        description: One-paragraph description for the model
        parameters: JSON schema for the argument object
        source: "builtin" or the external server name
        danger: Static danger level before looking at arguments
        mutating: Whether the tool changes files or runs commands
    """

    name: str
    description: str
    parameters: dict[str, Any] = field(default_factory=lambda: {"type": "object"})
    source: str = BUILTIN_SOURCE
    danger: Danger = Danger.SAFE
    mutating: bool = False

    @property
    def is_external(self) -> bool:
        return self.source != BUILTIN_SOURCE


@dataclass(frozen=True)
class Classification:
    """Executor-computed risk of one call; never taken from model output."""

    danger: Danger = Danger.SAFE
    mutating: bool = False
    reason: str | None = None
    preapproved: bool = False  # An allow rule matched

    @property
    def requires_confirmation(self) -> bool:
        return self.danger is Danger.CONFIRM_REQUIRED

    @property
    def denied(self) -> bool:
        return self.danger is Danger.DENIED


@dataclass
class ToolCall:
    """A tool invocation requested by the model."""

    name: str
    arguments: dict[str, Any] = field(default_factory=dict)
    call_id: str = field(default_factory=lambda: uuid.uuid4().hex[:8])
    classification: Classification | None = None


@dataclass
class ToolResult:
    """Outcome of one tool call, as fed back to the model."""

    success: bool
    output: str
    truncated: bool = False
    kind: FailureKind | None = None

    @classmethod
    def ok(cls, output: str) -> ToolResult:
        return cls(success=True, output=output)

    @classmethod
    def fail(cls, kind: FailureKind, message: str) -> ToolResult:
        return cls(success=False, output=message, kind=kind)

    @classmethod
    def cancelled(cls) -> ToolResult:
        return cls.fail(FailureKind.CANCELLED, "Cancelled before execution")

    def bounded(self, limit: int) -> ToolResult:
        """Copy with output cut to ``limit`` characters plus the truncation marker."""
        if len(self.output) <= limit:
            return self
        return ToolResult(
            success=self.success,
            output=self.output[:limit] + TRUNCATION_MARKER,
            truncated=True,
            kind=self.kind,
        )


@runtime_checkable
class ToolHandler(Protocol):
    """Executable side of a registered tool.

    Built-in tools and external server tools both implement this, so the
    executor never cares where a tool came from.
    """

    @property
    def descriptor(self) -> ToolDescriptor: ...

    def classify(self, arguments: dict[str, Any]) -> Classification:
        """Risk of running with these (already validated) arguments."""
        ...

    async def invoke(self, arguments: dict[str, Any]) -> ToolResult:
        """Run the tool. May raise; the executor converts failures to results."""
        ...

    async def describe(self, arguments: dict[str, Any]) -> str:
        """What invoking would do, without doing it (PLAN mode)."""
        ...
