"""Chat-completion provider protocol and the message types it speaks."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol, runtime_checkable


class Role(Enum):
    """Message role on the wire. Tool results travel as USER content."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


@dataclass(frozen=True, slots=True)
class Message:
    role: Role
    content: str


@dataclass(slots=True)
class CompletionResult:
    """One model reply.

    Attributes:
        content: Reply text, tool_call blocks included
        finish_reason: Provider stop reason ("stop", "length", ...)
        usage: Token counts reported by the provider, if any
    """

    content: str
    finish_reason: str | None = None
    usage: dict[str, int] = field(default_factory=dict)

    @property
    def truncated(self) -> bool:
        """The reply was cut off at max_tokens."""
        return self.finish_reason == "length"


@runtime_checkable
class LLMProvider(Protocol):
    """Anything that can turn a message list into one reply.

    Implementations raise their native exceptions (or ``TransportError``);
    ``RetryingTransport`` decides which of them are worth another attempt.
    """

    @property
    def model(self) -> str: ...

    async def complete(
        self,
        messages: list[Message],
        *,
        max_tokens: int = 4096,
        stop: list[str] | None = None,
    ) -> CompletionResult: ...
