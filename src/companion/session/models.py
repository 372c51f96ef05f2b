"""Session data model: modes, turns, tool exchanges and phases."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from companion.tools.types import (
    Classification,
    Danger,
    FailureKind,
    ToolCall,
    ToolDescriptor,
    ToolResult,
)


class Mode(Enum):
    """Interaction mode, cycled by the user in declaration order."""

    ASK = "ask"
    PLAN = "plan"
    CODE = "code"
    AUTO = "auto"

    def next(self) -> Mode:
        members = list(Mode)
        return members[(members.index(self) + 1) % len(members)]

    @property
    def label(self) -> str:
        return self.name.capitalize()


class TurnRole(Enum):
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"
    SYSTEM = "system"


class Phase(Enum):
    """Where an in-flight turn is suspended."""

    IDLE = "idle"
    AWAITING_MODEL = "awaiting_model"
    AWAITING_TOOL = "awaiting_tool"
    AWAITING_CONFIRMATION = "awaiting_confirmation"


@dataclass
class ToolExchange:
    """A tool call paired with its result once resolved."""

    call: ToolCall
    result: ToolResult | None = None

    @property
    def resolved(self) -> bool:
        return self.result is not None


@dataclass
class Turn:
    """One entry in the conversation history.

    Attributes:
        role: Who produced the turn
        content: Text as sent to / received from the model
        exchanges: Tool calls of an assistant turn, in request order
        cancelled: The exchange was cancelled by the user
        checkpoint: A compaction summary replacing everything before it
        error: The turn records a failure (e.g. terminal transport error)
    """

    role: TurnRole
    content: str
    exchanges: list[ToolExchange] = field(default_factory=list)
    cancelled: bool = False
    checkpoint: bool = False
    error: bool = False
    turn_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    created_at: datetime = field(default_factory=datetime.now)

    @property
    def unresolved(self) -> list[ToolExchange]:
        return [ex for ex in self.exchanges if not ex.resolved]

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "turn_id": self.turn_id,
            "role": self.role.value,
            "content": self.content,
            "created_at": self.created_at.isoformat(),
        }
        if self.exchanges:
            data["exchanges"] = [_exchange_to_dict(ex) for ex in self.exchanges]
        for flag in ("cancelled", "checkpoint", "error"):
            if getattr(self, flag):
                data[flag] = True
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Turn:
        return cls(
            role=TurnRole(data["role"]),
            content=data.get("content", ""),
            exchanges=[_exchange_from_dict(ex) for ex in data.get("exchanges", [])],
            cancelled=data.get("cancelled", False),
            checkpoint=data.get("checkpoint", False),
            error=data.get("error", False),
            turn_id=data.get("turn_id") or uuid.uuid4().hex[:12],
            created_at=datetime.fromisoformat(data["created_at"])
            if data.get("created_at")
            else datetime.now(),
        )


def _exchange_to_dict(exchange: ToolExchange) -> dict[str, Any]:
    call = exchange.call
    data: dict[str, Any] = {
        "call_id": call.call_id,
        "name": call.name,
        "arguments": call.arguments,
    }
    if call.classification is not None:
        data["classification"] = {
            "danger": call.classification.danger.value,
            "mutating": call.classification.mutating,
        }
    if exchange.result is not None:
        result = exchange.result
        data["result"] = {
            "success": result.success,
            "output": result.output,
            "truncated": result.truncated,
            "kind": result.kind.value if result.kind else None,
        }
    return data


def _exchange_from_dict(data: dict[str, Any]) -> ToolExchange:
    classification = None
    if "classification" in data:
        classification = Classification(
            danger=Danger(data["classification"]["danger"]),
            mutating=data["classification"]["mutating"],
        )
    call = ToolCall(
        name=data["name"],
        arguments=dict(data.get("arguments") or {}),
        call_id=data.get("call_id") or uuid.uuid4().hex[:8],
        classification=classification,
    )
    if data.get("result") is not None:
        r = data["result"]
        result = ToolResult(
            success=r["success"],
            output=r.get("output", ""),
            truncated=r.get("truncated", False),
            kind=FailureKind(r["kind"]) if r.get("kind") else None,
        )
    else:
        # A saved session is never resumed with a dangling call
        result = ToolResult.cancelled()
    return ToolExchange(call, result)


def generate_default_title() -> str:
    """Title like "Session 2026-01-17 10:30"."""
    return f"Session {datetime.now().strftime('%Y-%m-%d %H:%M')}"


@dataclass
class Session:
    """All state of one conversation; mutated only by the controller.

    ``token_counter`` only ever grows (total estimated tokens appended);
    the live context size is computed by the ContextManager.
    """

    session_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    title: str = field(default_factory=generate_default_title)
    mode: Mode = Mode.CODE
    previous_mode: Mode | None = None
    turns: list[Turn] = field(default_factory=list)
    memory: str = ""
    tools: tuple[ToolDescriptor, ...] = ()
    token_counter: int = 0
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)

    def latest_checkpoint_index(self) -> int | None:
        for index in range(len(self.turns) - 1, -1, -1):
            if self.turns[index].checkpoint:
                return index
        return None

    def auto_title(self, max_length: int = 50) -> None:
        """Name the session after its first user message."""
        for turn in self.turns:
            if turn.role is TurnRole.USER and turn.content.strip():
                first_line = turn.content.strip().splitlines()[0]
                if len(first_line) > max_length:
                    first_line = first_line[: max_length - 3].rstrip() + "..."
                self.title = first_line
                return
