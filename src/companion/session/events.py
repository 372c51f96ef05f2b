"""Session update events published by the controller."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class UpdateKind(Enum):
    MODE_CHANGED = "mode_changed"
    PHASE_CHANGED = "phase_changed"
    ASSISTANT_MESSAGE = "assistant_message"
    TOOL_CALL = "tool_call"
    TOOL_RESULT = "tool_result"
    COMPACTION = "compaction"
    SESSION_CHANGED = "session_changed"
    ERROR = "error"
    CANCELLED = "cancelled"
    TURN_FINISHED = "turn_finished"


@dataclass(frozen=True)
class SessionUpdate:
    kind: UpdateKind
    message: str = ""
    data: dict[str, Any] = field(default_factory=dict)


UpdateListener = Callable[[SessionUpdate], None]
