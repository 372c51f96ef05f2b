"""Session layer: history, context compaction, modes and the controller."""

from companion.session.context import ContextManager
from companion.session.controller import (
    ModeController,
    OutcomeStatus,
    SessionSnapshot,
    TurnOutcome,
)
from companion.session.events import SessionUpdate, UpdateKind
from companion.session.factory import create_controller
from companion.session.models import (
    Mode,
    Phase,
    Session,
    ToolExchange,
    Turn,
    TurnRole,
)
from companion.session.storage import YamlSessionStore

__all__ = [
    "ContextManager",
    "Mode",
    "ModeController",
    "OutcomeStatus",
    "Phase",
    "Session",
    "SessionSnapshot",
    "SessionUpdate",
    "ToolExchange",
    "Turn",
    "TurnOutcome",
    "TurnRole",
    "UpdateKind",
    "YamlSessionStore",
    "create_controller",
]
