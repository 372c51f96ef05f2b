"""User intents accepted by ModeController.handle()."""

from __future__ import annotations

from dataclasses import dataclass

from companion.session.models import Mode


@dataclass(frozen=True)
class NewSession:
    """Save nothing, start an empty session."""


@dataclass(frozen=True)
class Resume:
    session_id: str


@dataclass(frozen=True)
class Reindex:
    """Rebuild the project index and reconnect external tool servers."""


@dataclass(frozen=True)
class EditMemory:
    pass


@dataclass(frozen=True)
class SetMode:
    mode: Mode


@dataclass(frozen=True)
class CycleMode:
    pass


@dataclass(frozen=True)
class Submit:
    text: str


@dataclass(frozen=True)
class Cancel:
    pass


@dataclass(frozen=True)
class ExitAndSave:
    pass


@dataclass(frozen=True)
class ExitWithoutSaving:
    pass


Intent = (
    NewSession
    | Resume
    | Reindex
    | EditMemory
    | SetMode
    | CycleMode
    | Submit
    | Cancel
    | ExitAndSave
    | ExitWithoutSaving
)
