"""Session persistence storage.

Handles saving and loading sessions to/from YAML files in:
  $PROJECT/.companion/sessions/<session-id>.yaml

Session files contain:
- session_id, title, mode
- created_at / updated_at: ISO timestamps
- turns: the full history, checkpoints included
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Protocol

import yaml
from filelock import FileLock

from companion.errors import SessionNotFoundError
from companion.logging import get_logger
from companion.session.models import Mode, Session, Turn

log = get_logger("storage")


@dataclass
class SessionMetadata:
    """Lightweight session metadata for listing."""

    session_id: str
    title: str
    created_at: datetime
    updated_at: datetime
    turn_count: int


class SessionStore(Protocol):
    """Where sessions are persisted between runs."""

    def save(self, session: Session) -> Path | None: ...

    def load(self, session_id: str) -> Session:
        """Raises SessionNotFoundError if there is no such session."""
        ...

    def list_sessions(self) -> list[SessionMetadata]: ...


def session_to_dict(session: Session) -> dict[str, Any]:
    return {
        "session_id": session.session_id,
        "title": session.title,
        "mode": session.mode.value,
        "created_at": session.created_at.isoformat(),
        "updated_at": datetime.now().isoformat(),
        "token_counter": session.token_counter,
        "turns": [turn.to_dict() for turn in session.turns],
    }


def session_from_dict(data: dict[str, Any]) -> Session:
    return Session(
        session_id=data["session_id"],
        title=data.get("title", "Untitled"),
        mode=Mode(data.get("mode", Mode.CODE.value)),
        turns=[Turn.from_dict(t) for t in data.get("turns", [])],
        token_counter=data.get("token_counter", 0),
        created_at=datetime.fromisoformat(data["created_at"]),
        updated_at=datetime.fromisoformat(data["updated_at"]),
    )


class YamlSessionStore:
    """One YAML file per session under ``<project>/.companion/sessions``."""

    def __init__(self, sessions_dir: Path) -> None:
        self.sessions_dir = sessions_dir

    def path_for(self, session_id: str) -> Path:
        return self.sessions_dir / f"{session_id}.yaml"

    def save(self, session: Session) -> Path:
        """Save a session, writing a temp file first and renaming it into place."""
        self.sessions_dir.mkdir(parents=True, exist_ok=True)
        session_path = self.path_for(session.session_id)
        temp_path = self.sessions_dir / f"{session.session_id}.yaml.tmp"

        data = session_to_dict(session)
        # Another process may have resumed the same session
        lock = FileLock(self.sessions_dir / f"{session.session_id}.lock", timeout=10)
        try:
            with lock:
                with open(temp_path, "w", encoding="utf-8") as f:
                    yaml.safe_dump(
                        data, f, default_flow_style=False, allow_unicode=True, sort_keys=False
                    )
                os.replace(temp_path, session_path)
        except Exception as e:
            temp_path.unlink(missing_ok=True)
            raise RuntimeError(f"Failed to save session: {e}") from e

        log.debug("Saved session %s to %s", session.session_id, session_path)
        return session_path

    def load(self, session_id: str) -> Session:
        session_path = self.path_for(session_id)
        if not session_path.exists():
            raise SessionNotFoundError(f"No saved session '{session_id}'")
        try:
            with open(session_path, encoding="utf-8") as f:
                data = yaml.safe_load(f)
            return session_from_dict(data)
        except (yaml.YAMLError, KeyError, TypeError, ValueError) as e:
            raise SessionNotFoundError(f"Session '{session_id}' is unreadable: {e}") from e

    def list_sessions(self) -> list[SessionMetadata]:
        """All readable sessions, newest first."""
        if not self.sessions_dir.exists():
            return []

        sessions: list[SessionMetadata] = []
        for path in self.sessions_dir.glob("*.yaml"):
            try:
                with open(path, encoding="utf-8") as f:
                    data = yaml.safe_load(f)
                sessions.append(
                    SessionMetadata(
                        session_id=data["session_id"],
                        title=data.get("title", "Untitled"),
                        created_at=datetime.fromisoformat(data["created_at"]),
                        updated_at=datetime.fromisoformat(data["updated_at"]),
                        turn_count=len(data.get("turns", [])),
                    )
                )
            except (OSError, yaml.YAMLError, KeyError, TypeError, ValueError) as e:
                log.warning("Failed to load session metadata from %s: %s", path, e)

        sessions.sort(key=lambda s: s.updated_at, reverse=True)
        return sessions

    def delete(self, session_id: str) -> bool:
        session_path = self.path_for(session_id)
        if session_path.exists():
            session_path.unlink()
            (self.sessions_dir / f"{session_id}.lock").unlink(missing_ok=True)
            log.debug("Deleted session %s", session_id)
            return True
        return False
