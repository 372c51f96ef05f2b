"""Tests for session models, persistence and project memory."""

from __future__ import annotations

from datetime import datetime, timedelta

import pytest

from companion.errors import SessionNotFoundError
from companion.session.memory import ProjectMemory
from companion.session.models import Mode, Session, ToolExchange, Turn, TurnRole
from companion.session.storage import YamlSessionStore
from companion.tools.types import Classification, Danger, FailureKind, ToolCall, ToolResult


@pytest.fixture
def store(tmp_path):
    return YamlSessionStore(tmp_path / "sessions")


def _session() -> Session:
    call = ToolCall(
        "write_file",
        {"path": "a.py", "content": "x = 1\n"},
        classification=Classification(Danger.SAFE, mutating=True),
    )
    session = Session(title="Refactor", mode=Mode.PLAN, token_counter=42)
    session.turns = [
        Turn(TurnRole.USER, "Refactor a.py"),
        Turn(
            TurnRole.ASSISTANT,
            "Writing",
            exchanges=[ToolExchange(call, ToolResult.fail(FailureKind.SIMULATED, "Would create"))],
        ),
        Turn(TurnRole.SYSTEM, "Summary", checkpoint=True),
        Turn(TurnRole.USER, "stop", cancelled=True),
    ]
    return session


class TestSessionModel:
    def test_auto_title_uses_first_user_line(self) -> None:
        session = Session()
        session.turns.append(Turn(TurnRole.USER, "Fix the parser\nIt crashes on empty input"))
        session.auto_title()
        assert session.title == "Fix the parser"

    def test_auto_title_truncates(self) -> None:
        session = Session()
        session.turns.append(Turn(TurnRole.USER, "x" * 80))
        session.auto_title(max_length=20)
        assert session.title == "x" * 17 + "..."

    def test_latest_checkpoint_index(self) -> None:
        assert _session().latest_checkpoint_index() == 2
        assert Session().latest_checkpoint_index() is None

    def test_dangling_call_loads_as_cancelled(self) -> None:
        turn = Turn(TurnRole.ASSISTANT, "x", exchanges=[ToolExchange(ToolCall("read_file"))])
        restored = Turn.from_dict(turn.to_dict())
        assert restored.exchanges[0].result.kind is FailureKind.CANCELLED
        assert restored.unresolved == []


class TestYamlSessionStore:
    def test_round_trip(self, store) -> None:
        session = _session()
        path = store.save(session)

        assert path == store.path_for(session.session_id)
        assert not list(path.parent.glob("*.tmp"))

        loaded = store.load(session.session_id)
        assert loaded.session_id == session.session_id
        assert loaded.title == "Refactor"
        assert loaded.mode is Mode.PLAN
        assert loaded.token_counter == 42
        assert [t.role for t in loaded.turns] == [t.role for t in session.turns]
        assert loaded.turns[2].checkpoint
        assert loaded.turns[3].cancelled

        exchange = loaded.turns[1].exchanges[0]
        assert exchange.call.arguments == {"path": "a.py", "content": "x = 1\n"}
        assert exchange.call.classification.mutating
        assert exchange.result.kind is FailureKind.SIMULATED

    def test_load_missing(self, store) -> None:
        with pytest.raises(SessionNotFoundError):
            store.load("nope")

    def test_load_corrupt(self, store) -> None:
        store.sessions_dir.mkdir(parents=True)
        store.path_for("bad").write_text("just a string")
        with pytest.raises(SessionNotFoundError, match="unreadable"):
            store.load("bad")

    def test_list_sessions_newest_first(self, store) -> None:
        older = Session(title="older")
        older.turns.append(Turn(TurnRole.USER, "a"))
        store.save(older)
        newer = Session(title="newer")
        newer.turns.append(Turn(TurnRole.USER, "b"))
        store.save(newer)

        # Push the older file's timestamp back explicitly
        data = store.path_for(older.session_id).read_text()
        stamp = (datetime.now() - timedelta(days=1)).isoformat()
        lines = [
            f"updated_at: '{stamp}'" if line.startswith("updated_at:") else line
            for line in data.splitlines()
        ]
        store.path_for(older.session_id).write_text("\n".join(lines) + "\n")

        listed = store.list_sessions()
        assert [m.title for m in listed] == ["newer", "older"]
        assert listed[0].turn_count == 1

    def test_list_skips_unreadable(self, store) -> None:
        store.save(_session())
        store.path_for("junk").write_text("- just\n- a list\n")
        assert len(store.list_sessions()) == 1

    def test_delete(self, store) -> None:
        session = _session()
        store.save(session)
        assert store.delete(session.session_id)
        assert not store.delete(session.session_id)


class TestProjectMemory:
    def test_missing_file_is_empty(self, tmp_path) -> None:
        assert ProjectMemory(tmp_path / "MEMORY.md").load() == ""

    @pytest.mark.asyncio
    async def test_edit_creates_and_reloads(self, tmp_path) -> None:
        memory = ProjectMemory(tmp_path / ".companion" / "MEMORY.md")

        async def editor(path):
            path.write_text("Run tests with pytest.\n")

        text = await memory.edit(editor)

        assert text == "Run tests with pytest.\n"
        assert memory.text == text
