"""Summarizers that turn a run of turns into one checkpoint text."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Protocol

from companion.core.llm.provider import Message, Role
from companion.errors import CompactionError, TerminalError
from companion.session.models import Turn, TurnRole

if TYPE_CHECKING:
    from companion.core.llm.transport import RetryingTransport

_log = logging.getLogger("companion.session.compaction")

# Argument names that carry project paths
_PATH_ARGUMENTS = ("path", "scope")

SUMMARY_PROMPT = """\
Summarize the conversation below so the work can continue without it.
Keep: decisions made, the current state of the task, open tasks and
questions, errors still unresolved, and any facts the user stated.
Be concise; use short bullet lists. Do not invent details."""


class Summarizer(Protocol):
    async def summarize(self, turns: list[Turn]) -> str:
        """Summary text for ``turns``. Raises CompactionError on failure."""
        ...


def files_touched(turns: list[Turn]) -> list[str]:
    """Paths named by tool calls in ``turns``, first-seen order."""
    seen: dict[str, None] = {}
    for turn in turns:
        for exchange in turn.exchanges:
            for key in _PATH_ARGUMENTS:
                value = exchange.call.arguments.get(key)
                if isinstance(value, str) and value and value != ".":
                    seen.setdefault(value, None)
    return list(seen)


def _with_files(summary: str, turns: list[Turn]) -> str:
    files = files_touched(turns)
    if not files:
        return summary
    listing = "\n".join(f"- {path}" for path in files)
    return f"{summary.rstrip()}\n\nFiles touched:\n{listing}"


def render_transcript(turns: list[Turn], max_chars_per_turn: int = 2000) -> str:
    lines = []
    for turn in turns:
        content = turn.content
        if len(content) > max_chars_per_turn:
            content = content[:max_chars_per_turn] + " ..."
        label = "Summary" if turn.checkpoint else turn.role.value.capitalize()
        lines.append(f"[{label}] {content}")
    return "\n\n".join(lines)


class ExtractiveSummarizer:
    """Deterministic digest: user requests, tool activity, last answer."""

    def __init__(self, max_line_chars: int = 200) -> None:
        self._max = max_line_chars

    def _clip(self, text: str) -> str:
        line = " ".join(text.split())
        return line if len(line) <= self._max else line[: self._max - 3] + "..."

    async def summarize(self, turns: list[Turn]) -> str:
        lines = ["Summary of earlier conversation:"]
        last_answer = None
        for turn in turns:
            if turn.checkpoint:
                lines.append(f"- Earlier: {self._clip(turn.content)}")
            elif turn.role is TurnRole.USER and not turn.cancelled:
                lines.append(f"- User asked: {self._clip(turn.content)}")
            elif turn.role is TurnRole.ASSISTANT:
                for exchange in turn.exchanges:
                    status = "ok"
                    if exchange.result is not None and not exchange.result.success:
                        status = exchange.result.kind.value if exchange.result.kind else "failed"
                    lines.append(f"- Tool {exchange.call.name} ({status})")
                if turn.content.strip():
                    last_answer = turn.content
        if last_answer:
            lines.append(f"- Last answer: {self._clip(last_answer)}")
        return _with_files("\n".join(lines), turns)


class ModelSummarizer:
    """Asks the model for the summary through the retrying transport."""

    def __init__(self, transport: RetryingTransport, max_tokens: int = 1024) -> None:
        self._transport = transport
        self._max_tokens = max_tokens

    async def summarize(self, turns: list[Turn]) -> str:
        messages = [
            Message(Role.SYSTEM, SUMMARY_PROMPT),
            Message(Role.USER, render_transcript(turns)),
        ]
        try:
            result = await self._transport.execute(messages, max_tokens=self._max_tokens)
        except TerminalError as e:
            raise CompactionError(f"Summary request failed: {e}") from e
        if not result.content.strip():
            raise CompactionError("Model returned an empty summary")
        return _with_files(result.content, turns)


def create_summarizer(name: str, transport: RetryingTransport | None = None, **kwargs) -> Summarizer:
    """Build a summarizer by config name ("model" or "extractive")."""
    if name == "extractive":
        return ExtractiveSummarizer()
    if name == "model":
        if transport is None:
            raise ValueError("The model summarizer needs a transport")
        return ModelSummarizer(transport, **kwargs)
    raise ValueError(f"Unknown summarizer '{name}'. Available: model, extractive")
