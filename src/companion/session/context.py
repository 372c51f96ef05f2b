"""Conversation context: history, project memory and compaction.

The live estimate covers what the next outbound prompt would carry: the
preamble last sent, memory, the latest checkpoint and every turn after it. Crossing the threshold on
``append`` only arms compaction; the summary is produced inside
``prepare_outbound``, which is the only place prompts are built, so it never
interleaves with tool-call resolution.
"""

from __future__ import annotations

import logging

from companion.core.llm.provider import Message, Role
from companion.core.tokens import TokenBudget
from companion.errors import CompactionError, UnresolvedToolCallError
from companion.session.compaction import Summarizer
from companion.session.models import Session, Turn, TurnRole

_log = logging.getLogger("companion.session.context")

MEMORY_HEADER = "## Project memory\n"
CHECKPOINT_HEADER = "## Summary of earlier conversation\n"


class ContextManager:
    """Owns the outbound view of a session's history."""

    def __init__(self, session: Session, budget: TokenBudget, summarizer: Summarizer) -> None:
        self.session = session
        self.budget = budget
        self.summarizer = summarizer
        self._armed = False
        self._preamble_tokens = 0
        self.compactions = 0

    @property
    def armed(self) -> bool:
        return self._armed

    def active_turns(self) -> list[Turn]:
        """Latest checkpoint (if any) and every turn after it."""
        index = self.session.latest_checkpoint_index()
        if index is None:
            return list(self.session.turns)
        return self.session.turns[index:]

    def estimate(self) -> int:
        return self._preamble_tokens + self.budget.estimate(
            self.session.memory, *(turn.content for turn in self.active_turns())
        )

    def set_preamble(self, preamble: str) -> None:
        """Count the system preamble (prompt, mode instructions, tool docs) in the estimate."""
        self._preamble_tokens = self.budget.estimate(preamble)
        self._check_threshold()

    def append(self, turn: Turn) -> None:
        """Add a turn and re-estimate; arms compaction at the threshold."""
        self.session.turns.append(turn)
        self.session.token_counter += self.budget.estimate(turn.content)
        self._check_threshold()

    def refresh(self) -> None:
        """Re-estimate after a turn's content changed in place."""
        self._check_threshold()

    def _check_threshold(self) -> None:
        if not self._armed and self.budget.over_threshold(self.estimate()):
            _log.debug("Context at %d tokens; compaction armed", self.estimate())
            self._armed = True

    def set_memory(self, text: str) -> None:
        self.session.memory = text
        self._check_threshold()

    def reset(self, session: Session) -> None:
        """Switch to another session (new or resumed)."""
        self.session = session
        self._armed = False
        self._check_threshold()

    async def compact(self) -> bool:
        """Summarize active turns into a checkpoint. Returns False if skipped.

        A trailing user or tool turn is kept verbatim after the checkpoint,
        since the next request has to answer it.
        """
        self._armed = False
        active = self.active_turns()
        keep_tail = 1 if active and active[-1].role in (TurnRole.USER, TurnRole.TOOL) else 0
        to_summarize = active[: len(active) - keep_tail]
        if not to_summarize:
            return False

        try:
            summary = await self.summarizer.summarize(to_summarize)
        except CompactionError as e:
            # Re-armed by the next append that is still over the threshold
            _log.warning("Compaction skipped: %s", e)
            return False

        checkpoint = Turn(role=TurnRole.SYSTEM, content=summary, checkpoint=True)
        self.session.turns.insert(len(self.session.turns) - keep_tail, checkpoint)
        self.session.token_counter += self.budget.estimate(summary)
        self.compactions += 1
        _log.info(
            "Compacted %d turns; context now %d tokens", len(to_summarize), self.estimate()
        )
        return True

    async def prepare_outbound(self, preamble: str = "") -> list[Message]:
        """Build the next prompt, compacting first if armed.

        Raises:
            UnresolvedToolCallError: An assistant turn still has a call without result.
        """
        for turn in self.active_turns():
            if turn.unresolved:
                raise UnresolvedToolCallError(
                    f"Tool call {turn.unresolved[0].call.name} has no result yet"
                )

        self.set_preamble(preamble)
        if self._armed:
            await self.compact()

        messages = []
        if preamble:
            messages.append(Message(Role.SYSTEM, preamble))
        if self.session.memory.strip():
            messages.append(Message(Role.SYSTEM, MEMORY_HEADER + self.session.memory.strip()))

        for turn in self.active_turns():
            if turn.checkpoint:
                messages.append(Message(Role.SYSTEM, CHECKPOINT_HEADER + turn.content))
            elif turn.role is TurnRole.USER:
                if not turn.cancelled:
                    messages.append(Message(Role.USER, turn.content))
            elif turn.role is TurnRole.ASSISTANT:
                messages.append(Message(Role.ASSISTANT, turn.content))
            elif turn.role is TurnRole.TOOL:
                # Tool results go back in the user slot of the wire protocol
                messages.append(Message(Role.USER, turn.content))
            elif not turn.error:
                messages.append(Message(Role.SYSTEM, turn.content))
        return messages
