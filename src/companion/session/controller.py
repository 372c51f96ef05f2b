"""Top-level state machine over ASK / PLAN / CODE / AUTO.

One turn at a time runs as an inner task (``_active``) so ``cancel`` can
interrupt it at any suspension point:

- AWAITING_MODEL: the response is discarded and the prompting turn is
  marked cancelled.
- AWAITING_CONFIRMATION: that call and every later call of the same
  response get ``cancelled`` results.
- AWAITING_TOOL: the running tool is shielded and finishes (bounded by its
  own timeout); its result is kept, later calls get ``cancelled``.

Tool calls of one response always resolve in order, one at a time.
"""

from __future__ import annotations

import asyncio
import copy
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, replace
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol

from companion.config.schema import AgentConfig
from companion.errors import SessionBusyError, TerminalError
from companion.session.events import SessionUpdate, UpdateKind, UpdateListener
from companion.session.intents import (
    Cancel,
    CycleMode,
    EditMemory,
    ExitAndSave,
    ExitWithoutSaving,
    Intent,
    NewSession,
    Reindex,
    Resume,
    SetMode,
    Submit,
)
from companion.session.models import Mode, Phase, Session, ToolExchange, Turn, TurnRole
from companion.session.modes import ModePolicy, policy_for
from companion.tools.executor import GateAction, GateDecision, PreparedCall, ToolExecutor
from companion.tools.parser import format_tool_docs, format_tool_result, parse_tool_calls
from companion.tools.types import ToolResult

if TYPE_CHECKING:
    from companion.core.llm.transport import RetryingTransport
    from companion.mcp.client import ExternalToolClient
    from companion.session.context import ContextManager
    from companion.session.memory import MemoryEditor, ProjectMemory
    from companion.session.storage import SessionStore

_log = logging.getLogger("companion.session.controller")

SYSTEM_PROMPT = """\
You are Companion, a coding assistant working inside the user's project.
Use the tools to inspect and change the project. Keep answers focused."""

PROJECT_FILES_HEADER = "## Project files\n"

CONTINUE_PROMPT = (
    "Continue working on the task. When everything is done, reply with {marker}."
)

# Asked before a gated call runs; True means the user approved it
Confirmer = Callable[[PreparedCall], Awaitable[bool]]


class ProjectIndex(Protocol):
    """Project-content index, rebuilt only on request."""

    async def reindex(self) -> None: ...

    def build_context(self, max_tokens: int) -> str: ...


class OutcomeStatus(Enum):
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    ERROR = "error"
    ITERATION_LIMIT = "iteration_limit"  # AUTO hit max_auto_iterations
    ROUND_LIMIT = "round_limit"  # Other modes hit max_tool_rounds


@dataclass(frozen=True)
class TurnOutcome:
    status: OutcomeStatus
    reply: str = ""
    error: str | None = None
    model_requests: int = 0


@dataclass(frozen=True)
class SessionSnapshot:
    """Read-only copy of controller state for renderers."""

    session_id: str
    title: str
    mode: Mode
    phase: Phase
    turns: tuple[Turn, ...]
    token_counter: int
    context_tokens: int
    tool_names: tuple[str, ...]


class ModeController:
    """Drives turns through the model, the gate and the executor."""

    def __init__(
        self,
        *,
        transport: RetryingTransport,
        executor: ToolExecutor,
        context: ContextManager,
        config: AgentConfig | None = None,
        store: SessionStore | None = None,
        memory: ProjectMemory | None = None,
        confirmer: Confirmer | None = None,
        memory_editor: MemoryEditor | None = None,
        project_index: ProjectIndex | None = None,
        external_client: ExternalToolClient | None = None,
    ) -> None:
        self.transport = transport
        self.executor = executor
        self.context = context
        self.config = config or AgentConfig()
        self.store = store
        self.memory = memory
        self.confirmer = confirmer
        self.memory_editor = memory_editor
        self.project_index = project_index
        self.external_client = external_client
        self.phase = Phase.IDLE
        self._index_context = ""
        self._active: asyncio.Task[TurnOutcome] | None = None
        self._listeners: list[UpdateListener] = []
        self._refresh_tools()

    # -- state ---------------------------------------------------------------

    @property
    def session(self) -> Session:
        return self.context.session

    @property
    def busy(self) -> bool:
        return self._active is not None and not self._active.done()

    def add_listener(self, listener: UpdateListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unregister() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unregister

    def _publish(self, kind: UpdateKind, message: str = "", **data: Any) -> None:
        update = SessionUpdate(kind, message, data)
        for listener in list(self._listeners):
            try:
                listener(update)
            except Exception:
                _log.exception("Session listener failed on %s", kind.value)

    def _set_phase(self, phase: Phase) -> None:
        if phase is not self.phase:
            self.phase = phase
            self._publish(UpdateKind.PHASE_CHANGED, phase.value)

    def snapshot(self) -> SessionSnapshot:
        session = self.session
        return SessionSnapshot(
            session_id=session.session_id,
            title=session.title,
            mode=session.mode,
            phase=self.phase,
            turns=tuple(copy.deepcopy(session.turns)),
            token_counter=session.token_counter,
            context_tokens=self.context.estimate(),
            tool_names=tuple(d.name for d in session.tools),
        )

    def _refresh_tools(self) -> None:
        self.session.tools = self.executor.registry.descriptors()

    # -- modes ---------------------------------------------------------------

    def set_mode(self, mode: Mode) -> None:
        if self.busy:
            raise SessionBusyError("Cannot change mode while a turn is running")
        session = self.session
        if mode is session.mode:
            return
        if mode is Mode.AUTO:
            session.previous_mode = session.mode
        else:
            session.previous_mode = None
        session.mode = mode
        _log.info("Mode set to %s", mode.value)
        self._publish(UpdateKind.MODE_CHANGED, mode.label, mode=mode)

    def cycle_mode(self) -> Mode:
        self.set_mode(self.session.mode.next())
        return self.session.mode

    def _leave_auto(self) -> None:
        session = self.session
        if session.mode is not Mode.AUTO:
            return
        session.mode = session.previous_mode or Mode.CODE
        session.previous_mode = None
        self._publish(UpdateKind.MODE_CHANGED, session.mode.label, mode=session.mode)

    # -- lifecycle -----------------------------------------------------------

    async def start(self) -> None:
        """Load project memory, index the project and discover external tools."""
        if self.memory is not None:
            self.context.set_memory(self.memory.load())
        await self._reindex_project()
        if self.external_client is not None:
            await self.external_client.start(self.executor.registry)
        self._refresh_tools()

    async def close(self) -> None:
        if self.busy:
            await self.cancel_and_wait()
        if self.external_client is not None:
            await self.external_client.close()

    async def handle(self, intent: Intent) -> Any:
        """Dispatch one user intent."""
        if isinstance(intent, Submit):
            return await self.submit(intent.text)
        if isinstance(intent, Cancel):
            return self.cancel()
        if isinstance(intent, SetMode):
            return self.set_mode(intent.mode)
        if isinstance(intent, CycleMode):
            return self.cycle_mode()
        if isinstance(intent, NewSession):
            return self.new_session()
        if isinstance(intent, Resume):
            return self.resume(intent.session_id)
        if isinstance(intent, Reindex):
            return await self.reindex()
        if isinstance(intent, EditMemory):
            return await self.edit_memory()
        if isinstance(intent, ExitAndSave):
            await self.cancel_and_wait()
            path = self.save()
            await self.close()
            return path
        if isinstance(intent, ExitWithoutSaving):
            return await self.close()
        raise TypeError(f"Unknown intent: {intent!r}")

    def _ensure_idle(self) -> None:
        if self.busy:
            raise SessionBusyError("A turn is already running")

    def new_session(self) -> Session:
        self._ensure_idle()
        session = Session(mode=self.session.mode, memory=self.session.memory)
        self.context.reset(session)
        self._refresh_tools()
        self._publish(UpdateKind.SESSION_CHANGED, session.title, session_id=session.session_id)
        return session

    def resume(self, session_id: str) -> Session:
        """Load a saved session; outbound prompts restart from its latest checkpoint."""
        self._ensure_idle()
        if self.store is None:
            raise RuntimeError("No session store configured")
        session = self.store.load(session_id)
        session.memory = self.session.memory
        self.context.reset(session)
        self._refresh_tools()
        self._publish(UpdateKind.SESSION_CHANGED, session.title, session_id=session.session_id)
        return session

    def save(self) -> Path | None:
        if self.store is None or not self.session.turns:
            return None
        return self.store.save(self.session)

    async def _reindex_project(self) -> None:
        if self.project_index is None:
            return
        await self.project_index.reindex()
        if self.config.index_context_tokens > 0:
            self._index_context = self.project_index.build_context(
                self.config.index_context_tokens
            )

    async def reindex(self) -> None:
        self._ensure_idle()
        await self._reindex_project()
        if self.external_client is not None:
            await self.external_client.reconnect(self.executor.registry)
        self._refresh_tools()

    async def edit_memory(self) -> str:
        self._ensure_idle()
        if self.memory is None or self.memory_editor is None:
            raise RuntimeError("No memory editor configured")
        text = await self.memory.edit(self.memory_editor)
        self.context.set_memory(text)
        return text

    # -- turns ---------------------------------------------------------------

    async def submit(self, text: str) -> TurnOutcome:
        """Run one user turn to completion (or cancellation).

        Raises:
            SessionBusyError: Another turn is in flight.
        """
        self._ensure_idle()
        self._active = asyncio.create_task(self._run_turn(text))
        try:
            return await self._active
        finally:
            self._active = None
            self._set_phase(Phase.IDLE)

    def cancel(self) -> bool:
        """Request cancellation of the running turn. False if idle."""
        if not self.busy:
            return False
        assert self._active is not None
        _log.info("Cancelling turn during %s", self.phase.value)
        self._active.cancel()
        return True

    async def cancel_and_wait(self) -> None:
        task = self._active
        if task is None or not self.cancel():
            return
        try:
            await task
        except asyncio.CancelledError:
            pass

    def _preamble(self, policy: ModePolicy) -> str:
        parts = [SYSTEM_PROMPT]
        if policy.instructions:
            parts.append(policy.instructions)
        if self._index_context:
            parts.append(PROJECT_FILES_HEADER + self._index_context)
        parts.append(format_tool_docs(self.session.tools))
        return "\n\n".join(parts)

    async def _run_turn(self, text: str) -> TurnOutcome:
        session = self.session
        policy = policy_for(session.mode, termination_marker=self.config.termination_marker)
        auto = session.mode is Mode.AUTO
        marker = self.config.termination_marker

        prompt = Turn(TurnRole.USER, text)
        self.context.append(prompt)
        if len([t for t in session.turns if t.role is TurnRole.USER]) == 1:
            session.auto_title()

        requests = 0
        reply = ""
        try:
            while True:
                requests += 1
                self._set_phase(Phase.AWAITING_MODEL)
                compactions = self.context.compactions
                try:
                    messages = await self.context.prepare_outbound(self._preamble(policy))
                    if self.context.compactions > compactions:
                        self._publish(UpdateKind.COMPACTION, "Context compacted")
                    result = await self.transport.execute(messages)
                except asyncio.CancelledError:
                    _uncancel()
                    prompt.cancelled = True
                    self._publish(UpdateKind.CANCELLED, "Cancelled while waiting for the model")
                    return TurnOutcome(OutcomeStatus.CANCELLED, reply, model_requests=requests)
                except TerminalError as e:
                    _log.error("Model request failed: %s", e)
                    self.context.append(Turn(TurnRole.SYSTEM, f"Request failed: {e}", error=True))
                    self._publish(UpdateKind.ERROR, str(e), attempts=e.attempts)
                    return TurnOutcome(
                        OutcomeStatus.ERROR, reply, error=str(e), model_requests=requests
                    )

                reply = result.content
                if result.truncated:
                    _log.warning("Model reply hit max_tokens and was cut off")
                calls = parse_tool_calls(reply)
                assistant = Turn(
                    TurnRole.ASSISTANT, reply, exchanges=[ToolExchange(c) for c in calls]
                )
                self.context.append(assistant)
                self._publish(UpdateKind.ASSISTANT_MESSAGE, reply, turn_id=assistant.turn_id)

                if calls:
                    cancelled = await self._resolve_calls(assistant, policy)
                    # A failed external server withdraws its tools
                    self._refresh_tools()
                    results = "\n\n".join(
                        format_tool_result(ex.call, ex.result)
                        for ex in assistant.exchanges
                        if ex.result is not None
                    )
                    prompt = Turn(TurnRole.TOOL, results)
                    self.context.append(prompt)
                    if cancelled:
                        assistant.cancelled = True
                        self._publish(UpdateKind.CANCELLED, "Cancelled during tool execution")
                        return TurnOutcome(OutcomeStatus.CANCELLED, reply, model_requests=requests)

                finished = marker in reply
                if auto:
                    if finished:
                        return TurnOutcome(OutcomeStatus.COMPLETED, reply, model_requests=requests)
                    if requests >= self.config.max_auto_iterations:
                        message = f"AUTO stopped after {requests} iterations"
                        _log.warning(message)
                        self._publish(UpdateKind.ERROR, message)
                        return TurnOutcome(
                            OutcomeStatus.ITERATION_LIMIT, reply, model_requests=requests
                        )
                    if not calls:
                        prompt = Turn(TurnRole.USER, CONTINUE_PROMPT.format(marker=marker))
                        self.context.append(prompt)
                else:
                    if not calls or finished:
                        return TurnOutcome(OutcomeStatus.COMPLETED, reply, model_requests=requests)
                    if requests > self.config.max_tool_rounds:
                        return TurnOutcome(
                            OutcomeStatus.ROUND_LIMIT, reply, model_requests=requests
                        )
        finally:
            self._set_phase(Phase.IDLE)
            if auto:
                self._leave_auto()
            self._publish(UpdateKind.TURN_FINISHED)

    async def _resolve_calls(self, assistant: Turn, policy: ModePolicy) -> bool:
        """Resolve every call of ``assistant`` in order. Returns True if cancelled."""
        exchanges = assistant.exchanges
        for index, exchange in enumerate(exchanges):
            prepared = self.executor.prepare(exchange.call)
            self._publish(
                UpdateKind.TOOL_CALL,
                exchange.call.name,
                call=exchange.call,
                classification=prepared.classification,
            )

            decision = policy.decide(prepared) if prepared.ready else GateDecision.execute()
            if decision.action is GateAction.CONFIRM:
                self._set_phase(Phase.AWAITING_CONFIRMATION)
                try:
                    confirmed = await self._confirm(prepared)
                except asyncio.CancelledError:
                    _uncancel()
                    _cancel_remaining(exchanges[index:])
                    return True
                decision = replace(decision, confirmed=confirmed)

            self._set_phase(Phase.AWAITING_TOOL)
            run = asyncio.ensure_future(self.executor.run(prepared, decision))
            cancelled = False
            while True:
                try:
                    result = await asyncio.shield(run)
                    break
                except asyncio.CancelledError:
                    # The tool keeps running; wait for it and keep its result
                    _uncancel()
                    cancelled = True
            exchange.result = result
            self.context.refresh()
            self._publish(UpdateKind.TOOL_RESULT, exchange.call.name, call=exchange.call, result=result)
            if cancelled:
                _cancel_remaining(exchanges[index + 1 :])
                return True
        return False

    async def _confirm(self, prepared: PreparedCall) -> bool:
        if self.confirmer is None:
            _log.info("No confirmer; declining %s", prepared.call.name)
            return False
        return await self.confirmer(prepared)


def _cancel_remaining(exchanges: list[ToolExchange]) -> None:
    for exchange in exchanges:
        if exchange.result is None:
            exchange.result = ToolResult.cancelled()


def _uncancel() -> None:
    task = asyncio.current_task()
    if task is not None:
        task.uncancel()
