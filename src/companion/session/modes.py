"""Per-mode gating of prepared tool calls.

Each mode is one policy class; the controller asks the policy for the
current mode what to do with every prepared call:

==========  ======================  ===========================
Mode        mutating / confirm-req  read-only
==========  ======================  ===========================
ASK         REJECT                  EXECUTE
PLAN        SIMULATE                EXECUTE
CODE        CONFIRM (unless rule)   EXECUTE
AUTO        EXECUTE / CONFIRM       EXECUTE
==========  ======================  ===========================

Confirm-required calls always end in CONFIRM or better (never a silent
EXECUTE); the executor enforces the same invariant independently.
"""

from __future__ import annotations

from companion.session.models import Mode
from companion.tools.executor import GateAction, GateDecision, PreparedCall
from companion.tools.types import Classification


class ModePolicy:
    """Base policy: run everything, confirm what must be confirmed."""

    mode: Mode
    instructions: str = ""

    def decide(self, prepared: PreparedCall) -> GateDecision:
        classification = prepared.classification or Classification()
        if classification.requires_confirmation:
            return GateDecision(GateAction.CONFIRM, reason=classification.reason)
        return GateDecision.execute()


class AskPolicy(ModePolicy):
    mode = Mode.ASK
    instructions = (
        "You are in ASK mode. Answer questions about the project. You may read, "
        "list and search files, but must not modify files or run commands."
    )

    def decide(self, prepared: PreparedCall) -> GateDecision:
        classification = prepared.classification or Classification()
        if classification.mutating or classification.requires_confirmation:
            return GateDecision.reject(f"{prepared.call.name} is not permitted in ASK mode")
        return GateDecision.execute()


class PlanPolicy(ModePolicy):
    mode = Mode.PLAN
    instructions = (
        "You are in PLAN mode. Investigate the project and produce a step-by-step "
        "plan. Changes you request are simulated and shown to the user, not applied."
    )

    def decide(self, prepared: PreparedCall) -> GateDecision:
        classification = prepared.classification or Classification()
        if classification.mutating:
            return GateDecision(GateAction.SIMULATE)
        return super().decide(prepared)


class CodePolicy(ModePolicy):
    mode = Mode.CODE
    instructions = (
        "You are in CODE mode. Make the requested changes with the tools. The user "
        "confirms each change before it is applied."
    )

    def decide(self, prepared: PreparedCall) -> GateDecision:
        classification = prepared.classification or Classification()
        if classification.requires_confirmation:
            return GateDecision(GateAction.CONFIRM, reason=classification.reason)
        if classification.mutating and not classification.preapproved:
            return GateDecision(GateAction.CONFIRM)
        return GateDecision.execute()


class AutoPolicy(ModePolicy):
    mode = Mode.AUTO

    def __init__(self, termination_marker: str = "<task_complete/>") -> None:
        self.instructions = (
            "You are in AUTO mode. Work autonomously with the tools until the task is "
            f"done, then reply with {termination_marker} on its own line. Dangerous "
            "commands still need the user's confirmation."
        )


def policy_for(mode: Mode, *, termination_marker: str = "<task_complete/>") -> ModePolicy:
    if mode is Mode.ASK:
        return AskPolicy()
    if mode is Mode.PLAN:
        return PlanPolicy()
    if mode is Mode.CODE:
        return CodePolicy()
    return AutoPolicy(termination_marker)
