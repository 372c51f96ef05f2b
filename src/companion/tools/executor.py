"""Tool execution pipeline: resolve, validate, classify, gate, run, bound.

``prepare`` does everything that needs no decision from anyone: it resolves
the handler, validates arguments and computes the classification. The
caller then decides (mode policy, user confirmation) and hands the
decision to ``run``. ``execute`` chains the three for callers that have a
gate function.

Nothing a tool does escapes as an exception; every failure is a failed
``ToolResult`` with a ``FailureKind``.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

import jsonschema

from companion.errors import ExternalServerError, ToolExecutionError, ToolResolutionError
from companion.tools.registry import ToolRegistry
from companion.tools.types import (
    Classification,
    FailureKind,
    ToolCall,
    ToolHandler,
    ToolResult,
)

_log = logging.getLogger("companion.tools.executor")


class GateAction(Enum):
    """What the gate wants done with a prepared call."""

    EXECUTE = "execute"
    CONFIRM = "confirm"  # Execute only if the user said yes
    REJECT = "reject"
    SIMULATE = "simulate"  # Describe, do not run


@dataclass(frozen=True)
class GateDecision:
    action: GateAction
    confirmed: bool = False
    reason: str | None = None

    @classmethod
    def execute(cls) -> GateDecision:
        return cls(GateAction.EXECUTE)

    @classmethod
    def reject(cls, reason: str) -> GateDecision:
        return cls(GateAction.REJECT, reason=reason)


@dataclass
class PreparedCall:
    """A call that went through resolution, validation and classification.

    ``failure`` is set when the call must not run regardless of the gate.
    """

    call: ToolCall
    handler: ToolHandler | None = None
    arguments: dict[str, Any] | None = None
    failure: ToolResult | None = None

    @property
    def classification(self) -> Classification | None:
        return self.call.classification

    @property
    def ready(self) -> bool:
        return self.failure is None


Gate = Callable[[PreparedCall], Awaitable[GateDecision]]

_SCALAR_COERCIONS = {
    "integer": int,
    "number": float,
}


def _coerce_value(value: Any, schema: dict[str, Any]) -> Any:
    if not isinstance(value, str):
        return value
    kind = schema.get("type")
    if not isinstance(kind, str):
        # Union types ("array" or "string") are left to validation
        return value
    if kind in _SCALAR_COERCIONS:
        try:
            return _SCALAR_COERCIONS[kind](value.strip())
        except ValueError:
            return value
    if kind == "boolean":
        lowered = value.strip().lower()
        if lowered in ("true", "yes", "1"):
            return True
        if lowered in ("false", "no", "0"):
            return False
        return value
    if kind in ("array", "object"):
        try:
            return json.loads(value)
        except ValueError:
            return value
    return value


def coerce_arguments(arguments: dict[str, Any], schema: dict[str, Any]) -> dict[str, Any]:
    """Convert string values to the scalar types the schema declares."""
    properties = schema.get("properties") or {}
    return {
        key: _coerce_value(value, properties.get(key) or {}) for key, value in arguments.items()
    }


class ToolExecutor:
    """Runs tool calls through the registry with uniform failure handling."""

    def __init__(self, registry: ToolRegistry, *, output_limit: int = 50000) -> None:
        self._registry = registry
        self._output_limit = output_limit

    @property
    def registry(self) -> ToolRegistry:
        return self._registry

    def prepare(self, call: ToolCall) -> PreparedCall:
        """Resolve, validate and classify a call. Never raises for bad calls."""
        try:
            handler = self._registry.resolve(call.name)
        except ToolResolutionError as e:
            return PreparedCall(call, failure=ToolResult.fail(FailureKind.UNKNOWN_TOOL, str(e)))

        schema = handler.descriptor.parameters
        arguments = coerce_arguments(call.arguments, schema)
        try:
            jsonschema.validate(arguments, schema)
        except jsonschema.ValidationError as e:
            return PreparedCall(
                call,
                handler,
                failure=ToolResult.fail(
                    FailureKind.INVALID_ARGUMENTS, f"Invalid arguments for {call.name}: {e.message}"
                ),
            )
        except jsonschema.SchemaError as e:
            _log.warning("Tool %s has an invalid schema: %s", call.name, e.message)
            return PreparedCall(
                call,
                handler,
                failure=ToolResult.fail(
                    FailureKind.INVALID_ARGUMENTS, f"Tool {call.name} has an invalid schema"
                ),
            )

        try:
            classification = handler.classify(arguments)
        except Exception as e:
            _log.exception("Classifying %s failed", call.name)
            return PreparedCall(
                call,
                handler,
                failure=ToolResult.fail(FailureKind.DENIED, f"Could not classify call: {e}"),
            )
        call.classification = classification

        if classification.denied:
            return PreparedCall(
                call,
                handler,
                arguments,
                failure=ToolResult.fail(
                    FailureKind.DENIED, classification.reason or f"{call.name} is denied"
                ),
            )

        return PreparedCall(call, handler, arguments)

    async def run(self, prepared: PreparedCall, decision: GateDecision) -> ToolResult:
        """Apply a gate decision to a prepared call."""
        if prepared.failure is not None:
            return prepared.failure
        handler = prepared.handler
        arguments = prepared.arguments or {}
        name = prepared.call.name
        assert handler is not None

        if decision.action is GateAction.REJECT:
            return ToolResult.fail(
                FailureKind.NOT_PERMITTED, decision.reason or f"{name} is not permitted"
            )

        if decision.action is GateAction.SIMULATE:
            return await self._simulate(handler, name, arguments)

        classification = prepared.classification
        if decision.action is GateAction.CONFIRM and not decision.confirmed:
            return ToolResult.fail(FailureKind.CONFIRMATION_DECLINED, f"User declined {name}")
        if classification is not None and classification.requires_confirmation and not decision.confirmed:
            return ToolResult.fail(
                FailureKind.CONFIRMATION_DECLINED,
                f"{name} requires explicit confirmation ({classification.reason})",
            )

        return await self._invoke(handler, name, arguments)

    async def execute(self, call: ToolCall, gate: Gate | None = None) -> ToolResult:
        """Prepare, decide and run one call.

        Without a gate every ready call is executed, except confirm-required
        ones, which are declined.
        """
        prepared = self.prepare(call)
        if not prepared.ready:
            return await self.run(prepared, GateDecision.execute())
        decision = await gate(prepared) if gate is not None else GateDecision.execute()
        return await self.run(prepared, decision)

    async def _simulate(self, handler: ToolHandler, name: str, arguments: dict[str, Any]) -> ToolResult:
        try:
            description = await handler.describe(arguments)
        except Exception as e:
            _log.warning("Describing %s failed: %s", name, e)
            description = f"Would call {name} with {arguments!r}"
        return ToolResult(success=True, output=description, kind=FailureKind.SIMULATED).bounded(
            self._output_limit
        )

    async def _invoke(self, handler: ToolHandler, name: str, arguments: dict[str, Any]) -> ToolResult:
        _log.info("Executing tool %s", name)
        try:
            result = await handler.invoke(arguments)
        except ToolExecutionError as e:
            try:
                kind = FailureKind(e.kind)
            except ValueError:
                kind = FailureKind.EXECUTION_ERROR
            result = ToolResult.fail(kind, str(e))
        except ExternalServerError as e:
            result = ToolResult.fail(FailureKind.EXTERNAL_ERROR, str(e))
        except asyncio.TimeoutError:
            result = ToolResult.fail(FailureKind.TIMEOUT, f"{name} timed out")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            _log.exception("Tool %s raised", name)
            result = ToolResult.fail(FailureKind.EXECUTION_ERROR, f"{type(e).__name__}: {e}")

        if not result.success and result.kind is None:
            result.kind = FailureKind.EXECUTION_ERROR
        _log.debug("Tool %s finished success=%s", name, result.success)
        return result.bounded(self._output_limit)
