"""Exception taxonomy for the orchestration engine.

Only ``TerminalError`` (and its ``AuthError`` subclass) is meant to reach the
user as a failed turn. Everything raised inside a single tool call or a single
external server is converted into a failed ``ToolResult`` before it can leave
the executor.
"""

from __future__ import annotations


class CompanionError(Exception):
    """Base class for all Companion errors."""


class TransportError(CompanionError):
    """A retryable model transport failure (network, rate limit, 5xx).

    Providers and test doubles raise this to signal that the request may
    succeed if sent again.
    """

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class TerminalError(CompanionError):
    """The model request failed for good.

    Raised when a non-retryable failure occurs or every retry attempt was
    consumed.
    """

    def __init__(
        self,
        message: str,
        *,
        last_error: BaseException | None = None,
        attempts: int = 1,
    ) -> None:
        super().__init__(message)
        self.last_error = last_error
        self.attempts = attempts


class AuthError(TerminalError):
    """Authentication or authorization was rejected by the model API."""


class ToolResolutionError(CompanionError):
    """A tool call could not be resolved (unknown name, bad arguments)."""

    def __init__(self, message: str, *, kind: str) -> None:
        super().__init__(message)
        self.kind = kind


class ToolNameConflict(ToolResolutionError):
    """A descriptor name is already registered."""

    def __init__(self, name: str, existing_source: str) -> None:
        super().__init__(
            f"Tool '{name}' is already registered by {existing_source}",
            kind="name_conflict",
        )
        self.name = name
        self.existing_source = existing_source


class ToolExecutionError(CompanionError):
    """A tool failed while running (I/O error, timeout, non-zero exit)."""

    def __init__(self, message: str, *, kind: str = "execution_error") -> None:
        super().__init__(message)
        self.kind = kind


class ExternalServerError(CompanionError):
    """An external tool server failed to start, discover, or respond."""

    def __init__(self, server_name: str, message: str) -> None:
        super().__init__(f"{server_name}: {message}")
        self.server_name = server_name


class CompactionError(CompanionError):
    """Summary generation failed; compaction is skipped for this cycle."""


class SessionBusyError(CompanionError):
    """A turn is already in flight for this session."""


class SessionNotFoundError(CompanionError):
    """No persisted session exists for the requested identifier."""


class UnresolvedToolCallError(CompanionError):
    """An outbound prompt was requested while a tool call has no result."""
