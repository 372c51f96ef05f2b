"""Companion: terminal coding agent with gated tools and compacting context."""

__version__ = "0.1.0"

# Public API
from companion.config import Config, get_config, load_config
from companion.core.llm import LiteLLMProvider, LLMProvider, Message, RetryingTransport, Role
from companion.errors import (
    AuthError,
    CompanionError,
    SessionBusyError,
    TerminalError,
    TransportError,
)
from companion.mcp import ExternalToolClient, MCPConnectionStatus
from companion.session import (
    ContextManager,
    Mode,
    ModeController,
    OutcomeStatus,
    Phase,
    Session,
    SessionUpdate,
    TurnOutcome,
    UpdateKind,
    create_controller,
)
from companion.tools import ToolExecutor, ToolRegistry, ToolResult

__all__ = [
    # Main entry points
    "ModeController",
    "create_controller",
    # Config
    "Config",
    "get_config",
    "load_config",
    # Model access
    "LLMProvider",
    "LiteLLMProvider",
    "Message",
    "RetryingTransport",
    "Role",
    # Session
    "ContextManager",
    "Mode",
    "OutcomeStatus",
    "Phase",
    "Session",
    "SessionUpdate",
    "TurnOutcome",
    "UpdateKind",
    # Tools
    "ExternalToolClient",
    "MCPConnectionStatus",
    "ToolExecutor",
    "ToolRegistry",
    "ToolResult",
    # Errors
    "AuthError",
    "CompanionError",
    "SessionBusyError",
    "TerminalError",
    "TransportError",
]
