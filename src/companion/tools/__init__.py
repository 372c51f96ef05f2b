"""Tool registry, execution pipeline and built-in tools."""

from companion.tools.builtins import BuiltinTool, create_builtin_tools
from companion.tools.executor import (
    Gate,
    GateAction,
    GateDecision,
    PreparedCall,
    ToolExecutor,
)
from companion.tools.parser import (
    format_tool_docs,
    format_tool_result,
    parse_tool_calls,
)
from companion.tools.registry import ToolRegistry
from companion.tools.safety import SafetyPolicy
from companion.tools.types import (
    Classification,
    Danger,
    FailureKind,
    ToolCall,
    ToolDescriptor,
    ToolHandler,
    ToolResult,
)
from companion.tools.workspace import Workspace

__all__ = [
    "BuiltinTool",
    "Classification",
    "Danger",
    "FailureKind",
    "Gate",
    "GateAction",
    "GateDecision",
    "PreparedCall",
    "SafetyPolicy",
    "ToolCall",
    "ToolDescriptor",
    "ToolExecutor",
    "ToolHandler",
    "ToolRegistry",
    "ToolResult",
    "Workspace",
    "create_builtin_tools",
    "format_tool_docs",
    "format_tool_result",
    "parse_tool_calls",
]
