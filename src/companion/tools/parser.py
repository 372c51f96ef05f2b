"""Tool-call wire format between the model and the runtime.

The model asks for tools with XML-ish blocks::

    <tool_call>
    <name>read_file</name>
    <params>
    <path>src/main.py</path>
    </params>
    </tool_call>

and receives ``<tool_result>`` blocks back. Parameter values are raw text;
the executor coerces them to the schema's types.
"""

from __future__ import annotations

import json
import re
from collections.abc import Iterable
from typing import Any

from companion.tools.types import ToolCall, ToolDescriptor, ToolResult

_TOOL_CALL_RE = re.compile(r"<tool_call>(.*?)</tool_call>", re.DOTALL)
_NAME_RE = re.compile(r"<name>\s*(.*?)\s*</name>", re.DOTALL)
_PARAMS_RE = re.compile(r"<params>(.*?)</params>", re.DOTALL)
_PARAM_RE = re.compile(r"<([A-Za-z_][\w-]*)>(.*?)</\1>", re.DOTALL)


def _strip_block_newlines(value: str) -> str:
    # "<content>\nbody\n</content>" carries body, not the framing newlines
    if value.startswith("\n"):
        value = value[1:]
    if value.endswith("\n"):
        value = value[:-1]
    return value


def parse_tool_calls(text: str) -> list[ToolCall]:
    """Extract tool calls in the order they appear. Blocks without a name are skipped."""
    calls = []
    for block in _TOOL_CALL_RE.finditer(text):
        body = block.group(1)
        name_match = _NAME_RE.search(body)
        if not name_match or not name_match.group(1):
            continue
        arguments: dict[str, Any] = {}
        params_match = _PARAMS_RE.search(body)
        if params_match:
            for param in _PARAM_RE.finditer(params_match.group(1)):
                arguments[param.group(1)] = _strip_block_newlines(param.group(2))
        calls.append(ToolCall(name=name_match.group(1), arguments=arguments))
    return calls


def strip_tool_calls(text: str) -> str:
    """Response text with tool-call blocks removed (for display)."""
    return _TOOL_CALL_RE.sub("", text).strip()


def contains_marker(text: str, marker: str) -> bool:
    return marker in text


def format_tool_result(call: ToolCall, result: ToolResult) -> str:
    """Render one result the way the model expects it."""
    lines = [
        "<tool_result>",
        f"<name>{call.name}</name>",
        f"<success>{str(result.success).lower()}</success>",
    ]
    if result.kind is not None:
        lines.append(f"<kind>{result.kind.value}</kind>")
    lines.extend(["<output>", result.output, "</output>", "</tool_result>"])
    return "\n".join(lines)


def _example_params(descriptor: ToolDescriptor) -> str:
    properties = descriptor.parameters.get("properties", {})
    required = descriptor.parameters.get("required", list(properties))
    lines = [f"<{key}>...</{key}>" for key in properties if key in required]
    return "\n".join(lines)


def format_tool_docs(descriptors: Iterable[ToolDescriptor]) -> str:
    """Tool protocol section of the runtime preamble."""
    sections = [
        "## Available Tools",
        "",
        "Call tools by including tool_call blocks in your response:",
        "",
        "<tool_call>\n<name>TOOL_NAME</name>\n<params>\n<arg>value</arg>\n</params>\n</tool_call>",
    ]
    for descriptor in descriptors:
        sections.append("")
        header = f"### {descriptor.name}"
        if descriptor.is_external:
            header += f" (from {descriptor.source})"
        sections.append(header)
        sections.append(descriptor.description)
        properties = descriptor.parameters.get("properties")
        if properties:
            sections.append("Parameters: " + json.dumps(properties, sort_keys=True))
        example = _example_params(descriptor)
        if example:
            sections.append(
                f"<tool_call>\n<name>{descriptor.name}</name>\n<params>\n{example}\n</params>\n</tool_call>"
            )
    sections.extend(
        [
            "",
            "## Rules",
            "1. File access is limited to the project directory",
            "2. You can make multiple tool calls in one response; they run in order",
            "3. After tool calls you receive tool_result blocks with the outputs",
            "4. Continue your work based on the tool results",
        ]
    )
    return "\n".join(sections)
