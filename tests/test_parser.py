"""Tests for the tool-call wire format."""

from __future__ import annotations

from companion.tools.parser import (
    format_tool_docs,
    format_tool_result,
    parse_tool_calls,
    strip_tool_calls,
)
from companion.tools.types import FailureKind, ToolCall, ToolDescriptor, ToolResult
from tests.utils import tool_call_block


class TestParseToolCalls:
    def test_single_call(self) -> None:
        calls = parse_tool_calls("Let me look.\n" + tool_call_block("read_file", path="a.py"))
        assert len(calls) == 1
        assert calls[0].name == "read_file"
        assert calls[0].arguments == {"path": "a.py"}

    def test_calls_keep_response_order(self) -> None:
        text = "\n".join(
            [
                tool_call_block("write_file", path="a.py", content="x"),
                "then",
                tool_call_block("execute_command", command="pytest"),
            ]
        )
        assert [c.name for c in parse_tool_calls(text)] == ["write_file", "execute_command"]

    def test_multiline_value_drops_framing_newlines(self) -> None:
        text = (
            "<tool_call>\n<name>write_file</name>\n<params>\n<path>a.py</path>\n"
            "<content>\nline 1\nline 2\n</content>\n</params>\n</tool_call>"
        )
        assert parse_tool_calls(text)[0].arguments["content"] == "line 1\nline 2"

    def test_block_without_name_is_skipped(self) -> None:
        assert parse_tool_calls("<tool_call><params></params></tool_call>") == []

    def test_no_params(self) -> None:
        calls = parse_tool_calls("<tool_call><name>list_directory</name></tool_call>")
        assert calls[0].arguments == {}

    def test_plain_text(self) -> None:
        assert parse_tool_calls("Nothing to do here.") == []

    def test_each_call_gets_an_id(self) -> None:
        calls = parse_tool_calls(tool_call_block("a") + tool_call_block("b"))
        assert calls[0].call_id != calls[1].call_id


class TestStripToolCalls:
    def test_removes_blocks(self) -> None:
        text = "Before\n" + tool_call_block("read_file", path="x") + "\nAfter"
        assert strip_tool_calls(text) == "Before\n\nAfter"


class TestFormatToolResult:
    def test_success(self) -> None:
        text = format_tool_result(ToolCall("read_file"), ToolResult.ok("content"))
        assert "<name>read_file</name>" in text
        assert "<success>true</success>" in text
        assert "<kind>" not in text
        assert "content" in text

    def test_failure_carries_kind(self) -> None:
        result = ToolResult.fail(FailureKind.NOT_PERMITTED, "no")
        text = format_tool_result(ToolCall("write_file"), result)
        assert "<success>false</success>" in text
        assert "<kind>not_permitted</kind>" in text


class TestFormatToolDocs:
    def test_lists_tools_and_sources(self) -> None:
        docs = format_tool_docs(
            [
                ToolDescriptor(
                    "read_file",
                    "Read a file.",
                    {"type": "object", "properties": {"path": {"type": "string"}}, "required": ["path"]},
                ),
                ToolDescriptor("fetch", "Fetch a URL.", source="web"),
            ]
        )
        assert "### read_file" in docs
        assert "<path>...</path>" in docs
        assert "### fetch (from web)" in docs
