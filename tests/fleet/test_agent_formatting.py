"""Unit tests for agent transcript formatting."""

import json

import pytest

from src.fleet.runner.formatting import (
    MAX_COMMAND_LENGTH,
    MAX_TEXT_LENGTH,
    format_agent_event,
    format_tool_detail,
    parse_event_line,
    truncate,
)


def _assistant(*blocks):
    return {"type": "assistant", "message": {"content": list(blocks)}}


class TestParseEventLine:
    def test_object(self):
        assert parse_event_line('{"type": "result"}\n') == {"type": "result"}

    @pytest.mark.parametrize("line", ["", "   \n", "not json", "[1, 2]", "42", '"text"'])
    def test_noise_is_skipped(self, line):
        assert parse_event_line(line) is None


class TestTruncate:
    def test_short_text_unchanged(self):
        assert truncate("abc", 3) == "abc"

    def test_long_text_marked(self):
        assert truncate("abcdef", 3) == "abc..."


class TestToolDetail:
    @pytest.mark.parametrize(
        "name, tool_input, expected",
        [
            ("Read", {"file_path": "/srv/app/README.md"}, "→ /srv/app/README.md"),
            ("Write", {"file_path": "plan.md"}, "→ plan.md"),
            ("Edit", {"file_path": "main.swift"}, "→ main.swift"),
            ("Glob", {"pattern": "**/*.swift"}, "→ **/*.swift"),
            ("Grep", {"pattern": "TODO"}, '→ "TODO"'),
            ("Bash", {"command": "bd list"}, "→ bd list"),
        ],
    )
    def test_known_tools(self, name, tool_input, expected):
        assert format_tool_detail(name, tool_input) == expected

    def test_long_command_truncated(self):
        detail = format_tool_detail("Bash", {"command": "x" * 150})
        assert detail == "→ " + "x" * MAX_COMMAND_LENGTH + "..."

    def test_unknown_tool_has_no_detail(self):
        assert format_tool_detail("WebSearch", {"query": "habit apps"}) == ""

    def test_missing_field_has_no_detail(self):
        assert format_tool_detail("Read", {}) == ""

    def test_non_dict_input(self):
        assert format_tool_detail("Read", "README.md") == ""


class TestFormatAgentEvent:
    def test_text_block(self):
        lines = format_agent_event(
            _assistant({"type": "text", "text": "Reading the report"}), "14:02:11"
        )
        assert lines == ["[14:02:11] THINKING: Reading the report"]

    def test_long_text_truncated(self):
        lines = format_agent_event(_assistant({"type": "text", "text": "y" * 400}), "t")
        assert lines == ["[t] THINKING: " + "y" * MAX_TEXT_LENGTH + "..."]

    def test_tool_use_block(self):
        block = {"type": "tool_use", "name": "Read", "input": {"file_path": "a.md"}}
        assert format_agent_event(_assistant(block), "t") == ["[t] TOOL: Read → a.md"]

    def test_tool_use_without_detail(self):
        block = {"type": "tool_use", "name": "WebSearch", "input": {"query": "x"}}
        assert format_agent_event(_assistant(block), "t") == ["[t] TOOL: WebSearch"]

    def test_mixed_blocks_keep_order(self):
        event = _assistant(
            {"type": "text", "text": "First"},
            {"type": "tool_use", "name": "Bash", "input": {"command": "ls"}},
            {"type": "text", "text": ""},
        )
        assert format_agent_event(event, "t") == [
            "[t] THINKING: First",
            "[t] TOOL: Bash → ls",
        ]

    def test_result_with_cost(self):
        lines = format_agent_event({"type": "result", "cost_usd": 0.48213}, "t")
        assert lines == ["[t] RESULT: Agent finished ($0.4821)"]

    def test_result_with_total_cost(self):
        lines = format_agent_event({"type": "result", "total_cost_usd": 1.5}, "t")
        assert lines == ["[t] RESULT: Agent finished ($1.5000)"]

    def test_result_without_cost(self):
        assert format_agent_event({"type": "result"}, "t") == ["[t] RESULT: Agent finished"]

    @pytest.mark.parametrize(
        "event",
        [
            {"type": "system", "subtype": "init"},
            {"type": "user", "message": {"content": []}},
            {"type": "assistant", "message": "not a dict"},
            {"type": "assistant"},
        ],
    )
    def test_other_events_produce_nothing(self, event):
        assert format_agent_event(event, "t") == []

    def test_parsed_stream_line(self):
        raw = json.dumps(_assistant({"type": "text", "text": "Hello"}))
        assert format_agent_event(parse_event_line(raw), "09:00:00") == [
            "[09:00:00] THINKING: Hello"
        ]
