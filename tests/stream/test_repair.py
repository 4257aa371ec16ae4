"""Tests for best-effort repair of truncated tool inputs."""

from __future__ import annotations

import json

import pytest

from converse_core.errors import ToolInputRepairError
from converse_core.stream.repair import parse_tool_input, repair_tool_input


class TestKnownShapes:
    """The two tool shapes observed to arrive broken."""

    def test_unterminated_content(self) -> None:
        """A write cut inside the content value keeps both keys."""
        repaired = repair_tool_input('{"path": "/tmp/file.txt", "content": "unterminated')
        value = json.loads(repaired)
        assert value["path"] == "/tmp/file.txt"
        assert value["content"] == "unterminated"

    def test_unterminated_path(self) -> None:
        """A read cut inside the path value parses to the intended object."""
        repaired = repair_tool_input('{"mode": "single", "path": "/tmp/file.txt')
        assert json.loads(repaired) == {"mode": "single", "path": "/tmp/file.txt"}

    def test_content_with_raw_quotes(self) -> None:
        """Unescaped quotes inside the content value are salvaged."""
        repaired = repair_tool_input('{"path": "/a.py", "content": "print("hi")')
        assert json.loads(repaired) == {"path": "/a.py", "content": 'print("hi")'}

    def test_content_with_raw_newline(self) -> None:
        """Raw newlines inside the content value are salvaged."""
        repaired = repair_tool_input('{"path": "/a.txt", "content": "line1\nline2"}')
        assert json.loads(repaired) == {"path": "/a.txt", "content": "line1\nline2"}


class TestTruncation:
    """Generic truncation shapes are closed with minimal tokens."""

    @pytest.mark.parametrize(
        ("fragment", "expected"),
        [
            ("", {}),
            ("   ", {}),
            ('{"a": 1,', {"a": 1}),
            ('{"a": 1, "b"', {"a": 1, "b": None}),
            ('{"a":', {"a": None}),
            ('{"pa', {"pa": None}),
            ('{"a": tru', {"a": True}),
            ('{"a": fa', {"a": False}),
            ('{"a": nu', {"a": None}),
            ('{"a": 1.', {"a": 1}),
            ('{"a": 2e', {"a": 2}),
            ('{"a": -', {"a": None}),
            ('{"a": [1, 2', {"a": [1, 2]}),
            ('{"a": {"b": [true, {"c": "d', {"a": {"b": [True, {"c": "d"}]}}),
            ('{"a": "x\\', {"a": "x"}),
            ('{"a": "caf\\u00', {"a": "caf"}),
        ],
    )
    def test_closes_fragment(self, fragment: str, expected: dict) -> None:
        """The repaired string parses to the value the fragment was heading for."""
        assert json.loads(repair_tool_input(fragment)) == expected

    def test_valid_input_is_unchanged(self) -> None:
        """Input that already parses is returned as-is."""
        text = '{"a": [1, 2, {"b": null}]}'
        assert repair_tool_input(text) == text


class TestParseToolInput:
    """Parsing with repair as the fallback."""

    def test_empty_is_empty_object(self) -> None:
        """A tool called without arguments gets an empty object."""
        assert parse_tool_input("") == {}

    def test_valid_object(self) -> None:
        """Valid JSON objects parse directly."""
        assert parse_tool_input('{"x": 1}') == {"x": 1}

    def test_truncated_object_is_repaired(self) -> None:
        """Truncated objects are repaired before parsing."""
        assert parse_tool_input('{"query": "weather in Par') == {"query": "weather in Par"}

    def test_non_object_raises(self) -> None:
        """Tool inputs must be objects."""
        with pytest.raises(ToolInputRepairError) as exc_info:
            parse_tool_input("[1, 2]")
        assert exc_info.value.raw == "[1, 2]"

    def test_unrepairable_raises(self) -> None:
        """Shapes outside the handled set fail loudly."""
        with pytest.raises(ToolInputRepairError):
            parse_tool_input("not json at all")
