"""Tests for decoding wire lines into stream events."""

from __future__ import annotations

import json

import pytest

from converse_core.stream.events import (
    ContentBlockDelta,
    ContentBlockStart,
    ContentBlockStop,
    ExceptionEvent,
    MalformedEvent,
    MessageStart,
    MessageStop,
    StreamMetadata,
    ToolUseStart,
    parse_event,
)


class TestParseEvent:
    """Well-formed lines become typed events."""

    def test_text_delta(self) -> None:
        """A text delta carries its index and text."""
        line = json.dumps({"contentBlockDelta": {"contentBlockIndex": 2, "delta": {"text": "Hi"}}})
        assert parse_event(line) == ContentBlockDelta(index=2, text="Hi")

    def test_sse_prefix_is_stripped(self) -> None:
        """Lines framed as server-sent events decode the same way."""
        line = 'data: {"contentBlockStop": {"contentBlockIndex": 0}}'
        assert parse_event(line) == ContentBlockStop(index=0)

    def test_tool_use_start(self) -> None:
        """A tool-use block start announces name and id."""
        line = json.dumps(
            {
                "contentBlockStart": {
                    "contentBlockIndex": 1,
                    "start": {"toolUse": {"name": "calculator", "toolUseId": "tu-1"}},
                },
            },
        )
        assert parse_event(line) == ContentBlockStart(
            index=1,
            kind="tool_use",
            tool_use=ToolUseStart(name="calculator", tool_use_id="tu-1"),
        )

    def test_plain_block_start_is_text(self) -> None:
        """A block start without a tool use opens a text block."""
        line = json.dumps({"contentBlockStart": {"contentBlockIndex": 0, "start": {}}})
        assert parse_event(line) == ContentBlockStart(index=0, kind="text")

    def test_tool_input_delta(self) -> None:
        """Tool input arrives as a raw string fragment."""
        line = json.dumps(
            {"contentBlockDelta": {"contentBlockIndex": 1, "delta": {"toolUse": {"input": '{"a": '}}}},
        )
        assert parse_event(line) == ContentBlockDelta(index=1, tool_use_input_chunk='{"a": ')

    def test_message_start_and_stop(self) -> None:
        """Message boundaries carry role and stop reason."""
        assert parse_event('{"messageStart": {"role": "assistant"}}') == MessageStart("assistant")
        assert parse_event('{"messageStop": {"stopReason": "tool_use"}}') == MessageStop("tool_use")

    def test_exception_event(self) -> None:
        """Keys ending in Exception are in-band backend errors."""
        line = json.dumps({"throttlingException": {"message": "slow down"}})
        assert parse_event(line) == ExceptionEvent(kind="throttlingException", message="slow down")

    def test_metadata(self) -> None:
        """Usage metadata is decoded."""
        line = json.dumps(
            {
                "metadata": {
                    "usage": {"inputTokens": 10, "outputTokens": 5, "totalTokens": 15},
                    "metrics": {"latencyMs": 120},
                },
            },
        )
        assert parse_event(line) == StreamMetadata(
            input_tokens=10,
            output_tokens=5,
            total_tokens=15,
            latency_ms=120,
        )


class TestMalformedLines:
    """Anything that cannot be understood becomes a MalformedEvent."""

    @pytest.mark.parametrize(
        "line",
        [
            "",
            "   ",
            "data:",
            "{not json",
            "[1, 2, 3]",
            "{}",
            '{"somethingElse": {}}',
            '{"contentBlockDelta": "oops"}',
            '{"contentBlockDelta": {"contentBlockIndex": "0", "delta": {"text": "x"}}}',
            '{"contentBlockStop": {"contentBlockIndex": true}}',
            '{"contentBlockDelta": {"contentBlockIndex": 0, "delta": {}}}',
            '{"contentBlockStart": {"contentBlockIndex": 0, "start": {"toolUse": {}}}}',
        ],
    )
    def test_never_raises(self, line: str) -> None:
        """Decoding returns a MalformedEvent instead of raising."""
        event = parse_event(line)
        assert isinstance(event, MalformedEvent)
        assert event.raw == line
        assert event.reason
