"""Decoding of single wire lines into typed stream events.

The wire protocol is newline-delimited JSON where every line is an object
with exactly one event key, for example::

    {"contentBlockDelta": {"contentBlockIndex": 0, "delta": {"text": "Hi"}}}

Lines may carry an SSE ``data:`` prefix. Decoding never raises: anything that
cannot be understood becomes a `MalformedEvent` so the caller can skip it.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Literal

_SSE_PREFIX = "data:"
_EXCEPTION_SUFFIX = "Exception"


@dataclass(frozen=True)
class MessageStart:
    """The model started a new message."""

    role: str = "assistant"


@dataclass(frozen=True)
class ToolUseStart:
    """Name and id announced when a tool-use block opens."""

    name: str
    tool_use_id: str


@dataclass(frozen=True)
class ContentBlockStart:
    """A content block opened at ``index``."""

    index: int
    kind: Literal["text", "tool_use"] = "text"
    tool_use: ToolUseStart | None = None


@dataclass(frozen=True)
class ContentBlockDelta:
    """An incremental piece of a content block."""

    index: int
    text: str | None = None
    tool_use_input_chunk: str | None = None


@dataclass(frozen=True)
class ContentBlockStop:
    """The content block at ``index`` is complete."""

    index: int


@dataclass(frozen=True)
class MessageStop:
    """The model finished the message."""

    stop_reason: str


@dataclass(frozen=True)
class ExceptionEvent:
    """The backend reported an error in-band."""

    kind: str
    message: str


@dataclass(frozen=True)
class StreamMetadata:
    """Usage and latency reported at the end of a stream."""

    input_tokens: int | None = None
    output_tokens: int | None = None
    total_tokens: int | None = None
    latency_ms: int | None = None


@dataclass(frozen=True)
class MalformedEvent:
    """A line that could not be decoded."""

    raw: str
    reason: str


StreamEvent = (
    MessageStart
    | ContentBlockStart
    | ContentBlockDelta
    | ContentBlockStop
    | MessageStop
    | ExceptionEvent
    | StreamMetadata
)


def parse_event(line: str) -> StreamEvent | MalformedEvent:
    """Decode one line of the wire protocol into a stream event."""
    payload = line.strip()
    if payload.startswith(_SSE_PREFIX):
        payload = payload[len(_SSE_PREFIX) :].strip()
    if not payload:
        return MalformedEvent(raw=line, reason="empty line")

    try:
        data = json.loads(payload)
    except json.JSONDecodeError as exc:
        return MalformedEvent(raw=line, reason=f"invalid JSON: {exc.msg}")

    if not isinstance(data, dict) or not data:
        return MalformedEvent(raw=line, reason="expected a non-empty JSON object")

    try:
        event = _decode(data)
    except (AttributeError, KeyError, TypeError, ValueError) as exc:
        return MalformedEvent(raw=line, reason=f"unexpected event shape: {exc!r}")
    if event is None:
        return MalformedEvent(raw=line, reason=f"unknown event keys: {sorted(data)}")
    return event


def _decode(data: dict[str, Any]) -> StreamEvent | None:  # noqa: PLR0911
    if "contentBlockDelta" in data:
        body = data["contentBlockDelta"]
        delta = body.get("delta") or {}
        index = _index(body)
        if "text" in delta:
            return ContentBlockDelta(index=index, text=str(delta["text"]))
        tool_use = delta.get("toolUse")
        if isinstance(tool_use, dict) and "input" in tool_use:
            return ContentBlockDelta(index=index, tool_use_input_chunk=str(tool_use["input"]))
        msg = "delta carries neither text nor tool input"
        raise ValueError(msg)

    if "contentBlockStart" in data:
        body = data["contentBlockStart"]
        start = body.get("start") or {}
        tool_use = start.get("toolUse")
        if isinstance(tool_use, dict):
            return ContentBlockStart(
                index=_index(body),
                kind="tool_use",
                tool_use=ToolUseStart(
                    name=str(tool_use["name"]),
                    tool_use_id=str(tool_use["toolUseId"]),
                ),
            )
        return ContentBlockStart(index=_index(body), kind="text")

    if "contentBlockStop" in data:
        return ContentBlockStop(index=_index(data["contentBlockStop"]))

    if "messageStart" in data:
        body = data["messageStart"] or {}
        return MessageStart(role=str(body.get("role", "assistant")))

    if "messageStop" in data:
        body = data["messageStop"] or {}
        return MessageStop(stop_reason=str(body.get("stopReason", "end_turn")))

    if "metadata" in data:
        body = data["metadata"] or {}
        usage = body.get("usage") or {}
        metrics = body.get("metrics") or {}
        return StreamMetadata(
            input_tokens=usage.get("inputTokens"),
            output_tokens=usage.get("outputTokens"),
            total_tokens=usage.get("totalTokens"),
            latency_ms=metrics.get("latencyMs"),
        )

    for key, body in data.items():
        if key.endswith(_EXCEPTION_SUFFIX) or key == "error":
            return ExceptionEvent(kind=key, message=_error_message(body))

    return None


def _index(body: dict[str, Any]) -> int:
    index = body["contentBlockIndex"]
    if isinstance(index, bool) or not isinstance(index, int):
        msg = f"contentBlockIndex must be an integer, got {index!r}"
        raise TypeError(msg)
    return index


def _error_message(body: Any) -> str:
    if isinstance(body, dict):
        return str(body.get("message", body))
    return str(body)
