"""Shared test fixtures and configuration."""

from __future__ import annotations

import asyncio
import contextlib
import io
import json
from typing import TYPE_CHECKING, Any

import pytest
from rich.console import Console

from converse_core.entities import Message, TextBlock
from converse_core.store import InMemoryStore

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Sequence

# A scripted line that blocks the stream forever, like a stalled connection.
HANG = "__hang__"


def pytest_collection_modifyitems(items: list[pytest.Item]) -> None:
    """Set default timeout for all tests."""
    for item in items:
        with contextlib.suppress(AttributeError):
            item.add_marker(pytest.mark.timeout(3))


class Wire:
    """Builders for single lines of the streaming wire protocol."""

    @staticmethod
    def message_start(role: str = "assistant") -> str:
        return json.dumps({"messageStart": {"role": role}})

    @staticmethod
    def text_delta(text: str, index: int = 0) -> str:
        return json.dumps({"contentBlockDelta": {"contentBlockIndex": index, "delta": {"text": text}}})

    @staticmethod
    def tool_start(name: str, tool_use_id: str, index: int = 0) -> str:
        return json.dumps(
            {
                "contentBlockStart": {
                    "contentBlockIndex": index,
                    "start": {"toolUse": {"name": name, "toolUseId": tool_use_id}},
                },
            },
        )

    @staticmethod
    def tool_delta(chunk: str, index: int = 0) -> str:
        return json.dumps(
            {"contentBlockDelta": {"contentBlockIndex": index, "delta": {"toolUse": {"input": chunk}}}},
        )

    @staticmethod
    def block_stop(index: int = 0) -> str:
        return json.dumps({"contentBlockStop": {"contentBlockIndex": index}})

    @staticmethod
    def message_stop(reason: str = "end_turn") -> str:
        return json.dumps({"messageStop": {"stopReason": reason}})

    @staticmethod
    def exception(kind: str, message: str) -> str:
        return json.dumps({kind: {"message": message}})

    @classmethod
    def text_reply(cls, *chunks: str) -> list[str]:
        """A complete plain-text reply."""
        return [
            cls.message_start(),
            *(cls.text_delta(chunk) for chunk in chunks),
            cls.block_stop(),
            cls.message_stop(),
        ]

    @classmethod
    def tool_reply(
        cls,
        name: str,
        tool_use_id: str,
        *input_chunks: str,
        text: str | None = None,
    ) -> list[str]:
        """A reply that ends with a single tool call."""
        lines = [cls.message_start()]
        index = 0
        if text is not None:
            lines += [cls.text_delta(text, index), cls.block_stop(index)]
            index += 1
        lines.append(cls.tool_start(name, tool_use_id, index))
        lines += [cls.tool_delta(chunk, index) for chunk in input_chunks]
        lines += [cls.block_stop(index), cls.message_stop("tool_use")]
        return lines


async def iter_lines(lines: Sequence[str]) -> AsyncIterator[str]:
    """Yield scripted lines; `HANG` blocks until cancelled."""
    for line in lines:
        if line == HANG:
            await asyncio.Event().wait()
        yield line


class ScriptedTransport:
    """Model transport that replays scripted replies and records requests."""

    def __init__(
        self,
        replies: Sequence[Sequence[str] | Exception] = (),
        *,
        summaries: Sequence[str | Exception] = (),
    ) -> None:
        self.replies = list(replies)
        self.summaries = list(summaries)
        self.requests: list[dict[str, Any]] = []
        self.invocations: list[dict[str, Any]] = []

    async def stream_turn(
        self,
        messages: Sequence[Message],
        system_prompt: str,
        tools: Sequence[dict[str, Any]],
        cancel: asyncio.Event | None = None,  # noqa: ARG002
    ) -> AsyncIterator[str]:
        self.requests.append(
            {"messages": list(messages), "system_prompt": system_prompt, "tools": list(tools)},
        )
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        async for line in iter_lines(reply):
            yield line

    async def invoke_once(self, messages: Sequence[Message], system_prompt: str) -> Message:
        self.invocations.append({"messages": list(messages), "system_prompt": system_prompt})
        summary = self.summaries.pop(0) if self.summaries else "A summary."
        if isinstance(summary, Exception):
            raise summary
        return Message.create("assistant", [TextBlock(text=summary)])


@pytest.fixture
def wire() -> type[Wire]:
    """Provide the wire line builders."""
    return Wire


@pytest.fixture
def hang() -> str:
    """Provide the scripted line that stalls a stream."""
    return HANG


@pytest.fixture
def line_source() -> Any:
    """Provide a factory turning scripted lines into an async iterator."""
    return iter_lines


@pytest.fixture
def transport_factory() -> type[ScriptedTransport]:
    """Provide the scripted transport class."""
    return ScriptedTransport


@pytest.fixture
def store() -> InMemoryStore:
    """Provide an empty in-memory store."""
    return InMemoryStore()


@pytest.fixture
def mock_console() -> Console:
    """Provide a console that writes to a StringIO for testing."""
    return Console(file=io.StringIO(), width=80, force_terminal=True)


@pytest.fixture
def stop_event() -> asyncio.Event:
    """Provide an asyncio event for stopping operations."""
    return asyncio.Event()
