"""Protocols for the collaborators the conversation engine depends on."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    import asyncio
    from collections.abc import AsyncIterator, Sequence

    from converse_core.entities import Message, SummaryRecord, ToolResultBlock, ToolUseBlock


@runtime_checkable
class ModelTransport(Protocol):
    """Protocol for model backends.

    The streaming call yields raw wire lines; decoding and reassembly are the
    engine's job. The non-streaming call is used for summarization.
    """

    def stream_turn(
        self,
        messages: Sequence[Message],
        system_prompt: str,
        tools: Sequence[dict[str, Any]],
        cancel: asyncio.Event | None = None,
    ) -> AsyncIterator[str]:
        """Start a streaming model turn and yield its lines.

        Raises:
            NetworkError: On transport failure or a non-2xx response.

        """
        ...

    async def invoke_once(self, messages: Sequence[Message], system_prompt: str) -> Message:
        """Run a single non-streaming request and return the reply.

        Raises:
            NetworkError: On failure or when the reply has no content.

        """
        ...


@runtime_checkable
class ToolDispatcher(Protocol):
    """Protocol for executing tool calls requested by the model."""

    async def execute(self, tool_use: ToolUseBlock) -> ToolResultBlock:
        """Run one tool call. May raise; the caller converts errors to results."""
        ...


@runtime_checkable
class PersistentStore(Protocol):
    """Protocol for conversation storage."""

    async def load_messages(self, conversation_id: str) -> list[Message]:
        """Load the persisted messages of a conversation (empty if unknown)."""
        ...

    async def save_messages(self, conversation_id: str, messages: Sequence[Message]) -> None:
        """Replace the persisted messages of a conversation."""
        ...

    async def load_summary(self, conversation_id: str) -> SummaryRecord | None:
        """Load the summary record of a conversation, if any."""
        ...

    async def save_summary(self, conversation_id: str, record: SummaryRecord) -> None:
        """Persist the summary record of a conversation."""
        ...
