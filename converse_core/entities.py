"""Domain entities for the conversation engine.

These models are the in-memory truth of a conversation. Content blocks form a
tagged union on ``type`` so that snapshots round-trip through
``model_dump``/``model_validate`` without losing the block kind.
"""

from __future__ import annotations

import json
import logging
import re
from datetime import UTC, datetime
from typing import Annotated, Any, Literal
from uuid import uuid4

from pydantic import BaseModel, Field

LOGGER = logging.getLogger(__name__)

Role = Literal["user", "assistant"]

_HASHTAG_RE = re.compile(r"#(\w+)")
_TAG_SECTION_RE = re.compile(r"(?:tags|labels):\s*\[(.*?)\]", re.IGNORECASE)


def utcnow() -> datetime:
    """Return the current time in UTC."""
    return datetime.now(UTC)


class TextBlock(BaseModel):
    """Plain text produced by the user or the model."""

    type: Literal["text"] = "text"
    text: str = ""


class ToolUseBlock(BaseModel):
    """A request from the model to run a tool.

    ``input`` is the raw accumulated string while streaming and the parsed
    object once finalized. It stays a string only when repair failed.
    """

    type: Literal["tool_use"] = "tool_use"
    name: str
    tool_use_id: str
    input: dict[str, Any] | str = Field(default_factory=dict)

    @property
    def is_parsed(self) -> bool:
        """Whether the input has been parsed into an object."""
        return isinstance(self.input, dict)


class ToolResultBlock(BaseModel):
    """The outcome of a tool call, sent back to the model as a user turn."""

    type: Literal["tool_result"] = "tool_result"
    tool_use_id: str
    content: str = ""
    status: Literal["success", "error"] = "success"


ContentBlock = Annotated[
    TextBlock | ToolUseBlock | ToolResultBlock,
    Field(discriminator="type"),
]


class MessageMetadata(BaseModel):
    """Bookkeeping attached to every message."""

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    is_archived: bool = False
    has_tool_use: bool = False
    has_tool_result: bool = False
    sequence_number: int = 0
    is_streaming: bool = False
    interrupted: bool = False
    error: bool = False
    tags: list[str] = Field(default_factory=list)
    user_rating: int = Field(0, ge=0, le=5)


class Message(BaseModel):
    """A single user or assistant message in the conversation."""

    id: str = Field(..., frozen=True, description="Stable identity of the message")
    role: Role
    content: list[ContentBlock] = Field(default_factory=list)
    metadata: MessageMetadata = Field(default_factory=MessageMetadata)

    @classmethod
    def create(
        cls,
        role: Role,
        content: list[ContentBlock] | None = None,
        **metadata: Any,
    ) -> Message:
        """Create a message with a fresh id."""
        message = cls(
            id=uuid4().hex,
            role=role,
            content=list(content or []),
            metadata=MessageMetadata(**metadata),
        )
        message.refresh_flags()
        return message

    @property
    def text(self) -> str:
        """Concatenated text of all text blocks."""
        return "\n".join(block.text for block in self.content if isinstance(block, TextBlock))

    @property
    def is_genuine_user_turn(self) -> bool:
        """A user message that is not a tool round-trip continuation."""
        return self.role == "user" and not any(
            isinstance(block, ToolResultBlock) for block in self.content
        )

    def tool_uses(self) -> list[ToolUseBlock]:
        """Return the tool-use blocks of this message."""
        return [block for block in self.content if isinstance(block, ToolUseBlock)]

    def tool_results(self) -> list[ToolResultBlock]:
        """Return the tool-result blocks of this message."""
        return [block for block in self.content if isinstance(block, ToolResultBlock)]

    def refresh_flags(self) -> None:
        """Recompute the derived tool flags from the current content."""
        self.metadata.has_tool_use = any(isinstance(b, ToolUseBlock) for b in self.content)
        self.metadata.has_tool_result = any(isinstance(b, ToolResultBlock) for b in self.content)

    def to_wire(self) -> dict[str, Any]:
        """Serialize to the camelCase Converse message shape."""
        return {"role": self.role, "content": [_block_to_wire(b) for b in self.content]}

    @classmethod
    def from_wire(cls, data: dict[str, Any], *, message_id: str | None = None) -> Message:
        """Build a message from the camelCase Converse message shape."""
        blocks: list[ContentBlock] = []
        for item in data.get("content") or []:
            block = _block_from_wire(item)
            if block is None:
                LOGGER.debug("Skipping unsupported content item: %s", item)
                continue
            blocks.append(block)
        message = cls(
            id=message_id or uuid4().hex,
            role=data.get("role", "assistant"),
            content=blocks,
        )
        message.refresh_flags()
        return message


class SummaryRecord(BaseModel):
    """Rolling summary of the archived part of a conversation."""

    summary: str | None = None
    last_summarized_message_ids: set[str] = Field(default_factory=set)
    last_summarization: datetime | None = None

    def merged(
        self,
        summary: str | None,
        new_ids: set[str],
        at: datetime,
    ) -> SummaryRecord:
        """Return a new record with the summary replaced and the ids unioned."""
        return SummaryRecord(
            summary=summary,
            last_summarized_message_ids=self.last_summarized_message_ids | new_ids,
            last_summarization=at,
        )


def extract_tags(text: str) -> list[str]:
    """Extract ``#hashtags`` and ``tags: [a, b]`` sections from text."""
    tags = [match.group(1) for match in _HASHTAG_RE.finditer(text)]
    section = _TAG_SECTION_RE.search(text)
    if section:
        tags.extend(t.strip() for t in section.group(1).split(",") if t.strip())
    return list(dict.fromkeys(tags))


def _block_to_wire(block: TextBlock | ToolUseBlock | ToolResultBlock) -> dict[str, Any]:
    if isinstance(block, TextBlock):
        return {"text": block.text}
    if isinstance(block, ToolUseBlock):
        return {
            "toolUse": {
                "toolUseId": block.tool_use_id,
                "name": block.name,
                "input": block.input if isinstance(block.input, dict) else {},
            },
        }
    return {
        "toolResult": {
            "toolUseId": block.tool_use_id,
            "content": [{"text": block.content}],
            "status": block.status,
        },
    }


def _block_from_wire(item: dict[str, Any]) -> ContentBlock | None:
    if "text" in item:
        return TextBlock(text=item["text"] or "")
    if "toolUse" in item:
        tool_use = item["toolUse"] or {}
        return ToolUseBlock(
            name=tool_use.get("name", ""),
            tool_use_id=tool_use.get("toolUseId", ""),
            input=tool_use.get("input") or {},
        )
    if "toolResult" in item:
        result = item["toolResult"] or {}
        parts = []
        for part in result.get("content") or []:
            if "text" in part:
                parts.append(part["text"])
            elif "json" in part:
                parts.append(json.dumps(part["json"]))
        return ToolResultBlock(
            tool_use_id=result.get("toolUseId", ""),
            content="\n".join(parts),
            status=result.get("status", "success"),
        )
    return None
