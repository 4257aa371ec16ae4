"""Token cost heuristics for window partitioning."""

from __future__ import annotations

import json
import math
from typing import TYPE_CHECKING

from converse_core.constants import MESSAGE_TOKEN_OVERHEAD, WORDS_TO_TOKENS
from converse_core.entities import TextBlock, ToolResultBlock, ToolUseBlock

if TYPE_CHECKING:
    from converse_core.entities import ContentBlock, Message


def estimate_text_tokens(text: str) -> int:
    """Estimate tokens from the word count (~3 words per 4 tokens)."""
    words = len(text.split())
    return math.ceil(words * WORDS_TO_TOKENS)


def estimate_block_tokens(block: ContentBlock) -> int:
    """Estimate the cost of one content block.

    Tool blocks are costed by their serialized length since their payloads
    are mostly JSON or code where word counts underestimate badly.
    """
    if isinstance(block, TextBlock):
        return estimate_text_tokens(block.text)
    if isinstance(block, ToolUseBlock):
        payload = block.input if isinstance(block.input, str) else json.dumps(block.input)
        return (len(block.name) + len(payload)) // 4
    if isinstance(block, ToolResultBlock):
        return len(block.content) // 4
    return 0


def estimate_message_tokens(message: Message) -> int:
    """Estimate the cost of a whole message including fixed overhead."""
    return MESSAGE_TOKEN_OVERHEAD + sum(estimate_block_tokens(b) for b in message.content)
