"""Prompt templates for rolling context compression."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

from converse_core.entities import TextBlock, ToolResultBlock, ToolUseBlock

if TYPE_CHECKING:
    from collections.abc import Sequence

    from converse_core.entities import Message

SUMMARY_SYSTEM_PROMPT = """
You are a specialized context compression agent. Your task is to create detailed, information-dense summaries of conversations while maintaining crucial context for future reference.

Key responsibilities:
1. Preserve important technical details, decisions, and action items
2. Maintain contextual connections between topics
3. Track the evolution of ideas and solutions
4. Highlight critical user requirements or constraints
5. Include relevant code snippets, API responses, or tool outputs that might be needed for context
6. Ensure any resolved issues or established patterns are documented

When summarizing:
- Previous summary represents compressed historical context - integrate new information while maintaining its key points
- Focus on preserving information that future parts of the conversation might reference
- Use concise but specific language to maximize information density
- Structure the summary to make it easy to reference specific points
- Indicate when certain details are simplified or omitted for brevity

Your summary will be used as context for future interactions, so ensure it contains enough detail for the conversation to continue coherently.
""".strip()

SUMMARY_REQUEST_PROMPT = """
There are {count} new messages to compress into the context.

Current Context Summary: {summary}

New Information to Integrate:
{transcript}

Please provide an updated context summary that:
1. Maintains all crucial information from the previous summary
2. Integrates new relevant details and decisions
3. Preserves technical specifics and tool interactions
4. Ensures context continuity for future reference
""".strip()

SUMMARY_CONTEXT_PREFIX = "Summary of the earlier conversation:"


def render_message(message: Message) -> str:
    """Render one message as a transcript entry, tool calls included."""
    parts: list[str] = []
    for block in message.content:
        if isinstance(block, TextBlock):
            if block.text:
                parts.append(block.text)
        elif isinstance(block, ToolUseBlock):
            payload = block.input if isinstance(block.input, str) else json.dumps(block.input)
            parts.append(f"<tool_call name={block.name}>{payload}</tool_call>")
        elif isinstance(block, ToolResultBlock):
            parts.append(f"<tool_result status={block.status}>{block.content}</tool_result>")
    return f"[{message.role}]: {' '.join(parts)}"


def format_summary_request(previous_summary: str | None, messages: Sequence[Message]) -> str:
    """Build the single user turn that asks for an updated summary."""
    return SUMMARY_REQUEST_PROMPT.format(
        count=len(messages),
        summary=previous_summary or "None",
        transcript="\n\n".join(render_message(m) for m in messages),
    )


def format_system_prompt(
    base_prompt: str,
    summary: str | None,
    context: str | None = None,
) -> str:
    """Prefix the summary and any external context block to the system prompt."""
    sections = []
    if summary:
        sections.append(f"{SUMMARY_CONTEXT_PREFIX}\n{summary}")
    if context:
        sections.append(context)
    sections.append(base_prompt)
    return "\n\n".join(sections)
