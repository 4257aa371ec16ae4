"""Best-effort repair of truncated tool-call arguments.

Tool inputs arrive as raw string fragments and are only parsed once their
block stops. Models occasionally stop mid-value, which leaves JSON that
`json.loads` rejects. `repair_tool_input` handles a finite set of shapes:

1. Empty input, which becomes ``{}``.
2. Truncation: an unterminated string, a dangling escape or partial
   ``\\uXXXX``, a partial ``true``/``false``/``null`` literal, a number cut
   after ``-``, ``.`` or an exponent marker, a trailing comma, a dangling
   ``:`` or key (completed with ``null``), and missing ``}``/``]``.
3. The observed tool shapes ``{"path", "content"}`` and ``{"mode", "path"}``
   where the last string value is cut mid-token or contains unescaped quotes
   or raw newlines.

This is not a general JSON repairer. Other malformed shapes are returned
unchanged after the truncation pass, and callers must handle the result still
failing to parse.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any

from converse_core.errors import ToolInputRepairError

LOGGER = logging.getLogger(__name__)

_CLOSERS = {"{": "}", "[": "]"}
_LITERALS = ("true", "false", "null")

_PARTIAL_UNICODE_RE = re.compile(r"(\\+)u[0-9a-fA-F]{0,3}$")
_PARTIAL_LITERAL_RE = re.compile(r"(?<![A-Za-z])(t|tr|tru|f|fa|fal|fals|n|nu|nul)$")
_NUMBER_TAIL_RE = re.compile(r"(?<=\d)(?:[eE][-+]?|\.)$")

# Two-key shapes where the final string value tends to be cut or unescaped.
_KNOWN_SHAPES = (
    re.compile(
        r'^\s*\{\s*"(?P<first>path)"\s*:\s*"(?P<first_value>(?:[^"\\]|\\.)*)"\s*,'
        r'\s*"(?P<last>content)"\s*:\s*"(?P<last_value>.*)$',
        re.DOTALL,
    ),
    re.compile(
        r'^\s*\{\s*"(?P<first>mode)"\s*:\s*"(?P<first_value>(?:[^"\\]|\\.)*)"\s*,'
        r'\s*"(?P<last>path)"\s*:\s*"(?P<last_value>.*)$',
        re.DOTALL,
    ),
)


def repair_tool_input(fragment: str) -> str:
    """Return a best-effort parseable version of a malformed tool input."""
    if not fragment.strip():
        return "{}"
    if _parses(fragment):
        return fragment

    candidate = _close_truncated(fragment)
    if _parses(candidate):
        return candidate

    salvaged = _salvage_known_shape(fragment)
    if salvaged is not None:
        return salvaged

    LOGGER.debug("Could not repair tool input: %r", fragment[:200])
    return candidate


def parse_tool_input(raw: str) -> dict[str, Any]:
    """Parse accumulated tool input, repairing it when needed.

    Raises:
        ToolInputRepairError: If the input cannot be turned into a JSON object.

    """
    if not raw.strip():
        return {}
    try:
        value = json.loads(raw)
    except json.JSONDecodeError:
        repaired = repair_tool_input(raw)
        try:
            value = json.loads(repaired)
        except json.JSONDecodeError as exc:
            msg = f"Tool input is not valid JSON after repair: {exc.msg}"
            raise ToolInputRepairError(msg, raw=raw) from exc
        LOGGER.info("Repaired malformed tool input (%d chars)", len(raw))

    if not isinstance(value, dict):
        msg = f"Tool input must be a JSON object, got {type(value).__name__}"
        raise ToolInputRepairError(msg, raw=raw)
    return value


def _parses(text: str) -> bool:
    try:
        json.loads(text)
    except json.JSONDecodeError:
        return False
    return True


def _close_truncated(text: str) -> str:
    """Append the minimal tokens that close a truncated JSON document."""
    stack: list[str] = []
    colon_seen: list[bool] = []
    last_separator: list[int] = []
    in_string = False
    escape = False

    for i, ch in enumerate(text):
        if in_string:
            if escape:
                escape = False
            elif ch == "\\":
                escape = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch in _CLOSERS:
            stack.append(ch)
            colon_seen.append(False)
            last_separator.append(i)
        elif ch in "}]":
            if stack and _CLOSERS[stack[-1]] == ch:
                stack.pop()
                colon_seen.pop()
                last_separator.pop()
        elif ch == "," and stack:
            colon_seen[-1] = False
            last_separator[-1] = i
        elif ch == ":" and stack:
            colon_seen[-1] = True

    result = text
    if in_string:
        if escape:
            result = result[:-1]
        result = _drop_partial_unicode(result) + '"'

    result = result.rstrip()
    if stack and stack[-1] == "{" and not colon_seen[-1]:
        pending = result[last_separator[-1] + 1 :].strip()
        if pending.startswith('"'):
            result += ": null"

    result = _complete_value(result)
    return result + "".join(_CLOSERS[c] for c in reversed(stack))


def _complete_value(text: str) -> str:
    """Finish the last value when the text stops right after or inside it."""
    text = _NUMBER_TAIL_RE.sub("", text)
    if text.endswith("-"):
        text = text[:-1].rstrip()

    literal = _PARTIAL_LITERAL_RE.search(text)
    if literal:
        prefix = literal.group(1)
        full = next(lit for lit in _LITERALS if lit.startswith(prefix))
        text = text[: literal.start()] + full

    if text.endswith(","):
        text = text[:-1].rstrip()
    if text.endswith(":"):
        text += " null"
    return text


def _drop_partial_unicode(text: str) -> str:
    match = _PARTIAL_UNICODE_RE.search(text)
    if match and len(match.group(1)) % 2 == 1:
        return text[: match.start()] + match.group(1)[:-1]
    return text


def _salvage_known_shape(fragment: str) -> str | None:
    """Rebuild one of the known two-key tool inputs from a broken fragment."""
    for pattern in _KNOWN_SHAPES:
        match = pattern.match(fragment)
        if not match:
            continue
        try:
            first_value = json.loads(f'"{match.group("first_value")}"')
        except json.JSONDecodeError:
            first_value = match.group("first_value")
        last_value = _loose_string(_strip_closing(match.group("last_value")))
        LOGGER.debug("Salvaged tool input with keys %s/%s", match["first"], match["last"])
        return json.dumps({match["first"]: first_value, match["last"]: last_value})
    return None


def _strip_closing(tail: str) -> str:
    """Remove a closing quote and brace that belong to the object, not the value."""
    tail = tail.rstrip()
    if tail.endswith("}"):
        tail = tail[:-1].rstrip()
    if tail.endswith('"'):
        backslashes = len(tail[:-1]) - len(tail[:-1].rstrip("\\"))
        if backslashes % 2 == 0:
            tail = tail[:-1]
    return tail


def _loose_string(body: str) -> str:
    """Decode a JSON string body that may be cut or contain raw quotes."""
    trailing = len(body) - len(body.rstrip("\\"))
    if trailing % 2 == 1:
        body = body[:-1]
    body = _drop_partial_unicode(body)
    try:
        return json.loads(f'"{body}"')
    except json.JSONDecodeError:
        pass
    escaped = re.sub(r'(?<!\\)((?:\\\\)*)"', r'\1\\"', body)
    escaped = escaped.replace("\n", "\\n").replace("\r", "\\r").replace("\t", "\\t")
    try:
        return json.loads(f'"{escaped}"')
    except json.JSONDecodeError:
        return body
