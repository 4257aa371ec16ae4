"""Reassembly of streamed content blocks into finalized message content."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from converse_core.constants import STOP_REASON_TOOL_USE
from converse_core.entities import ContentBlock, TextBlock, ToolUseBlock
from converse_core.errors import (
    IncompleteStreamError,
    StreamAbortedError,
    StreamModelError,
    ToolInputRepairError,
)
from converse_core.stream.events import (
    ContentBlockDelta,
    ContentBlockStart,
    ContentBlockStop,
    ExceptionEvent,
    MalformedEvent,
    MessageStart,
    MessageStop,
    StreamEvent,
    StreamMetadata,
    parse_event,
)
from converse_core.stream.repair import parse_tool_input

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable

LOGGER = logging.getLogger(__name__)

_END = object()


@dataclass
class ToolInputRepairFailure:
    """A tool use whose input could not be parsed, so it must not be dispatched."""

    tool_use_id: str
    name: str
    raw: str
    reason: str


@dataclass
class _TextSlot:
    chunks: list[str] = field(default_factory=list)

    def block(self) -> TextBlock:
        return TextBlock(text="".join(self.chunks))


@dataclass
class _ToolUseSlot:
    name: str
    tool_use_id: str
    chunks: list[str] = field(default_factory=list)

    @property
    def raw(self) -> str:
        return "".join(self.chunks)

    def block(self) -> ToolUseBlock:
        return ToolUseBlock(name=self.name, tool_use_id=self.tool_use_id, input=self.raw)


@dataclass
class StreamAccumulator:
    """Transient state of one in-flight model response."""

    open_slots: dict[int, _TextSlot | _ToolUseSlot] = field(default_factory=dict)
    finalized: dict[int, ContentBlock] = field(default_factory=dict)
    repair_failures: list[ToolInputRepairFailure] = field(default_factory=list)
    usage: dict[str, int] = field(default_factory=dict)

    def blocks(self, *, include_pending_tools: bool = True) -> list[ContentBlock]:
        """Return finalized and open blocks ordered by index."""
        by_index: dict[int, ContentBlock] = dict(self.finalized)
        for index, slot in self.open_slots.items():
            if isinstance(slot, _ToolUseSlot) and not include_pending_tools:
                continue
            by_index[index] = slot.block()
        return [
            block
            for _, block in sorted(by_index.items())
            if not (isinstance(block, TextBlock) and not block.text)
        ]


@dataclass
class ReassemblyResult:
    """Finalized content of one model response."""

    blocks: list[ContentBlock]
    stop_reason: str | None = None
    interrupted: bool = False
    repair_failures: list[ToolInputRepairFailure] = field(default_factory=list)
    usage: dict[str, int] = field(default_factory=dict)
    malformed_lines: int = 0

    @property
    def dispatch_now(self) -> bool:
        """Whether the model stopped to have its tool calls executed."""
        return not self.interrupted and self.stop_reason == STOP_REASON_TOOL_USE

    @property
    def tool_uses(self) -> list[ToolUseBlock]:
        """Tool uses whose input parsed successfully."""
        return [b for b in self.blocks if isinstance(b, ToolUseBlock) and b.is_parsed]


class StreamReassembler:
    """Turns the ordered stream events of one turn into finalized content blocks.

    ``on_update`` is called with the current blocks once per event that
    changed the content, so a caller can mirror progress into a message.
    """

    def __init__(
        self,
        *,
        on_update: Callable[[list[ContentBlock]], None] | None = None,
    ) -> None:
        """Initialize an empty accumulator."""
        self._acc = StreamAccumulator()
        self._on_update = on_update
        self._stop_reason: str | None = None
        self._malformed = 0

    @property
    def done(self) -> bool:
        """Whether a ``messageStop`` event has been processed."""
        return self._stop_reason is not None

    def snapshot(self) -> list[ContentBlock]:
        """Current content, with open tool uses showing their raw input."""
        return self._acc.blocks()

    def feed(self, event: StreamEvent) -> None:  # noqa: C901, PLR0912
        """Apply one stream event to the accumulator.

        Raises:
            StreamModelError: If the event is an in-band backend exception.

        """
        acc = self._acc
        changed = False

        if isinstance(event, ExceptionEvent):
            LOGGER.error("Model stream exception %s: %s", event.kind, event.message)
            raise StreamModelError(event.kind, event.message)

        if isinstance(event, MessageStart):
            LOGGER.debug("Message started (role=%s)", event.role)

        elif isinstance(event, ContentBlockStart):
            if event.kind == "tool_use" and event.tool_use is not None:
                acc.open_slots[event.index] = _ToolUseSlot(
                    name=event.tool_use.name,
                    tool_use_id=event.tool_use.tool_use_id,
                )
                LOGGER.debug("Tool use %s started at index %d", event.tool_use.name, event.index)
            else:
                acc.open_slots.setdefault(event.index, _TextSlot())
            changed = True

        elif isinstance(event, ContentBlockDelta):
            changed = self._apply_delta(event)

        elif isinstance(event, ContentBlockStop):
            changed = self._finalize_slot(event.index)

        elif isinstance(event, MessageStop):
            for index in sorted(acc.open_slots):
                self._finalize_slot(index)
            self._stop_reason = event.stop_reason
            changed = True

        elif isinstance(event, StreamMetadata):
            for key in ("input_tokens", "output_tokens", "total_tokens", "latency_ms"):
                value = getattr(event, key)
                if value is not None:
                    acc.usage[key] = value

        if changed and self._on_update is not None:
            self._on_update(acc.blocks())

    def finish(self) -> ReassemblyResult:
        """Return the finalized result after ``messageStop``."""
        return ReassemblyResult(
            blocks=self._acc.blocks(),
            stop_reason=self._stop_reason,
            repair_failures=list(self._acc.repair_failures),
            usage=dict(self._acc.usage),
            malformed_lines=self._malformed,
        )

    def interrupt(self) -> ReassemblyResult:
        """Finalize whatever exists as-is and drop unfinished tool uses."""
        acc = self._acc
        for index, slot in list(acc.open_slots.items()):
            if isinstance(slot, _TextSlot):
                acc.finalized[index] = slot.block()
            else:
                LOGGER.info(
                    "Dropping unfinished tool use %s (%d chars of input)",
                    slot.tool_use_id,
                    len(slot.raw),
                )
        acc.open_slots.clear()
        result = self.finish()
        result.interrupted = True
        return result

    async def consume(
        self,
        lines: AsyncIterator[str],
        cancel: asyncio.Event | None = None,
    ) -> ReassemblyResult:
        """Read lines until ``messageStop``, cancellation, or end of stream.

        Raises:
            StreamModelError: If the backend reports an in-band exception.
            IncompleteStreamError: If the stream ends before ``messageStop``.

        """
        iterator = aiter(lines)
        try:
            while not self.done:
                line = await _next_line(iterator, cancel)
                if line is _END:
                    if cancel is not None and cancel.is_set():
                        # The source stopped because it saw the cancel first.
                        msg = "Stream closed by its source after cancel"
                        raise StreamAbortedError(msg)  # noqa: TRY301
                    msg = "Stream ended before messageStop"
                    raise IncompleteStreamError(msg, partial=self.interrupt())
                event = parse_event(line)  # type: ignore[arg-type]
                if isinstance(event, MalformedEvent):
                    self._malformed += 1
                    LOGGER.warning("Skipping malformed stream line (%s)", event.reason)
                    continue
                self.feed(event)
        except StreamAbortedError as exc:
            LOGGER.info("Stream cancelled by caller: %s", exc)
            return self.interrupt()
        finally:
            aclose = getattr(iterator, "aclose", None)
            if aclose is not None:
                await aclose()
        return self.finish()

    def _apply_delta(self, event: ContentBlockDelta) -> bool:
        acc = self._acc
        slot = acc.open_slots.get(event.index)

        if event.text is not None:
            if slot is None:
                previous = acc.finalized.pop(event.index, None)
                slot = _TextSlot()
                if isinstance(previous, TextBlock):
                    slot.chunks.append(previous.text)
                elif previous is not None:
                    acc.finalized[event.index] = previous
                    LOGGER.warning("Text delta for finalized non-text block %d", event.index)
                    return False
                acc.open_slots[event.index] = slot
            if not isinstance(slot, _TextSlot):
                LOGGER.warning("Text delta for tool-use block %d ignored", event.index)
                return False
            slot.chunks.append(event.text)
            return True

        if event.tool_use_input_chunk is not None:
            if not isinstance(slot, _ToolUseSlot):
                LOGGER.warning("Tool input delta without open tool use at %d", event.index)
                return False
            slot.chunks.append(event.tool_use_input_chunk)
            return True

        return False

    def _finalize_slot(self, index: int) -> bool:
        acc = self._acc
        slot = acc.open_slots.pop(index, None)
        if slot is None:
            return False
        if isinstance(slot, _TextSlot):
            acc.finalized[index] = slot.block()
            return True

        raw = slot.raw
        parsed: dict[str, Any] | str
        try:
            parsed = parse_tool_input(raw)
        except ToolInputRepairError as exc:
            LOGGER.warning("Tool input for %s could not be repaired: %s", slot.name, exc)
            acc.repair_failures.append(
                ToolInputRepairFailure(
                    tool_use_id=slot.tool_use_id,
                    name=slot.name,
                    raw=raw,
                    reason=str(exc),
                ),
            )
            parsed = raw
        acc.finalized[index] = ToolUseBlock(
            name=slot.name,
            tool_use_id=slot.tool_use_id,
            input=parsed,
        )
        return True


async def _read_next(iterator: AsyncIterator[str]) -> Any:
    try:
        return await anext(iterator)
    except StopAsyncIteration:
        return _END


async def _next_line(iterator: AsyncIterator[str], cancel: asyncio.Event | None) -> Any:
    """Read the next line.

    Raises:
        StreamAbortedError: As soon as ``cancel`` is set, even if a line
            arrived in the same pass.

    """
    if cancel is None:
        return await _read_next(iterator)
    if cancel.is_set():
        msg = "Cancelled before read"
        raise StreamAbortedError(msg)

    read_task = asyncio.ensure_future(_read_next(iterator))
    cancel_task = asyncio.ensure_future(cancel.wait())
    try:
        done, _ = await asyncio.wait(
            {read_task, cancel_task},
            return_when=asyncio.FIRST_COMPLETED,
        )
    finally:
        cancel_task.cancel()
    if cancel_task not in done and not cancel.is_set():
        return read_task.result()

    if read_task.done():
        if not read_task.cancelled() and read_task.exception() is not None:
            LOGGER.debug("Ignoring read error after cancel: %s", read_task.exception())
    else:
        read_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await read_task
    msg = "Cancelled while waiting for the next line"
    raise StreamAbortedError(msg)
