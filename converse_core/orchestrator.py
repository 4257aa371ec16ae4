"""Turn loop that ties the model stream, tools, window, and summary together.

One turn sends the active window to the model, mirrors the streamed reply
into an assistant message, and, when the model asks for tools, dispatches
them and loops. A plain stop ends the turn and gives the summary scheduler a
chance to fold newly archived messages into the rolling summary.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from converse_core.config import Settings
from converse_core.constants import INTERRUPTED_TOOL_RESULT
from converse_core.core.debounce import DebouncedFlusher
from converse_core.entities import Message, TextBlock, ToolResultBlock, ToolUseBlock
from converse_core.errors import (
    ConverseError,
    IncompleteStreamError,
    NetworkError,
    StreamModelError,
    TurnInProgressError,
)
from converse_core.stream.reassembler import StreamReassembler
from converse_core.summarizer._prompts import format_system_prompt
from converse_core.summarizer.scheduler import SummaryScheduler
from converse_core.window import ConversationWindow

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

    from converse_core.entities import ContentBlock, SummaryRecord
    from converse_core.interfaces import ModelTransport, PersistentStore, ToolDispatcher
    from converse_core.stream.reassembler import ReassemblyResult

LOGGER = logging.getLogger(__name__)

_FAILED_TOOL_RESULT = "Turn failed before execution"
_ROUND_LIMIT_TOOL_RESULT = "Tool round limit reached"


@dataclass
class TurnOutcome:
    """What happened during one call to `ConversationOrchestrator.send`."""

    assistant_messages: list[Message] = field(default_factory=list)
    tool_rounds: int = 0
    interrupted: bool = False
    stop_reason: str | None = None
    round_limited: bool = False
    summary_record: SummaryRecord | None = None

    @property
    def final_message(self) -> Message | None:
        """The last assistant message of the turn."""
        return self.assistant_messages[-1] if self.assistant_messages else None


class ConversationOrchestrator:
    """Runs turns for one open conversation at a time."""

    def __init__(
        self,
        transport: ModelTransport,
        dispatcher: ToolDispatcher,
        store: PersistentStore,
        *,
        settings: Settings | None = None,
        scheduler: SummaryScheduler | None = None,
        tools: Sequence[dict[str, Any]] | None = None,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            transport: Model backend.
            dispatcher: Executes tool calls.
            store: Persists messages and summaries.
            settings: Engine settings; defaults when omitted.
            scheduler: Summary scheduler; built from ``settings`` when omitted.
            tools: Tool specs sent to the model. Taken from the dispatcher's
                ``tool_specs()`` when omitted and available.

        """
        self.settings = settings or Settings()
        self._transport = transport
        self._dispatcher = dispatcher
        self._store = store
        self._scheduler = scheduler or SummaryScheduler(
            transport,
            store,
            cooldown_seconds=self.settings.summary.cooldown_seconds,
        )
        self._tools = tools
        self._conversation_id: str | None = None
        self._window: ConversationWindow | None = None
        self._flusher: DebouncedFlusher | None = None
        self._unsubscribe: Callable[[], None] | None = None
        self._cancel: asyncio.Event | None = None
        self._turn_active = False
        self._idle = asyncio.Event()
        self._idle.set()

    @property
    def conversation_id(self) -> str | None:
        """Id of the open conversation."""
        return self._conversation_id

    @property
    def window(self) -> ConversationWindow:
        """Window of the open conversation."""
        if self._window is None:
            msg = "No conversation is open"
            raise ConverseError(msg)
        return self._window

    @property
    def scheduler(self) -> SummaryScheduler:
        """The summary scheduler."""
        return self._scheduler

    @property
    def turn_in_progress(self) -> bool:
        """Whether a turn is currently generating."""
        return self._turn_active

    async def open_conversation(self, conversation_id: str) -> ConversationWindow:
        """Flush the current conversation and load another one."""
        if self._turn_active:
            msg = "Cannot switch conversations while a turn is in progress"
            raise TurnInProgressError(msg)
        await self._detach()

        messages = await self._store.load_messages(conversation_id)
        window_settings = self.settings.window
        window = ConversationWindow(
            threshold=window_settings.threshold,
            target_tokens=window_settings.target_tokens,
            overlap_tokens=window_settings.overlap_tokens,
        )
        window.load(messages)

        async def flush() -> None:
            await self._store.save_messages(conversation_id, window.messages())

        flusher = DebouncedFlusher(
            flush,
            delay_seconds=self.settings.persistence.debounce_seconds,
        )
        self._unsubscribe = window.on_change(flusher.schedule)
        self._flusher = flusher
        self._window = window
        self._conversation_id = conversation_id
        LOGGER.info("Opened conversation %s (%d messages)", conversation_id, len(window))
        return window

    async def send(
        self,
        text: str,
        *,
        cancel: asyncio.Event | None = None,
        context: str | None = None,
    ) -> TurnOutcome:
        """Append a user message and run the turn loop until the model stops.

        Args:
            text: The user's message.
            cancel: Event that interrupts the turn when set. `interrupt`
                sets it too.
            context: Optional external context block for the system prompt.

        Raises:
            TurnInProgressError: If another turn is still generating.
            NetworkError: If the transport fails; the partial reply is kept.
            StreamModelError: If the model reports an error in-band.

        """
        window = self.window
        if self._turn_active:
            msg = "A turn is already in progress"
            raise TurnInProgressError(msg)
        if not text.strip():
            msg = "Message text must not be empty"
            raise ValueError(msg)

        self._turn_active = True
        self._idle.clear()
        self._cancel = cancel or asyncio.Event()
        try:
            window.append(Message.create("user", [TextBlock(text=text)]))
            return await self._run_turn(window, self._cancel, context)
        finally:
            self._turn_active = False
            self._cancel = None
            self._idle.set()

    def interrupt(self) -> bool:
        """Interrupt the in-flight turn. Returns whether one was running."""
        if self._cancel is None:
            return False
        LOGGER.info("Interrupt requested")
        self._cancel.set()
        return True

    async def close(self) -> None:
        """Interrupt any turn, flush pending changes, and stop persistence."""
        if self.interrupt():
            # Let the turn finalize its reply while the flusher still listens.
            await self._idle.wait()
        await self._detach()
        self._window = None
        self._conversation_id = None

    # --- Turn loop ---

    async def _run_turn(
        self,
        window: ConversationWindow,
        cancel: asyncio.Event,
        context: str | None,
    ) -> TurnOutcome:
        conversation_id = self._require_conversation()
        outcome = TurnOutcome()

        while True:
            result, message_id = await self._stream_reply(window, cancel, context)
            outcome.assistant_messages.append(window.get(message_id))
            outcome.stop_reason = result.stop_reason

            if result.interrupted:
                outcome.interrupted = True
                self._close_tool_uses(window, result.blocks, INTERRUPTED_TOOL_RESULT)
                break
            if not result.dispatch_now:
                break
            if not any(isinstance(b, ToolUseBlock) for b in result.blocks):
                LOGGER.warning("Model stopped for tool use without calling a tool")
                break
            if outcome.tool_rounds >= self.settings.max_tool_rounds:
                LOGGER.warning(
                    "Stopping after %d tool rounds without a final answer",
                    outcome.tool_rounds,
                )
                self._close_tool_uses(window, result.blocks, _ROUND_LIMIT_TOOL_RESULT)
                outcome.round_limited = True
                break

            outcome.tool_rounds += 1
            results = await self._dispatch_tools(result, cancel)
            window.append(Message.create("user", list(results)))
            if cancel.is_set():
                outcome.interrupted = True
                break

        plain_stop = not (outcome.interrupted or outcome.round_limited)
        if plain_stop and self.settings.summary.enabled:
            outcome.summary_record = await self._maybe_summarize(conversation_id, window)
        return outcome

    async def _stream_reply(
        self,
        window: ConversationWindow,
        cancel: asyncio.Event,
        context: str | None,
    ) -> tuple[ReassemblyResult, str]:
        """Stream one model reply into a new assistant message."""
        record = await self._scheduler.get_record(self._require_conversation())
        system_prompt = format_system_prompt(self.settings.system_prompt, record.summary, context)
        request = [m for m in window.active_messages() if m.content]

        assistant = window.append(Message.create("assistant", is_streaming=True))

        def on_update(blocks: list[ContentBlock]) -> None:
            window.update(assistant.id, content=blocks)

        reassembler = StreamReassembler(on_update=on_update)
        LOGGER.debug("Requesting reply with %d active messages", len(request))
        try:
            lines = self._transport.stream_turn(request, system_prompt, self._tool_specs(), cancel)
            result = await reassembler.consume(lines, cancel)
        except IncompleteStreamError as exc:
            LOGGER.warning("Stream ended early: %s", exc)
            self._finish_message(window, assistant.id, exc.partial.blocks, error=True)
            self._close_tool_uses(window, exc.partial.blocks, _FAILED_TOOL_RESULT)
            raise
        except (NetworkError, StreamModelError) as exc:
            LOGGER.warning("Turn failed: %s", exc)
            partial = reassembler.interrupt()
            self._finish_message(window, assistant.id, partial.blocks, error=True)
            self._close_tool_uses(window, partial.blocks, _FAILED_TOOL_RESULT)
            raise

        self._finish_message(
            window,
            assistant.id,
            result.blocks,
            interrupted=result.interrupted,
        )
        if result.malformed_lines:
            LOGGER.info("Skipped %d malformed stream lines", result.malformed_lines)
        return result, assistant.id

    async def _dispatch_tools(
        self,
        result: ReassemblyResult,
        cancel: asyncio.Event,
    ) -> list[ToolResultBlock]:
        """Run every tool use of a reply; failures become error results."""
        failures = {f.tool_use_id: f for f in result.repair_failures}
        results: list[ToolResultBlock] = []
        for block in result.blocks:
            if not isinstance(block, ToolUseBlock):
                continue
            failure = failures.get(block.tool_use_id)
            if failure is not None:
                results.append(
                    ToolResultBlock(
                        tool_use_id=block.tool_use_id,
                        content=f"Invalid tool input: {failure.reason}",
                        status="error",
                    ),
                )
                continue
            if cancel.is_set():
                results.append(_error_result(block, INTERRUPTED_TOOL_RESULT))
                continue
            try:
                tool_result = await self._dispatcher.execute(block)
            except Exception as exc:
                LOGGER.exception("Tool %s (%s) failed", block.name, block.tool_use_id)
                tool_result = _error_result(block, f"Tool execution failed: {exc}")
            if tool_result.tool_use_id != block.tool_use_id:
                tool_result = tool_result.model_copy(update={"tool_use_id": block.tool_use_id})
            results.append(tool_result)
        return results

    def _close_tool_uses(
        self,
        window: ConversationWindow,
        blocks: Sequence[ContentBlock],
        reason: str,
    ) -> None:
        """Answer tool uses that will never run so every call keeps a result."""
        pending = [b for b in blocks if isinstance(b, ToolUseBlock)]
        if not pending:
            return
        LOGGER.info("Closing %d undispatched tool uses: %s", len(pending), reason)
        window.append(Message.create("user", [_error_result(b, reason) for b in pending]))

    @staticmethod
    def _finish_message(
        window: ConversationWindow,
        message_id: str,
        blocks: Sequence[ContentBlock],
        *,
        interrupted: bool = False,
        error: bool = False,
    ) -> None:
        window.update(
            message_id,
            content=list(blocks),
            metadata={"is_streaming": False, "interrupted": interrupted, "error": error},
        )

    async def _maybe_summarize(
        self,
        conversation_id: str,
        window: ConversationWindow,
    ) -> SummaryRecord | None:
        archived = window.archived_messages()
        if not archived:
            return None
        return await self._scheduler.maybe_summarize(conversation_id, archived)

    def _require_conversation(self) -> str:
        if self._conversation_id is None:
            msg = "No conversation is open"
            raise ConverseError(msg)
        return self._conversation_id

    def _tool_specs(self) -> list[dict[str, Any]]:
        if self._tools is not None:
            return list(self._tools)
        tool_specs = getattr(self._dispatcher, "tool_specs", None)
        return list(tool_specs()) if callable(tool_specs) else []

    async def _detach(self) -> None:
        """Force-flush and disconnect the current conversation's persistence."""
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        if self._flusher is not None:
            await self._flusher.aclose()
            self._flusher = None


def _error_result(block: ToolUseBlock, content: str) -> ToolResultBlock:
    return ToolResultBlock(tool_use_id=block.tool_use_id, content=content, status="error")
