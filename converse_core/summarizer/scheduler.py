"""Rolling summarization of archived messages.

Archived messages leave the model's context window. Before that context is
lost, the scheduler folds them into a single summary that is carried in the
system prompt. At most one summarization runs per conversation, a cooldown
separates consecutive runs, and messages are never summarized twice.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from converse_core.constants import DEFAULT_SUMMARY_COOLDOWN_SECONDS
from converse_core.entities import Message, SummaryRecord, TextBlock, utcnow
from converse_core.errors import SummarizationError
from converse_core.summarizer._prompts import SUMMARY_SYSTEM_PROMPT, format_summary_request

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence
    from datetime import datetime

    from converse_core.interfaces import ModelTransport, PersistentStore

LOGGER = logging.getLogger(__name__)


class SummaryScheduler:
    """Decides when to summarize and keeps the per-conversation records."""

    def __init__(
        self,
        transport: ModelTransport,
        store: PersistentStore,
        *,
        cooldown_seconds: float = DEFAULT_SUMMARY_COOLDOWN_SECONDS,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        """Initialize the scheduler.

        Args:
            transport: Used for the single non-streaming summary request.
            store: Where summary records are loaded from and saved to.
            cooldown_seconds: Minimum time between two summarizations.
            clock: Returns the current aware datetime.

        """
        self._transport = transport
        self._store = store
        self.cooldown_seconds = cooldown_seconds
        self._clock = clock
        self._records: dict[str, SummaryRecord] = {}
        self._in_flight: set[str] = set()
        self.failures = 0

    def is_summarizing(self, conversation_id: str) -> bool:
        """Whether a summarization is in flight for the conversation."""
        return conversation_id in self._in_flight

    async def get_record(self, conversation_id: str) -> SummaryRecord:
        """Return the summary record, loading it from the store on first use."""
        record = self._records.get(conversation_id)
        if record is None:
            record = await self._store.load_summary(conversation_id) or SummaryRecord()
            self._records[conversation_id] = record
        return record

    async def maybe_summarize(
        self,
        conversation_id: str,
        archived_messages: Sequence[Message],
    ) -> SummaryRecord | None:
        """Fold newly archived messages into the summary if due.

        Returns the updated record, or ``None`` when nothing was done. A failed
        request leaves the record untouched and is not retried here; the next
        eligible call picks the same messages up again.
        """
        if conversation_id in self._in_flight:
            LOGGER.debug("Summarization already running for %s", conversation_id)
            return None

        self._in_flight.add(conversation_id)
        try:
            record = await self.get_record(conversation_id)
            new_messages = [
                m for m in archived_messages if m.id not in record.last_summarized_message_ids
            ]
            if not self._should_trigger(record, new_messages):
                return None

            LOGGER.info(
                "Summarizing %d archived messages for %s",
                len(new_messages),
                conversation_id,
            )
            try:
                summary = await self._generate(record.summary, new_messages)
            except Exception:
                self.failures += 1
                LOGGER.exception("Summarization failed for %s", conversation_id)
                return None

            updated = record.merged(summary, {m.id for m in new_messages}, self._clock())
            self._records[conversation_id] = updated
            try:
                await self._store.save_summary(conversation_id, updated)
            except Exception:
                LOGGER.exception("Could not persist summary for %s", conversation_id)
            return updated
        finally:
            self._in_flight.discard(conversation_id)

    def forget(self, conversation_id: str) -> None:
        """Drop the cached record so the next access reloads it."""
        self._records.pop(conversation_id, None)

    def _should_trigger(self, record: SummaryRecord, new_messages: list[Message]) -> bool:
        if not new_messages:
            return False
        if record.last_summarization is not None:
            elapsed = (self._clock() - record.last_summarization).total_seconds()
            if elapsed < self.cooldown_seconds:
                LOGGER.debug("Summary cooldown active (%.1fs elapsed)", elapsed)
                return False
        return True

    async def _generate(self, previous_summary: str | None, messages: list[Message]) -> str:
        request = Message.create(
            "user",
            [TextBlock(text=format_summary_request(previous_summary, messages))],
        )
        response = await self._transport.invoke_once([request], SUMMARY_SYSTEM_PROMPT)
        summary = response.text.strip()
        if not summary:
            msg = "Summary response contained no text"
            raise SummarizationError(msg)
        return summary
