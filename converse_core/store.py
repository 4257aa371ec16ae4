"""In-memory reference implementation of the persistent store."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Sequence

    from converse_core.entities import Message, SummaryRecord

LOGGER = logging.getLogger(__name__)


class InMemoryStore:
    """Keeps conversations in process memory.

    Everything is deep-copied on the way in and out so callers never share
    mutable state with the store.
    """

    def __init__(self) -> None:
        """Initialize an empty store."""
        self._messages: dict[str, list[Message]] = {}
        self._summaries: dict[str, SummaryRecord] = {}
        self.save_count = 0

    async def load_messages(self, conversation_id: str) -> list[Message]:
        """Return copies of the stored messages."""
        return [m.model_copy(deep=True) for m in self._messages.get(conversation_id, [])]

    async def save_messages(self, conversation_id: str, messages: Sequence[Message]) -> None:
        """Replace the stored messages with copies of ``messages``."""
        self._messages[conversation_id] = [m.model_copy(deep=True) for m in messages]
        self.save_count += 1
        LOGGER.debug("Saved %d messages for %s", len(messages), conversation_id)

    async def load_summary(self, conversation_id: str) -> SummaryRecord | None:
        """Return a copy of the stored summary record, if any."""
        record = self._summaries.get(conversation_id)
        return record.model_copy(deep=True) if record is not None else None

    async def save_summary(self, conversation_id: str, record: SummaryRecord) -> None:
        """Store a copy of the summary record."""
        self._summaries[conversation_id] = record.model_copy(deep=True)

    def conversation_ids(self) -> list[str]:
        """Ids of all conversations with stored messages."""
        return list(self._messages)
