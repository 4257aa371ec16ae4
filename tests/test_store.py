"""Tests for the in-memory store."""

from __future__ import annotations

import pytest

from converse_core.entities import Message, SummaryRecord, TextBlock
from converse_core.interfaces import PersistentStore
from converse_core.store import InMemoryStore


def test_store_is_a_persistent_store(store: InMemoryStore) -> None:
    """The reference store satisfies the protocol."""
    assert isinstance(store, PersistentStore)


@pytest.mark.asyncio
async def test_messages_are_copied(store: InMemoryStore) -> None:
    """Neither saved nor loaded messages share state with the store."""
    message = Message.create("user", [TextBlock(text="original")])
    await store.save_messages("conv", [message])
    message.content[0] = TextBlock(text="mutated after save")

    loaded = await store.load_messages("conv")
    assert loaded[0].text == "original"
    loaded[0].content.clear()
    assert (await store.load_messages("conv"))[0].text == "original"
    assert store.save_count == 1
    assert store.conversation_ids() == ["conv"]


@pytest.mark.asyncio
async def test_unknown_conversation(store: InMemoryStore) -> None:
    """Unknown conversations are empty."""
    assert await store.load_messages("missing") == []
    assert await store.load_summary("missing") is None


@pytest.mark.asyncio
async def test_summary_round_trip(store: InMemoryStore) -> None:
    """Summary records are stored as copies."""
    record = SummaryRecord(summary="s", last_summarized_message_ids={"a"})
    await store.save_summary("conv", record)
    record.last_summarized_message_ids.add("b")
    loaded = await store.load_summary("conv")
    assert loaded is not None
    assert loaded.last_summarized_message_ids == {"a"}
