"""In-memory conversation log with an active/archived partition.

The newest messages form the *active* window that is sent to the model. Older
messages are *archived* and represented by a rolling summary instead. The
split is recomputed after every mutation and always snaps back to a genuine
user turn, so a tool call is never separated from its result and a user turn
is never cut in half.
"""

from __future__ import annotations

import contextlib
import logging
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, Field, TypeAdapter

from converse_core.constants import DEFAULT_OVERLAP_TOKENS, DEFAULT_THRESHOLD
from converse_core.entities import ContentBlock, Message, MessageMetadata, extract_tags, utcnow
from converse_core.errors import MessageNotFoundError
from converse_core.window._tokens import estimate_message_tokens

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator, Sequence

LOGGER = logging.getLogger(__name__)

_CONTENT_ADAPTER = TypeAdapter(list[ContentBlock])

# Metadata owned by the window itself; callers cannot override it via update().
_WINDOW_OWNED_FIELDS = frozenset(
    {"sequence_number", "is_archived", "has_tool_use", "has_tool_result", "updated_at"},
)


class WindowState(BaseModel):
    """Serializable state of a window, used for persistence round-trips."""

    sequence: int = 0
    messages: list[Message] = Field(default_factory=list)


def determine_split(
    messages: Sequence[Message],
    *,
    threshold: int,
    target_tokens: int | None = None,
    overlap_tokens: int = 0,
) -> int:
    """Return the index of the first active message.

    The ``threshold`` newest messages are always active. With a token budget,
    older messages stay active as long as they fit, plus an overlap margin.
    The result is snapped back to the nearest preceding genuine user turn.
    """
    total = len(messages)
    if total == 0:
        return 0

    cut = max(0, total - threshold)
    if target_tokens is not None:
        cut = min(cut, _budget_cut(messages, target_tokens, overlap_tokens))
    if cut == 0:
        return 0

    for index in range(cut, -1, -1):
        if messages[index].is_genuine_user_turn:
            return index
    return 0


def _budget_cut(messages: Sequence[Message], target_tokens: int, overlap_tokens: int) -> int:
    """Walk from the newest message and return where the budget runs out."""
    start = len(messages)
    used = 0
    for index in range(len(messages) - 1, -1, -1):
        cost = estimate_message_tokens(messages[index])
        # The newest message is always kept, even if it alone exceeds the budget.
        if used + cost > target_tokens and start < len(messages):
            break
        used += cost
        start = index

    extra = 0
    while start > 0:
        cost = estimate_message_tokens(messages[start - 1])
        if extra + cost > overlap_tokens:
            break
        extra += cost
        start -= 1
    return start


class ConversationWindow:
    """Canonical, ordered message list of one conversation.

    Readers receive deep copies; the only way to change a message is through
    the window, which keeps the split and change notifications consistent.
    """

    def __init__(
        self,
        *,
        threshold: int = DEFAULT_THRESHOLD,
        target_tokens: int | None = None,
        overlap_tokens: int = DEFAULT_OVERLAP_TOKENS,
    ) -> None:
        """Initialize an empty window."""
        _validate_threshold(threshold)
        self._threshold = threshold
        self.target_tokens = target_tokens
        self.overlap_tokens = overlap_tokens
        self._messages: dict[str, Message] = {}
        self._order: list[str] = []
        self._sequence = 0
        self._split = 0
        self._callbacks: list[Callable[[tuple[Message, ...]], None]] = []
        self._batch_depth = 0
        self._pending_notify = False

    @property
    def threshold(self) -> int:
        """Number of newest messages that are always active."""
        return self._threshold

    @property
    def sequence(self) -> int:
        """The last assigned sequence number."""
        return self._sequence

    @property
    def split_index(self) -> int:
        """Index of the first active message."""
        return self._split

    def __len__(self) -> int:
        """Number of messages in the window."""
        return len(self._order)

    def __contains__(self, message_id: object) -> bool:
        """Whether a message with this id exists."""
        return message_id in self._messages

    # --- Reads ---

    def get(self, message_id: str) -> Message:
        """Return a copy of one message."""
        return self._require(message_id).model_copy(deep=True)

    def messages(self) -> tuple[Message, ...]:
        """Return an immutable snapshot of all messages in order."""
        return tuple(self._messages[mid].model_copy(deep=True) for mid in self._order)

    def active_messages(self) -> tuple[Message, ...]:
        """Messages sent to the model on the next turn."""
        return self.messages()[self._split :]

    def archived_messages(self) -> tuple[Message, ...]:
        """Messages represented by the rolling summary."""
        return self.messages()[: self._split]

    def state(self) -> WindowState:
        """Return the serializable state of the window."""
        return WindowState(sequence=self._sequence, messages=list(self.messages()))

    def stats(self) -> dict[str, Any]:
        """Return message count, average rating, and distinct tags."""
        messages = [self._messages[mid] for mid in self._order]
        ratings = [m.metadata.user_rating for m in messages]
        tags = [tag for m in messages for tag in m.metadata.tags]
        return {
            "total_messages": len(messages),
            "average_rating": sum(ratings) / len(ratings) if ratings else 0.0,
            "top_tags": list(dict.fromkeys(tags)),
        }

    # --- Mutations ---

    def append(self, message: Message) -> Message:
        """Insert a message at the end and assign its sequence number."""
        if message.id in self._messages:
            msg = f"Message with id {message.id} already exists"
            raise ValueError(msg)

        stored = message.model_copy(deep=True)
        self._sequence += 1
        stored.metadata.sequence_number = self._sequence
        stored.metadata.is_archived = False
        stored.refresh_flags()
        if not stored.metadata.tags:
            stored.metadata.tags = extract_tags(stored.text)

        self._messages[stored.id] = stored
        self._order.append(stored.id)
        LOGGER.debug("Appended message %s (seq=%d, role=%s)", stored.id, self._sequence, stored.role)
        self._commit()
        return stored.model_copy(deep=True)

    def update(
        self,
        message_id: str,
        *,
        content: Sequence[ContentBlock | dict[str, Any]] | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> Message:
        """Merge new content and metadata into an existing message."""
        message = self._require(message_id)

        if content is not None:
            message.content = _CONTENT_ADAPTER.validate_python(list(content))

        merged = message.metadata.model_dump()
        if metadata:
            unknown = set(metadata) - set(MessageMetadata.model_fields)
            if unknown:
                msg = f"Unknown metadata fields: {sorted(unknown)}"
                raise ValueError(msg)
            ignored = set(metadata) & _WINDOW_OWNED_FIELDS
            if ignored:
                LOGGER.debug("Ignoring window-owned metadata fields: %s", sorted(ignored))
            merged.update({k: v for k, v in metadata.items() if k not in _WINDOW_OWNED_FIELDS})
        merged["updated_at"] = utcnow()
        message.metadata = MessageMetadata.model_validate(merged)
        message.refresh_flags()

        self._commit()
        return message.model_copy(deep=True)

    def set_rating(self, message_id: str, rating: int) -> Message:
        """Set the user rating of a message (0-5)."""
        if not 0 <= rating <= 5:  # noqa: PLR2004
            msg = "Rating must be between 0 and 5"
            raise ValueError(msg)
        return self.update(message_id, metadata={"user_rating": rating})

    def delete(self, message_id: str) -> None:
        """Remove a message. Only collaborators delete; the turn loop never does."""
        self._require(message_id)
        del self._messages[message_id]
        self._order.remove(message_id)
        LOGGER.debug("Deleted message %s", message_id)
        self._commit()

    def clear(self) -> None:
        """Remove all messages and reset the sequence counter."""
        self._messages.clear()
        self._order.clear()
        self._sequence = 0
        self._split = 0
        self._notify()

    def set_threshold(self, threshold: int) -> None:
        """Change the number of guaranteed-active messages."""
        _validate_threshold(threshold)
        self._threshold = threshold
        self.recompute_split()

    def load(self, messages: Sequence[Message], *, sequence: int | None = None) -> None:
        """Replace the contents with previously persisted messages."""
        self._messages.clear()
        self._order.clear()
        self._sequence = max(
            [sequence or 0, *(m.metadata.sequence_number for m in messages)],
        )
        # Unnumbered messages keep their relative order after the numbered ones.
        ordered = sorted(
            messages,
            key=lambda m: (m.metadata.sequence_number <= 0, m.metadata.sequence_number),
        )
        for message in ordered:
            stored = message.model_copy(deep=True)
            if stored.id in self._messages:
                LOGGER.warning("Skipping duplicate persisted message %s", stored.id)
                continue
            if stored.metadata.sequence_number <= 0:
                self._sequence += 1
                stored.metadata.sequence_number = self._sequence
            if stored.metadata.is_streaming:
                # Persisted mid-stream: the turn never finished.
                stored.metadata.is_streaming = False
                stored.metadata.interrupted = True
            stored.refresh_flags()
            self._messages[stored.id] = stored
            self._order.append(stored.id)
        LOGGER.info("Restored %d messages (sequence=%d)", len(self._order), self._sequence)
        self._commit()

    def recompute_split(self) -> bool:
        """Recompute archive flags; notify only if any flag changed."""
        changed = self._recompute()
        if changed:
            self._notify()
        return changed

    # --- Notifications ---

    def on_change(self, callback: Callable[[tuple[Message, ...]], None]) -> Callable[[], None]:
        """Subscribe to committed changes. Returns an unsubscribe function."""
        self._callbacks.append(callback)

        def unsubscribe() -> None:
            with contextlib.suppress(ValueError):
                self._callbacks.remove(callback)

        return unsubscribe

    @contextlib.contextmanager
    def batch(self) -> Iterator[None]:
        """Coalesce all mutations inside the block into one notification."""
        self._batch_depth += 1
        try:
            yield
        finally:
            self._batch_depth -= 1
            if self._batch_depth == 0 and self._pending_notify:
                self._pending_notify = False
                self._emit()

    # --- Internals ---

    def _require(self, message_id: str) -> Message:
        try:
            return self._messages[message_id]
        except KeyError:
            raise MessageNotFoundError(message_id) from None

    def _commit(self) -> None:
        self._recompute()
        self._notify()

    def _recompute(self) -> bool:
        ordered = [self._messages[mid] for mid in self._order]
        split = determine_split(
            ordered,
            threshold=self._threshold,
            target_tokens=self.target_tokens,
            overlap_tokens=self.overlap_tokens,
        )
        changed = False
        for index, message in enumerate(ordered):
            archived = index < split
            if message.metadata.is_archived != archived:
                message.metadata.is_archived = archived
                changed = True
        if split != self._split:
            LOGGER.debug("Split moved %d -> %d (%d messages)", self._split, split, len(ordered))
        self._split = split
        return changed

    def _notify(self) -> None:
        if self._batch_depth:
            self._pending_notify = True
            return
        self._emit()

    def _emit(self) -> None:
        snapshot = self.messages()
        for callback in list(self._callbacks):
            try:
                callback(snapshot)
            except Exception:
                LOGGER.exception("Change subscriber failed")


def _validate_threshold(threshold: int) -> None:
    if threshold < 1:
        msg = f"threshold must be >= 1, got {threshold}"
        raise ValueError(msg)
