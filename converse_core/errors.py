"""Exception types raised by the conversation engine."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from converse_core.stream.reassembler import ReassemblyResult


class ConverseError(Exception):
    """Base class for all conversation engine errors."""


class NetworkError(ConverseError):
    """Transport failure or non-2xx response from the model backend."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        """Store the optional HTTP status code."""
        super().__init__(message)
        self.status_code = status_code


class IncompleteStreamError(NetworkError):
    """The line stream ended before a ``messageStop`` event arrived."""

    def __init__(self, message: str, *, partial: ReassemblyResult) -> None:
        """Keep the partially reassembled content."""
        super().__init__(message)
        self.partial = partial


class StreamAbortedError(ConverseError):
    """The caller cancelled the in-flight stream."""


class StreamModelError(ConverseError):
    """The model backend emitted an explicit exception event."""

    def __init__(self, kind: str, message: str) -> None:
        """Store the backend exception kind and message."""
        super().__init__(f"{kind}: {message}")
        self.kind = kind
        self.message = message


class ToolInputRepairError(ConverseError):
    """Accumulated tool input could not be turned into a JSON object."""

    def __init__(self, message: str, *, raw: str) -> None:
        """Keep the raw tool input for diagnostics."""
        super().__init__(message)
        self.raw = raw


class ToolExecutionError(ConverseError):
    """A tool dispatcher failed to execute a tool."""


class PersistenceError(ConverseError):
    """Writing to the persistent store failed."""


class MessageNotFoundError(ConverseError, KeyError):
    """No message with the given id exists in the window."""

    def __init__(self, message_id: str) -> None:
        """Remember the missing id."""
        super().__init__(f"Message with id {message_id} not found")
        self.message_id = message_id

    def __str__(self) -> str:
        """Avoid the quoted ``KeyError`` representation."""
        return f"Message with id {self.message_id} not found"


class TurnInProgressError(ConverseError):
    """A turn was requested while another one is still generating."""


class SummarizationError(ConverseError):
    """Raised when a summarization request fails."""
