"""Debounced persistence of conversation snapshots."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import TYPE_CHECKING

from converse_core.constants import DEFAULT_DEBOUNCE_SECONDS
from converse_core.errors import PersistenceError

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

LOGGER = logging.getLogger(__name__)


class DebouncedFlusher:
    """Runs a flush coroutine once changes have been quiet for a while.

    Every `schedule` call re-arms the timer, so a burst of streaming updates
    results in a single write. A failed flush keeps the dirty flag and is
    logged, never raised to the caller. A failed timer flush arms the timer
    again, so the write is retried after another delay.
    """

    def __init__(
        self,
        flush: Callable[[], Awaitable[None]],
        *,
        delay_seconds: float = DEFAULT_DEBOUNCE_SECONDS,
    ) -> None:
        """Initialize the flusher.

        Args:
            flush: Coroutine function that writes the latest state.
            delay_seconds: Quiet period before a scheduled flush runs.

        """
        self._flush = flush
        self.delay_seconds = delay_seconds
        self._timer: asyncio.Task[None] | None = None
        self._lock = asyncio.Lock()
        self._dirty = False
        self._closed = False
        self.failures = 0
        self.flush_count = 0

    @property
    def dirty(self) -> bool:
        """Whether there are changes that have not been written yet."""
        return self._dirty

    @property
    def pending(self) -> bool:
        """Whether a timer is armed."""
        return self._timer is not None and not self._timer.done()

    def schedule(self, *_: object) -> None:
        """Mark state dirty and (re)arm the timer.

        Accepts and ignores positional arguments so it can be used directly as
        a change callback.
        """
        if self._closed:
            LOGGER.debug("Ignoring schedule on closed flusher")
            return
        self._dirty = True
        if self._timer is not None:
            self._timer.cancel()
        self._timer = asyncio.get_running_loop().create_task(self._delayed_flush())

    async def flush_now(self) -> bool:
        """Cancel the timer and flush synchronously. Returns success."""
        await self._cancel_timer()
        return await self._flush_if_dirty()

    async def aclose(self) -> None:
        """Flush pending changes and stop accepting new ones."""
        self._closed = True
        await self.flush_now()

    async def _delayed_flush(self) -> None:
        await asyncio.sleep(self.delay_seconds)
        # Detach so a schedule() during the write arms a new timer instead of
        # cancelling this one mid-flush.
        self._timer = None
        if await self._flush_if_dirty() or self._closed or self._timer is not None:
            return
        self._timer = asyncio.get_running_loop().create_task(self._delayed_flush())

    async def _cancel_timer(self) -> None:
        timer, self._timer = self._timer, None
        if timer is not None and not timer.done():
            timer.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await timer

    async def _flush_if_dirty(self) -> bool:
        async with self._lock:
            if not self._dirty:
                return True
            self._dirty = False
            try:
                await self._flush()
            except Exception as exc:
                self._dirty = True
                self.failures += 1
                error = PersistenceError(f"Flush failed: {exc}")
                LOGGER.error("%s (will retry on next cycle)", error, exc_info=exc)  # noqa: TRY400
                return False
            self.flush_count += 1
            return True
