"""Rolling summarization of archived conversation history.

Example:
    from converse_core.summarizer import SummaryScheduler

    scheduler = SummaryScheduler(transport, store, cooldown_seconds=5.0)
    record = await scheduler.maybe_summarize("conv-1", window.archived_messages())

"""

from converse_core.summarizer.scheduler import SummaryScheduler

__all__ = ["SummaryScheduler"]
