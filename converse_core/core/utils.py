"""Shared helpers for hosts embedding the engine."""

from __future__ import annotations

import logging

from rich.console import Console
from rich.logging import RichHandler


def setup_rich_logging(log_level: str = "info", *, console: Console | None = None) -> None:
    """Configure the root logger to use Rich for readable output.

    Args:
        log_level: Logging level (debug, info, warning, error).
        console: Optional Rich console to use (creates new one if not provided).

    """
    level = getattr(logging, log_level.upper(), logging.INFO)
    rich_console = console or Console()

    handler = RichHandler(
        console=rich_console,
        show_time=True,
        show_level=True,
        show_path=False,
        rich_tracebacks=True,
        markup=False,
    )
    handler.setFormatter(logging.Formatter("%(message)s"))

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    # Keep the HTTP client quiet unless debugging.
    if level > logging.DEBUG:
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("httpcore").setLevel(logging.WARNING)
