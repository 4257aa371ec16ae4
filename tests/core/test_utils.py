"""Tests for logging setup."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import pytest
from rich.logging import RichHandler

from converse_core.core.utils import setup_rich_logging

if TYPE_CHECKING:
    from collections.abc import Iterator

    from rich.console import Console


@pytest.fixture
def restore_root_logger() -> Iterator[None]:
    """Put the root logger back after the test."""
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.mark.usefixtures("restore_root_logger")
def test_setup_rich_logging(mock_console: Console) -> None:
    """The root logger gets a single RichHandler writing to the console."""
    setup_rich_logging("debug", console=mock_console)
    root = logging.getLogger()
    assert root.level == logging.DEBUG
    assert len(root.handlers) == 1
    assert isinstance(root.handlers[0], RichHandler)

    logging.getLogger("converse_core.test").info("window recomputed")
    assert "window recomputed" in mock_console.file.getvalue()


@pytest.mark.usefixtures("restore_root_logger")
def test_http_client_quieted_above_debug(mock_console: Console) -> None:
    """httpx request logs are limited to warnings unless debugging."""
    setup_rich_logging("info", console=mock_console)
    assert logging.getLogger("httpx").level == logging.WARNING
