"""Ordered message log with an active/archived split."""

from converse_core.window.window import ConversationWindow, WindowState, determine_split

__all__ = ["ConversationWindow", "WindowState", "determine_split"]
