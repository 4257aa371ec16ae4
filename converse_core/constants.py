"""Default configuration settings for the conversation engine."""

from __future__ import annotations

# --- Window Configuration ---
DEFAULT_THRESHOLD = 8  # Most recent messages that always stay active
DEFAULT_OVERLAP_TOKENS = 0
MESSAGE_TOKEN_OVERHEAD = 4  # Role markers and separators per message
WORDS_TO_TOKENS = 4 / 3

# --- Summarization ---
DEFAULT_SUMMARY_COOLDOWN_SECONDS = 5.0

# --- Persistence ---
DEFAULT_DEBOUNCE_SECONDS = 0.5

# --- Turn Loop ---
DEFAULT_MAX_TOOL_ROUNDS = 25
DEFAULT_SYSTEM_PROMPT = "You are a helpful assistant with tools."
STOP_REASON_TOOL_USE = "tool_use"
INTERRUPTED_TOOL_RESULT = "Interrupted before execution"

# --- Transport ---
DEFAULT_STREAM_PATH = "/api/ai/stream"
DEFAULT_INVOKE_PATH = "/api/ai"
DEFAULT_REQUEST_TIMEOUT = 120.0
