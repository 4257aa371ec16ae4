"""Stream reassembly and memory windowing for tool-using model conversations.

Example:
    from converse_core import ConversationOrchestrator, HttpModelTransport, InMemoryStore, ToolRegistry

    tools = ToolRegistry()

    @tools.tool(description="Add two numbers")
    def add(a: float, b: float) -> float:
        return a + b

    transport = HttpModelTransport("http://localhost:3000", model_id="my-model")
    orchestrator = ConversationOrchestrator(transport, tools, InMemoryStore())
    await orchestrator.open_conversation("conv-1")
    outcome = await orchestrator.send("What is 2 + 3?")

"""

from converse_core.config import Settings, load_config, load_settings
from converse_core.entities import (
    Message,
    MessageMetadata,
    SummaryRecord,
    TextBlock,
    ToolResultBlock,
    ToolUseBlock,
)
from converse_core.errors import (
    ConverseError,
    IncompleteStreamError,
    MessageNotFoundError,
    NetworkError,
    PersistenceError,
    StreamAbortedError,
    StreamModelError,
    SummarizationError,
    ToolExecutionError,
    ToolInputRepairError,
    TurnInProgressError,
)
from converse_core.interfaces import ModelTransport, PersistentStore, ToolDispatcher
from converse_core.orchestrator import ConversationOrchestrator, TurnOutcome
from converse_core.store import InMemoryStore
from converse_core.stream import HttpModelTransport, StreamReassembler, parse_event
from converse_core.summarizer import SummaryScheduler
from converse_core.tools import ToolRegistry
from converse_core.window import ConversationWindow

__all__ = [
    "ConversationOrchestrator",
    "ConversationWindow",
    "ConverseError",
    "HttpModelTransport",
    "InMemoryStore",
    "IncompleteStreamError",
    "Message",
    "MessageMetadata",
    "MessageNotFoundError",
    "ModelTransport",
    "NetworkError",
    "PersistenceError",
    "PersistentStore",
    "Settings",
    "StreamAbortedError",
    "StreamModelError",
    "StreamReassembler",
    "SummarizationError",
    "SummaryRecord",
    "SummaryScheduler",
    "TextBlock",
    "ToolDispatcher",
    "ToolExecutionError",
    "ToolInputRepairError",
    "ToolRegistry",
    "ToolResultBlock",
    "ToolUseBlock",
    "TurnInProgressError",
    "TurnOutcome",
    "load_config",
    "load_settings",
    "parse_event",
]
