"""Wire decoding, tool-input repair, and reassembly of streamed model turns."""

from converse_core.stream.events import MalformedEvent, StreamEvent, parse_event
from converse_core.stream.reassembler import (
    ReassemblyResult,
    StreamReassembler,
    ToolInputRepairFailure,
)
from converse_core.stream.repair import parse_tool_input, repair_tool_input
from converse_core.stream.transport import HttpModelTransport

__all__ = [
    "HttpModelTransport",
    "MalformedEvent",
    "ReassemblyResult",
    "StreamEvent",
    "StreamReassembler",
    "ToolInputRepairFailure",
    "parse_event",
    "parse_tool_input",
    "repair_tool_input",
]
