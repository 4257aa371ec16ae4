"""Name-based tool registry used as the default tool dispatcher."""

from __future__ import annotations

import inspect
import json
import logging
import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from converse_core.entities import ToolResultBlock
from converse_core.errors import ToolExecutionError

if TYPE_CHECKING:
    from collections.abc import Callable

    from converse_core.entities import ToolUseBlock

LOGGER = logging.getLogger(__name__)

_CDATA_RE = re.compile(r"<!\[CDATA\[(.*?)\]\]>", re.DOTALL)


@dataclass
class RegisteredTool:
    """A callable plus the spec advertised to the model."""

    name: str
    func: Callable[..., Any]
    description: str = ""
    input_schema: dict[str, Any] = field(
        default_factory=lambda: {"type": "object", "properties": {}},
    )

    def spec(self) -> dict[str, Any]:
        """Return the Converse ``toolSpec`` entry for this tool."""
        return {
            "toolSpec": {
                "name": self.name,
                "description": self.description,
                "inputSchema": {"json": self.input_schema},
            },
        }


def strip_cdata(text: str) -> str:
    """Remove ``<![CDATA[...]]>`` wrappers, keeping their contents."""
    if "CDATA[" not in text:
        return text
    return _CDATA_RE.sub(r"\1", text)


def _serialize_result(result: Any) -> str:
    if isinstance(result, str):
        return strip_cdata(result)
    if isinstance(result, dict):
        result = {k: strip_cdata(v) if isinstance(v, str) else v for k, v in result.items()}
    return json.dumps(result, default=str)


class ToolRegistry:
    """Dispatches tool uses to registered sync or async callables.

    Each callable receives the parsed tool input as keyword arguments.
    """

    def __init__(self) -> None:
        """Initialize an empty registry."""
        self._tools: dict[str, RegisteredTool] = {}

    def register(
        self,
        name: str,
        func: Callable[..., Any],
        *,
        description: str | None = None,
        input_schema: dict[str, Any] | None = None,
    ) -> RegisteredTool:
        """Register a callable under ``name``, replacing any previous one."""
        if name in self._tools:
            LOGGER.warning("Replacing already registered tool %s", name)
        tool = RegisteredTool(
            name=name,
            func=func,
            description=description if description is not None else inspect.getdoc(func) or "",
        )
        if input_schema is not None:
            tool.input_schema = input_schema
        self._tools[name] = tool
        return tool

    def tool(
        self,
        name: str | None = None,
        *,
        description: str | None = None,
        input_schema: dict[str, Any] | None = None,
    ) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
        """Register the decorated function as a tool."""

        def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
            self.register(
                name or func.__name__,
                func,
                description=description,
                input_schema=input_schema,
            )
            return func

        return decorator

    def __contains__(self, name: object) -> bool:
        """Whether a tool with this name is registered."""
        return name in self._tools

    def tool_specs(self) -> list[dict[str, Any]]:
        """Specs of all registered tools, in registration order."""
        return [tool.spec() for tool in self._tools.values()]

    async def execute(self, tool_use: ToolUseBlock) -> ToolResultBlock:
        """Run the tool named by ``tool_use``.

        Raises:
            ToolExecutionError: If the tool is unknown, its input was never
                parsed, or the tool itself raises.

        """
        tool = self._tools.get(tool_use.name)
        if tool is None:
            msg = f"Unknown tool requested: {tool_use.name}"
            raise ToolExecutionError(msg)
        if not isinstance(tool_use.input, dict):
            msg = f"Tool {tool_use.name} has unparsed input"
            raise ToolExecutionError(msg)

        LOGGER.info("Executing tool %s (%s)", tool_use.name, tool_use.tool_use_id)
        try:
            result = tool.func(**tool_use.input)
            if inspect.isawaitable(result):
                result = await result
        except ToolExecutionError:
            raise
        except Exception as exc:
            msg = f"Tool execution failed: {exc}"
            raise ToolExecutionError(msg) from exc

        return ToolResultBlock(
            tool_use_id=tool_use.tool_use_id,
            content=_serialize_result(result),
            status="success",
        )
