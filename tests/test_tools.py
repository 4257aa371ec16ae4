"""Tests for the tool registry dispatcher."""

from __future__ import annotations

import asyncio
import json

import pytest

from converse_core.entities import ToolUseBlock
from converse_core.errors import ToolExecutionError
from converse_core.interfaces import ToolDispatcher
from converse_core.tools import ToolRegistry, strip_cdata


@pytest.fixture
def registry() -> ToolRegistry:
    """Provide a registry with a few sample tools."""
    tools = ToolRegistry()

    @tools.tool(input_schema={"type": "object", "properties": {"a": {"type": "number"}}})
    def double(a: float) -> float:
        """Double a number."""
        return a * 2

    @tools.tool(name="fetch_page")
    async def fetch(url: str) -> dict[str, str]:
        await asyncio.sleep(0)
        return {"url": url, "html": "<![CDATA[<p>hello</p>]]>"}

    @tools.tool()
    def greet(name: str) -> str:
        return f"<![CDATA[Hello {name}]]>"

    return tools


def _use(name: str, /, **tool_input: object) -> ToolUseBlock:
    return ToolUseBlock(name=name, tool_use_id=f"id-{name}", input=dict(tool_input))


def test_registry_is_a_dispatcher(registry: ToolRegistry) -> None:
    """The registry satisfies the dispatcher protocol."""
    assert isinstance(registry, ToolDispatcher)


def test_tool_specs(registry: ToolRegistry) -> None:
    """Specs use the Converse toolSpec shape and the docstring as description."""
    specs = registry.tool_specs()
    assert [s["toolSpec"]["name"] for s in specs] == ["double", "fetch_page", "greet"]
    assert specs[0]["toolSpec"]["description"] == "Double a number."
    assert specs[0]["toolSpec"]["inputSchema"]["json"]["properties"] == {"a": {"type": "number"}}
    assert specs[2]["toolSpec"]["inputSchema"]["json"] == {"type": "object", "properties": {}}


@pytest.mark.asyncio
async def test_sync_tool(registry: ToolRegistry) -> None:
    """Non-string results are JSON serialized."""
    result = await registry.execute(_use("double", a=21))
    assert result.tool_use_id == "id-double"
    assert result.status == "success"
    assert json.loads(result.content) == 42


@pytest.mark.asyncio
async def test_async_tool_strips_cdata(registry: ToolRegistry) -> None:
    """Async tools are awaited and CDATA wrappers removed from string fields."""
    result = await registry.execute(_use("fetch_page", url="https://example.com"))
    assert json.loads(result.content) == {"url": "https://example.com", "html": "<p>hello</p>"}


@pytest.mark.asyncio
async def test_string_result_strips_cdata(registry: ToolRegistry) -> None:
    """String results are returned as-is apart from CDATA wrappers."""
    result = await registry.execute(_use("greet", name="Ada"))
    assert result.content == "Hello Ada"


@pytest.mark.asyncio
async def test_unknown_tool(registry: ToolRegistry) -> None:
    """Unknown tools raise ToolExecutionError."""
    with pytest.raises(ToolExecutionError, match="Unknown tool requested: nope"):
        await registry.execute(_use("nope"))


@pytest.mark.asyncio
async def test_tool_error_is_wrapped(registry: ToolRegistry) -> None:
    """Exceptions from the tool are wrapped."""
    with pytest.raises(ToolExecutionError, match="Tool execution failed"):
        await registry.execute(_use("double", b=1))


@pytest.mark.asyncio
async def test_unparsed_input_is_rejected(registry: ToolRegistry) -> None:
    """A tool use still holding raw input is never executed."""
    block = ToolUseBlock(name="double", tool_use_id="x", input='{"a": ')
    with pytest.raises(ToolExecutionError, match="unparsed input"):
        await registry.execute(block)


def test_strip_cdata() -> None:
    """Only the wrapper is removed."""
    assert strip_cdata("plain") == "plain"
    assert strip_cdata("a <![CDATA[b\nc]]> d") == "a b\nc d"
