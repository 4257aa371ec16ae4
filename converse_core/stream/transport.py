"""HTTP model transport speaking the Converse-style JSON protocol."""

from __future__ import annotations

import contextlib
import logging
from typing import TYPE_CHECKING, Any

import httpx

from converse_core.constants import (
    DEFAULT_INVOKE_PATH,
    DEFAULT_REQUEST_TIMEOUT,
    DEFAULT_STREAM_PATH,
)
from converse_core.entities import Message
from converse_core.errors import NetworkError

if TYPE_CHECKING:
    import asyncio
    from collections.abc import AsyncGenerator, AsyncIterator, Sequence

    from converse_core.config import TransportSettings

LOGGER = logging.getLogger(__name__)


class HttpModelTransport:
    """Streams model turns from an HTTP backend.

    ``POST {base_url}{stream_path}`` answers with one JSON event per line and
    ``POST {base_url}{invoke_path}`` with ``{"output": {"message": ...}}``.
    Both receive ``{modelId, messages, systemPrompt, tools}``.
    """

    def __init__(
        self,
        base_url: str,
        *,
        model_id: str,
        stream_path: str = DEFAULT_STREAM_PATH,
        invoke_path: str = DEFAULT_INVOKE_PATH,
        request_timeout: float = DEFAULT_REQUEST_TIMEOUT,
        headers: dict[str, str] | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the transport.

        Args:
            base_url: Backend root URL.
            model_id: Model identifier sent as ``modelId``.
            stream_path: Path of the streaming endpoint.
            invoke_path: Path of the non-streaming endpoint.
            request_timeout: Timeout in seconds for each request.
            headers: Extra headers, e.g. authorization.
            client: Shared client to use instead of one client per request.

        """
        self.base_url = base_url.rstrip("/")
        self.model_id = model_id
        self.stream_path = stream_path
        self.invoke_path = invoke_path
        self.request_timeout = request_timeout
        self.headers = headers or {}
        self._client = client

    @classmethod
    def from_settings(
        cls,
        settings: TransportSettings,
        *,
        client: httpx.AsyncClient | None = None,
    ) -> HttpModelTransport:
        """Build a transport from validated settings."""
        return cls(
            settings.base_url,
            model_id=settings.model_id,
            stream_path=settings.stream_path,
            invoke_path=settings.invoke_path,
            request_timeout=settings.request_timeout,
            headers=dict(settings.headers),
            client=client,
        )

    def _payload(
        self,
        messages: Sequence[Message],
        system_prompt: str,
        tools: Sequence[dict[str, Any]] = (),
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "modelId": self.model_id,
            "messages": [m.to_wire() for m in messages],
            "systemPrompt": system_prompt,
        }
        if tools:
            payload["tools"] = list(tools)
        return payload

    @contextlib.asynccontextmanager
    async def _session(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._client is not None:
            yield self._client
            return
        async with httpx.AsyncClient(timeout=self.request_timeout) as client:
            yield client

    async def stream_turn(
        self,
        messages: Sequence[Message],
        system_prompt: str,
        tools: Sequence[dict[str, Any]],
        cancel: asyncio.Event | None = None,
    ) -> AsyncGenerator[str, None]:
        """Yield non-empty response lines of one streaming turn.

        Raises:
            NetworkError: On transport failure or a non-2xx response.

        """
        url = f"{self.base_url}{self.stream_path}"
        payload = self._payload(messages, system_prompt, tools)
        LOGGER.debug("Streaming turn with %d messages from %s", len(messages), url)
        try:
            async with (
                self._session() as client,
                client.stream("POST", url, json=payload, headers=self.headers) as response,
            ):
                if not response.is_success:
                    error_text = await response.aread()
                    msg = (
                        f"Stream request failed with status {response.status_code}: "
                        f"{error_text.decode(errors='ignore')[:500]}"
                    )
                    raise NetworkError(msg, status_code=response.status_code)
                async for line in response.aiter_lines():
                    if cancel is not None and cancel.is_set():
                        return
                    if line.strip():
                        yield line
        except httpx.HTTPError as exc:
            msg = f"Stream request to {url} failed: {exc}"
            raise NetworkError(msg) from exc

    async def invoke_once(self, messages: Sequence[Message], system_prompt: str) -> Message:
        """Run one non-streaming request and return the assistant reply.

        Raises:
            NetworkError: On failure, a non-2xx response, or an empty reply.

        """
        url = f"{self.base_url}{self.invoke_path}"
        payload = self._payload(messages, system_prompt)
        try:
            async with self._session() as client:
                response = await client.post(url, json=payload, headers=self.headers)
        except httpx.HTTPError as exc:
            msg = f"Request to {url} failed: {exc}"
            raise NetworkError(msg) from exc

        if not response.is_success:
            msg = f"Request failed with status {response.status_code}: {response.text[:500]}"
            raise NetworkError(msg, status_code=response.status_code)

        try:
            data = response.json()
        except ValueError as exc:
            msg = "LLM response is not valid JSON"
            raise NetworkError(msg, status_code=response.status_code) from exc

        output = data.get("output") if isinstance(data, dict) else None
        message_data = output.get("message") if isinstance(output, dict) else None
        if not isinstance(message_data, dict) or not message_data.get("content"):
            msg = "No content in LLM response"
            raise NetworkError(msg, status_code=response.status_code)
        return Message.from_wire({"role": "assistant", "content": message_data["content"]})
