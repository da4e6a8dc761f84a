"""
Transport for a local Ollama daemon.

``POST /api/chat`` streams one JSON object per line; the last has
``"done": true``.  Thinking models report rationale in
``message.thinking``.  Failures mid-stream arrive as ``{"error": "..."}``
lines rather than HTTP statuses.
"""

from __future__ import annotations

import json
import logging
from typing import AsyncIterator

import httpx

from lmchat.errors import TransportError
from lmchat.llm.providers.base import HTTPProvider
from lmchat.llm.token_counter import TokenCounter
from lmchat.llm.types import Message, StreamChunk

logger = logging.getLogger(__name__)


def _to_chunk(obj: dict, *, final: bool = False) -> StreamChunk:
    message = obj.get("message") or {}
    return StreamChunk(
        delta=message.get("content") or "",
        reasoning=message.get("thinking") or "",
        done=final or bool(obj.get("done")),
        finish_reason=obj.get("done_reason"),
    )


class OllamaProvider(HTTPProvider):
    """
    Parameters
    ----------
    url:
        Daemon root, ``http://localhost:11434`` unless Ollama was moved.
    model:
        Tag as shown by ``ollama list``.
    max_context:
        Context window to budget against; Ollama does not report it.
    max_output:
        Sent as ``options.num_predict``.
    """

    label = "Ollama"

    def __init__(
        self,
        url: str = "http://localhost:11434",
        model: str = "llama3",
        temperature: float = 0.7,
        timeout: float = 60.0,
        max_context: int = 8192,
        max_output: int = 2000,
        token_counter: TokenCounter | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__(
            url, model, temperature, timeout, max_context, max_output, token_counter, transport
        )

    @property
    def name(self) -> str:
        return "ollama"

    async def chat(
        self,
        messages: list[Message],
        stream: bool = True,
        timeout: float | None = None,
    ) -> AsyncIterator[StreamChunk]:
        payload = {
            "model": self._model,
            "messages": self._wire_messages(messages),
            "stream": stream,
            "options": {"temperature": self._temperature, "num_predict": self._max_output},
        }
        try:
            async with self._client(timeout) as client:
                if not stream:
                    resp = await client.post(f"{self._url}/api/chat", json=payload)
                    resp.raise_for_status()
                    yield _to_chunk(resp.json(), final=True)
                    return
                async with client.stream("POST", f"{self._url}/api/chat", json=payload) as resp:
                    if resp.is_error:
                        await resp.aread()
                    resp.raise_for_status()
                    async for chunk in self._lines(resp):
                        yield chunk
        except httpx.HTTPError as exc:
            raise self._failure(exc) from exc

    async def _lines(self, resp: httpx.Response) -> AsyncIterator[StreamChunk]:
        async for line in resp.aiter_lines():
            if not line.strip():
                continue
            try:
                obj = json.loads(line)
            except json.JSONDecodeError:
                logger.warning("Skipping malformed Ollama line: %.200s", line)
                continue
            if "error" in obj:
                raise TransportError(f"Ollama error: {obj['error']}")
            chunk = _to_chunk(obj)
            yield chunk
            if chunk.done:
                return
        yield StreamChunk(done=True)

    async def list_models(self) -> list[str]:
        """``GET /api/tags``."""
        try:
            async with self._client(5.0) as client:
                resp = await client.get(f"{self._url}/api/tags")
                resp.raise_for_status()
                body = resp.json()
        except httpx.HTTPError as exc:
            raise self._failure(exc) from exc
        return [m["name"] for m in body.get("models", []) if m.get("name")]
