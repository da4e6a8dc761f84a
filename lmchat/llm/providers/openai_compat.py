"""
Transport for servers speaking the OpenAI ``/v1/chat/completions`` protocol.

LM Studio is the default target; llama.cpp server and vLLM answer the same
requests.  Streaming uses Server-Sent Events::

    data: {"choices": [{"delta": {"content": "Hel"}}]}
    data: {"choices": [{"delta": {"reasoning": "The user wants"}}]}
    data: [DONE]

Reasoning models put their rationale in ``delta.reasoning`` (LM Studio) or
``delta.reasoning_content`` (vLLM); either lands on the reasoning channel.
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

_RETRY_STATUSES = frozenset({429, 500, 502, 503, 504})


def _reasoning_of(part: dict) -> str:
    return part.get("reasoning") or part.get("reasoning_content") or ""


class OpenAICompatProvider(HTTPProvider):
    """
    Parameters
    ----------
    url:
        API root including the version segment, e.g. ``http://localhost:1234/v1``.
    model:
        Sent as ``model``.  LM Studio answers with whatever is loaded when
        this is empty.
    api_key:
        Bearer token, for servers started with authentication.
    max_retries:
        Extra attempts after a 429/5xx or connection failure, made only
        while nothing has been streamed yet.
    max_output:
        Sent as ``max_tokens``.
    """

    def __init__(
        self,
        url: str = "http://localhost:1234/v1",
        model: str = "",
        api_key: str = "",
        temperature: float = 0.7,
        timeout: float = 60.0,
        max_retries: int = 0,
        max_context: int = 8_192,
        max_output: int = 2_000,
        token_counter: TokenCounter | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__(
            url, model, temperature, timeout, max_context, max_output, token_counter, transport
        )
        self._api_key = api_key
        self._max_retries = max(0, max_retries)

    @property
    def name(self) -> str:
        return "lmstudio"

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "text/event-stream"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    def _payload(self, messages: list[Message], stream: bool) -> dict:
        return {
            "model": self._model,
            "messages": self._wire_messages(messages),
            "temperature": self._temperature,
            "max_tokens": self._max_output,
            "stream": stream,
        }

    async def chat(
        self,
        messages: list[Message],
        stream: bool = True,
        timeout: float | None = None,
    ) -> AsyncIterator[StreamChunk]:
        payload = self._payload(messages, stream)
        logger.debug("POST chat/completions model=%r messages=%d", self._model, len(messages))
        if not stream:
            yield await self._complete(payload, timeout)
            return

        attempts = 1 + self._max_retries
        for attempt in range(1, attempts + 1):
            started = False
            try:
                async with self._client(timeout) as client:
                    async with client.stream(
                        "POST",
                        f"{self._url}/chat/completions",
                        json=payload,
                        headers=self._headers(),
                    ) as response:
                        if response.is_error:
                            await response.aread()
                            status = response.status_code
                            if status in _RETRY_STATUSES and attempt < attempts:
                                logger.info(
                                    "Server answered %d, attempt %d/%d", status, attempt, attempts
                                )
                                continue
                            message = f"Model server returned status {status}"
                            detail = response.text[:200].strip()
                            raise TransportError(
                                f"{message}: {detail}" if detail else message,
                                status_code=status,
                            )
                        async for chunk in self._events(response):
                            started = True
                            yield chunk
                        return
            except httpx.HTTPError as exc:
                if started or attempt == attempts:
                    raise self._failure(exc) from exc
                logger.info("Request failed (%s), attempt %d/%d", exc, attempt, attempts)

    async def _events(self, response: httpx.Response) -> AsyncIterator[StreamChunk]:
        async for raw in response.aiter_lines():
            if not raw.startswith("data:"):
                continue  # blank separators and ": keep-alive" comments
            data = raw[5:].strip()
            if data == "[DONE]":
                break
            try:
                event = json.loads(data)
            except json.JSONDecodeError:
                logger.warning("Skipping malformed SSE payload: %.200s", data)
                continue
            choices = event.get("choices") if isinstance(event, dict) else None
            if not choices:
                continue
            delta = choices[0].get("delta") or {}
            yield StreamChunk(
                delta=delta.get("content") or "",
                reasoning=_reasoning_of(delta),
                finish_reason=choices[0].get("finish_reason"),
            )
        yield StreamChunk(done=True)

    async def _complete(self, payload: dict, timeout: float | None) -> StreamChunk:
        try:
            async with self._client(timeout) as client:
                resp = await client.post(
                    f"{self._url}/chat/completions", json=payload, headers=self._headers()
                )
                resp.raise_for_status()
                body = resp.json()
        except httpx.HTTPError as exc:
            raise self._failure(exc) from exc
        except ValueError as exc:
            raise TransportError(f"Model server sent invalid JSON: {exc}") from exc

        try:
            choice = body["choices"][0]
            message = choice["message"]
        except (KeyError, IndexError, TypeError) as exc:
            raise TransportError("Invalid response from model server: no message") from exc
        return StreamChunk(
            delta=message.get("content") or "",
            reasoning=_reasoning_of(message),
            done=True,
            finish_reason=choice.get("finish_reason"),
        )

    async def list_models(self) -> list[str]:
        """``GET /models``.  Also serves as the connection check."""
        try:
            async with self._client(5.0) as client:
                resp = await client.get(f"{self._url}/models", headers=self._headers())
                resp.raise_for_status()
                body = resp.json()
        except httpx.HTTPError as exc:
            raise self._failure(exc) from exc
        except ValueError as exc:
            raise TransportError(f"Model server sent invalid JSON: {exc}") from exc

        entries = body.get("data") if isinstance(body, dict) else None
        if not isinstance(entries, list):
            raise TransportError("Invalid response from model server: expected a 'data' list")
        return [e["id"] for e in entries if isinstance(e, dict) and e.get("id")]
