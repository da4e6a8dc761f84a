"""Interface every model-server transport implements."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import AsyncIterator

import httpx

from lmchat.errors import TransportError
from lmchat.llm.token_counter import TokenCounter
from lmchat.llm.types import Message, StreamChunk


class Provider(ABC):
    """
    One locally hosted model server.

    ``chat`` yields :class:`StreamChunk` fragments, each marked as answer
    text or reasoning, and finishes with a ``done=True`` chunk.  Transport
    problems surface as :class:`lmchat.errors.TransportError`.  Nothing is
    retried unless the concrete transport was built with retries.
    """

    @abstractmethod
    def chat(
        self,
        messages: list[Message],
        stream: bool = True,
        timeout: float | None = None,
    ) -> AsyncIterator[StreamChunk]:
        """Return an async iterator over the completion's fragments."""

    @abstractmethod
    async def list_models(self) -> list[str]:
        """Models the server reports as loaded."""

    @abstractmethod
    def count_tokens(self, messages: list[Message]) -> int:
        ...

    @property
    @abstractmethod
    def name(self) -> str:
        ...

    @property
    @abstractmethod
    def max_context_tokens(self) -> int:
        ...

    @property
    def max_output_tokens(self) -> int:
        return 2000


class HTTPProvider(Provider):
    """
    Shared plumbing for transports that talk HTTP through ``httpx``.

    Subclasses supply the wire format; this class holds connection
    settings, token limits and the client factory.  *transport* lets tests
    inject an ``httpx.MockTransport``.
    """

    label = "the model server"

    def __init__(
        self,
        url: str,
        model: str,
        temperature: float,
        timeout: float,
        max_context: int,
        max_output: int,
        token_counter: TokenCounter | None,
        transport: httpx.AsyncBaseTransport | None,
    ) -> None:
        self._url = url.rstrip("/")
        self._model = model
        self._temperature = temperature
        self._timeout = timeout
        self._max_context = max_context
        self._max_output = max_output
        self._counter = token_counter or TokenCounter()
        self._transport = transport

    @property
    def model(self) -> str:
        return self._model

    @property
    def max_context_tokens(self) -> int:
        return self._max_context

    @property
    def max_output_tokens(self) -> int:
        return self._max_output

    def count_tokens(self, messages: list[Message]) -> int:
        return self._counter.count_messages(messages)

    def _client(self, timeout: float | None = None) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=timeout or self._timeout, transport=self._transport)

    @staticmethod
    def _wire_messages(messages: list[Message]) -> list[dict[str, str]]:
        return [{"role": m.role, "content": m.content} for m in messages]

    def _failure(self, exc: httpx.HTTPError) -> TransportError:
        """Translate an ``httpx`` failure into a :class:`TransportError`."""
        who = self.label.capitalize()
        if isinstance(exc, httpx.HTTPStatusError):
            status = exc.response.status_code
            return TransportError(f"{who} returned status {status}", status_code=status)
        if isinstance(exc, httpx.TimeoutException):
            return TransportError(f"{who} did not answer in time ({self._url})")
        return TransportError(f"Cannot reach {self.label} at {self._url}: {exc}")
