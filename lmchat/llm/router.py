"""
Transport selection.

Sessions and the dispatcher hold an :class:`LLMRouter`, never a concrete
provider, which lets ``/switch`` move a chat from LM Studio to Ollama
between rounds while history stays where it is.
"""

from __future__ import annotations

import logging
from contextlib import aclosing
from typing import AsyncIterator

from lmchat.llm.providers.base import Provider
from lmchat.llm.types import Message, StreamChunk

logger = logging.getLogger(__name__)


class LLMRouter:
    """Named transports plus a pointer to the one in use."""

    def __init__(self) -> None:
        self._providers: dict[str, Provider] = {}
        self._active: str | None = None

    def register_provider(self, name: str, provider: Provider) -> None:
        # First registration becomes the default; re-registering replaces.
        self._providers[name] = provider
        self._active = self._active or name

    def set_active(self, name: str) -> None:
        """Raises ``KeyError`` for a name that was never registered."""
        if name not in self._providers:
            known = ", ".join(self._providers) or "none"
            raise KeyError(f"Unknown provider {name!r} (registered: {known})")
        if name != self._active:
            logger.info("Active transport: %s -> %s", self._active, name)
        self._active = name

    @property
    def active_name(self) -> str | None:
        return self._active

    @property
    def provider_names(self) -> list[str]:
        return list(self._providers)

    @property
    def active_provider(self) -> Provider:
        provider = self._providers.get(self._active) if self._active else None
        if provider is None:
            raise RuntimeError("No active LLM provider")
        return provider

    async def chat(
        self,
        messages: list[Message],
        stream: bool = True,
        timeout: float | None = None,
    ) -> AsyncIterator[StreamChunk]:
        inner = self.active_provider.chat(messages, stream=stream, timeout=timeout)
        async with aclosing(inner) as chunks:
            async for chunk in chunks:
                yield chunk

    async def list_models(self) -> list[str]:
        return await self.active_provider.list_models()

    def count_tokens(self, messages: list[Message]) -> int:
        return self.active_provider.count_tokens(messages)
