"""LLM subsystem -- providers, routing, and streaming directive detection."""

from lmchat.llm.types import CHANNEL_CONTENT, CHANNEL_REASONING, Message, StreamChunk
from lmchat.llm.router import LLMRouter
from lmchat.llm.directive_parser import Directive, DirectiveParser
from lmchat.llm.token_counter import TokenCounter

__all__ = [
    "CHANNEL_CONTENT",
    "CHANNEL_REASONING",
    "Directive",
    "DirectiveParser",
    "LLMRouter",
    "Message",
    "StreamChunk",
    "TokenCounter",
]
