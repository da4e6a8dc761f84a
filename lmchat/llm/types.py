"""Wire-level types shared by the transport and the dispatcher."""

from __future__ import annotations

from dataclasses import dataclass

CHANNEL_CONTENT = "content"
CHANNEL_REASONING = "reasoning"


@dataclass
class Message:
    """A single message as sent to the inference server."""

    role: str  # "system", "user", "assistant"
    content: str


@dataclass
class StreamChunk:
    """
    A single fragment yielded while streaming a chat completion.

    *delta* carries user-facing answer text, *reasoning* carries text the
    server tagged as model-internal rationale.  Either may be empty.
    *done* is ``True`` on the final chunk.
    """

    delta: str = ""
    reasoning: str = ""
    done: bool = False
    finish_reason: str | None = None
