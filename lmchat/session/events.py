"""
Round event model.

A round delivers its progress to the consumer as an ordered sequence of
typed events.  Every event carries the ``round_id`` and ``session_id`` it
belongs to and a per-round ``seq`` that increases by one with each event,
so consumers can drop stale, duplicated or out-of-order deliveries.

Events serialize to the wire shape used by clients::

    {"type": "chunk", "roundId": "...", "sessionId": "...", "seq": 3,
     "channel": "content", "text": "Hello"}
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, ClassVar

from lmchat.llm.types import CHANNEL_CONTENT, CHANNEL_REASONING
from lmchat.types import FunctionCallRecord

# ---------------------------------------------------------------------------
# Event types
# ---------------------------------------------------------------------------

EVENT_CHUNK = "chunk"
EVENT_FUNCTION_CALL = "functionCall"
EVENT_ERROR = "error"
EVENT_COMPLETE = "complete"

TERMINAL_EVENTS = frozenset({EVENT_ERROR, EVENT_COMPLETE})


@dataclass(frozen=True)
class StreamEvent:
    round_id: str
    session_id: str
    seq: int

    type: ClassVar[str] = ""

    @property
    def terminal(self) -> bool:
        return self.type in TERMINAL_EVENTS

    def _payload(self) -> dict[str, Any]:
        return {}

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "type": self.type,
            "roundId": self.round_id,
            "sessionId": self.session_id,
            "seq": self.seq,
        }
        d.update(self._payload())
        return d


@dataclass(frozen=True)
class ChunkEvent(StreamEvent):
    channel: str
    text: str

    type: ClassVar[str] = EVENT_CHUNK

    def __post_init__(self) -> None:
        if self.channel not in (CHANNEL_CONTENT, CHANNEL_REASONING):
            raise ValueError(f"Unknown chunk channel: {self.channel!r}")

    def _payload(self) -> dict[str, Any]:
        return {"channel": self.channel, "text": self.text}


@dataclass(frozen=True)
class FunctionCallEvent(StreamEvent):
    record: FunctionCallRecord

    type: ClassVar[str] = EVENT_FUNCTION_CALL

    def _payload(self) -> dict[str, Any]:
        return self.record.to_dict()


@dataclass(frozen=True)
class ErrorEvent(StreamEvent):
    message: str
    code: str | None = None

    type: ClassVar[str] = EVENT_ERROR

    def _payload(self) -> dict[str, Any]:
        d: dict[str, Any] = {"message": self.message}
        if self.code:
            d["code"] = self.code
        return d


@dataclass(frozen=True)
class CompleteEvent(StreamEvent):
    type: ClassVar[str] = EVENT_COMPLETE


def event_from_dict(data: dict[str, Any]) -> StreamEvent:
    """Reconstruct an event from the dict produced by ``to_dict``."""
    common = {
        "round_id": data["roundId"],
        "session_id": data.get("sessionId", ""),
        "seq": int(data["seq"]),
    }
    et = data.get("type")
    if et == EVENT_CHUNK:
        return ChunkEvent(channel=data["channel"], text=data["text"], **common)
    if et == EVENT_FUNCTION_CALL:
        return FunctionCallEvent(record=FunctionCallRecord.from_dict(data), **common)
    if et == EVENT_ERROR:
        return ErrorEvent(message=data["message"], code=data.get("code"), **common)
    if et == EVENT_COMPLETE:
        return CompleteEvent(**common)
    raise ValueError(f"Unknown event type: {et!r}")


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------


class EventFactory:
    """Creates the events of one round with consecutive ``seq`` numbers."""

    def __init__(self, session_id: str, round_id: str) -> None:
        self.session_id = session_id
        self.round_id = round_id
        self._seq = 0

    def _next(self) -> dict[str, Any]:
        self._seq += 1
        return {"round_id": self.round_id, "session_id": self.session_id, "seq": self._seq}

    def chunk(self, channel: str, text: str) -> ChunkEvent:
        return ChunkEvent(channel=channel, text=text, **self._next())

    def function_call(self, record: FunctionCallRecord) -> FunctionCallEvent:
        return FunctionCallEvent(record=record, **self._next())

    def error(self, message: str, code: str | None = None) -> ErrorEvent:
        return ErrorEvent(message=message, code=code, **self._next())

    def complete(self) -> CompleteEvent:
        return CompleteEvent(**self._next())
