"""Conversation messages as held in session history."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from lmchat.errors import MessageFinalized
from lmchat.types import FunctionCallRecord


class ChatRole:
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    ERROR = "error"


@dataclass
class ChatMessage:
    """
    One entry in a session's history.

    Assistant messages grow while a pass streams (``append_content`` /
    ``append_reasoning``) and become immutable once ``finalize`` is called.

    Attributes
    ----------
    synthetic:
        ``True`` for the user-role message that hands a function result back
        to the model.  Such messages are part of the model context but are
        not something the user typed.
    round_id:
        The round that produced the message, if any.
    """

    role: str
    content: str = ""
    reasoning: str | None = None
    function_calls: list[FunctionCallRecord] = field(default_factory=list)
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finalized: bool = False
    synthetic: bool = False
    round_id: str | None = None

    # ------------------------------------------------------------------
    # Mutation while streaming
    # ------------------------------------------------------------------

    def _check_open(self) -> None:
        if self.finalized:
            raise MessageFinalized(f"Message {self.id} is finalized")

    def append_content(self, text: str) -> None:
        self._check_open()
        self.content += text

    def append_reasoning(self, text: str) -> None:
        self._check_open()
        self.reasoning = (self.reasoning or "") + text

    def add_function_call(self, record: FunctionCallRecord) -> None:
        self._check_open()
        self.function_calls.append(record)

    def finalize(self) -> None:
        self.finalized = True

    @property
    def is_empty(self) -> bool:
        return not self.content and not self.reasoning and not self.function_calls

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "role": self.role,
            "content": self.content,
            "reasoning": self.reasoning,
            "function_calls": [r.to_dict() for r in self.function_calls],
            "timestamp": self.timestamp.isoformat(),
            "finalized": self.finalized,
            "synthetic": self.synthetic,
            "round_id": self.round_id,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ChatMessage:
        ts = data.get("timestamp")
        return cls(
            role=data["role"],
            content=data.get("content", ""),
            reasoning=data.get("reasoning"),
            function_calls=[
                FunctionCallRecord.from_dict(r) for r in data.get("function_calls", [])
            ],
            id=data.get("id") or str(uuid.uuid4()),
            timestamp=datetime.fromisoformat(ts) if isinstance(ts, str) else datetime.now(timezone.utc),
            finalized=data.get("finalized", True),
            synthetic=data.get("synthetic", False),
            round_id=data.get("round_id"),
        )
