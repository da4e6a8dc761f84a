"""
Client-side reducer that folds round events into a displayable transcript.

A consumer calls :meth:`ClientReducer.begin` when it sends a message, then
feeds every received event to :meth:`ClientReducer.apply`.  The whole round
(every pass, every function call) is shown as one assistant message.
Deliveries that do not belong to the current round, that repeat a ``seq``
already seen, or that arrive after the round's terminal event are ignored.
"""

from __future__ import annotations

import logging

from lmchat.llm.types import CHANNEL_REASONING
from lmchat.session.events import (
    ChunkEvent,
    CompleteEvent,
    ErrorEvent,
    FunctionCallEvent,
    StreamEvent,
)
from lmchat.session.models import ChatMessage, ChatRole

logger = logging.getLogger(__name__)


class ClientReducer:
    def __init__(self) -> None:
        self.messages: list[ChatMessage] = []
        self.round_id: str | None = None
        self._current: ChatMessage | None = None
        self._seen: set[int] = set()
        self._stale: set[str] = set()
        self._terminated = False

    @property
    def current(self) -> ChatMessage | None:
        """The in-flight assistant message, or ``None`` between rounds."""
        return self._current

    @property
    def streaming(self) -> bool:
        return self._current is not None and not self._terminated

    def add_user_message(self, text: str) -> ChatMessage:
        msg = ChatMessage(role=ChatRole.USER, content=text)
        msg.finalize()
        self.messages.append(msg)
        return msg

    def begin(self, round_id: str) -> ChatMessage:
        """Open the in-flight assistant message for *round_id*."""
        if self.round_id is not None and not self._terminated:
            self._stale.add(self.round_id)
        self.round_id = round_id
        self._seen = set()
        self._terminated = False
        self._current = ChatMessage(role=ChatRole.ASSISTANT, round_id=round_id)
        self.messages.append(self._current)
        return self._current

    def cancel(self) -> None:
        """Mark the current round stale; its late events will be ignored."""
        if self.round_id is None:
            return
        self._stale.add(self.round_id)
        if self._current is not None:
            if self._current.is_empty:
                self.messages.remove(self._current)
            else:
                self._current.finalize()
        self._current = None
        self._terminated = True

    def apply(self, event: StreamEvent) -> bool:
        """Fold *event* into the transcript.  Returns ``False`` if ignored."""
        if (
            event.round_id != self.round_id
            or event.round_id in self._stale
            or self._terminated
            or self._current is None
        ):
            logger.debug("Ignoring %s event for round %s", event.type, event.round_id)
            return False
        if event.seq in self._seen:
            logger.debug("Ignoring duplicate seq %d", event.seq)
            return False
        self._seen.add(event.seq)

        msg = self._current
        if isinstance(event, ChunkEvent):
            if event.channel == CHANNEL_REASONING:
                msg.append_reasoning(event.text)
            else:
                msg.append_content(event.text)
        elif isinstance(event, FunctionCallEvent):
            msg.add_function_call(event.record)
        elif isinstance(event, ErrorEvent):
            err = ChatMessage(role=ChatRole.ERROR, content=event.message, round_id=event.round_id)
            err.finalize()
            self.messages[self.messages.index(msg)] = err
            self._finish()
        elif isinstance(event, CompleteEvent):
            msg.finalize()
            self._finish()
        else:
            return False
        return True

    def _finish(self) -> None:
        self._terminated = True
        self._current = None

    def clear(self) -> None:
        self.messages.clear()
        if self.round_id is not None:
            self._stale.add(self.round_id)
        self._current = None
        self._terminated = True
