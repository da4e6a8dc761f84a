"""
Per-session conversation state and its round state machine.

A *round* is everything that happens in response to one user message: one
or more transport requests (passes) separated by function executions.

::

    IDLE -> STREAMING -> AWAITING_TOOL -> STREAMING -> ... -> COMPLETE
                  \\             \\
                   +-> ERRORED    +-> ERRORED / CANCELLED

A new round may start from any state that has no active round.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

from lmchat.errors import InvalidTransition
from lmchat.session.models import ChatMessage, ChatRole

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    IDLE = "idle"
    STREAMING = "streaming"
    AWAITING_TOOL = "awaiting_tool"
    COMPLETE = "complete"
    ERRORED = "errored"
    CANCELLED = "cancelled"


_IDLE_STATES = frozenset(
    {SessionState.IDLE, SessionState.COMPLETE, SessionState.ERRORED, SessionState.CANCELLED}
)

_TRANSITIONS: dict[SessionState, frozenset[SessionState]] = {
    SessionState.IDLE: frozenset({SessionState.STREAMING}),
    SessionState.STREAMING: frozenset(
        {
            SessionState.AWAITING_TOOL,
            SessionState.COMPLETE,
            SessionState.ERRORED,
            SessionState.CANCELLED,
        }
    ),
    SessionState.AWAITING_TOOL: frozenset(
        {
            SessionState.STREAMING,
            SessionState.COMPLETE,
            SessionState.ERRORED,
            SessionState.CANCELLED,
        }
    ),
    SessionState.COMPLETE: frozenset({SessionState.STREAMING}),
    SessionState.ERRORED: frozenset({SessionState.STREAMING}),
    SessionState.CANCELLED: frozenset({SessionState.STREAMING}),
}


@dataclass
class ChatSession:
    id: str
    system_prompt: str = ""
    history: list[ChatMessage] = field(default_factory=list)
    active_round_id: str | None = None
    state: SessionState = SessionState.IDLE
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_active(self) -> bool:
        return self.state not in _IDLE_STATES

    def can_transition(self, new_state: SessionState) -> bool:
        return new_state in _TRANSITIONS[self.state]

    def transition(self, new_state: SessionState) -> None:
        if not self.can_transition(new_state):
            raise InvalidTransition(
                f"Session {self.id}: {self.state.value} -> {new_state.value} is not allowed"
            )
        logger.debug("Session %s: %s -> %s", self.id, self.state.value, new_state.value)
        self.state = new_state

    def in_flight_message(self) -> ChatMessage | None:
        """The assistant message currently being streamed, if any."""
        if self.history:
            last = self.history[-1]
            if last.role == ChatRole.ASSISTANT and not last.finalized:
                return last
        return None
