"""Session management: history, round state, context packing and events."""

from lmchat.session.context import ContextPacker
from lmchat.session.events import (
    EVENT_CHUNK,
    EVENT_COMPLETE,
    EVENT_ERROR,
    EVENT_FUNCTION_CALL,
    ChunkEvent,
    CompleteEvent,
    ErrorEvent,
    EventFactory,
    FunctionCallEvent,
    StreamEvent,
    event_from_dict,
)
from lmchat.session.manager import SessionManager
from lmchat.session.models import ChatMessage, ChatRole
from lmchat.session.session import ChatSession, SessionState

__all__ = [
    "ChatMessage",
    "ChatRole",
    "ChatSession",
    "ContextPacker",
    "SessionManager",
    "SessionState",
    # Events
    "ChunkEvent",
    "CompleteEvent",
    "ErrorEvent",
    "EventFactory",
    "FunctionCallEvent",
    "StreamEvent",
    "event_from_dict",
    # Event type constants
    "EVENT_CHUNK",
    "EVENT_COMPLETE",
    "EVENT_ERROR",
    "EVENT_FUNCTION_CALL",
]
