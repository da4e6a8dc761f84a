"""Exception hierarchy for the chat engine.

Every error carries a machine-readable ``code`` (see
:class:`lmchat.types.ErrorCode`) so it can be folded into a
``FunctionCallRecord`` or an ``error`` event without string matching.
"""

from __future__ import annotations

from lmchat.types import ErrorCode


class LMChatError(Exception):
    """Base class for all engine errors."""

    code: str = ""

    def __init__(self, message: str, code: str | None = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code


# ---------------------------------------------------------------------------
# Transport
# ---------------------------------------------------------------------------


class TransportError(LMChatError):
    """The inference server could not be reached or returned a failure."""

    code = ErrorCode.TRANSPORT_ERROR

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


# ---------------------------------------------------------------------------
# Directives
# ---------------------------------------------------------------------------


class DirectiveParseError(LMChatError):
    """A directive span was found but its JSON payload is malformed."""

    code = ErrorCode.DIRECTIVE_PARSE_ERROR

    def __init__(self, message: str, raw: str = ""):
        super().__init__(message)
        self.raw = raw


# ---------------------------------------------------------------------------
# Function registry / execution
# ---------------------------------------------------------------------------


class UnknownFunction(LMChatError):
    code = ErrorCode.UNKNOWN_FUNCTION

    def __init__(self, name: str):
        super().__init__(f"Unknown function: {name}")
        self.name = name


class ArgumentError(LMChatError):
    code = ErrorCode.ARGUMENT_ERROR

    def __init__(self, name: str, reason: str):
        super().__init__(f"Invalid arguments for {name}: {reason}")
        self.name = name
        self.reason = reason


class ToolTimeout(LMChatError):
    code = ErrorCode.TIMEOUT

    def __init__(self, name: str, timeout: float):
        super().__init__(f"Function {name} timed out after {timeout}s")
        self.name = name
        self.timeout = timeout


class FunctionError(LMChatError):
    """Raised by a function implementation to report a failure to the model."""

    code = ErrorCode.FUNCTION_ERROR


class ToolExecutionError(LMChatError):
    """A function implementation raised something other than FunctionError."""

    code = ErrorCode.TOOL_EXCEPTION

    def __init__(self, name: str, cause: BaseException):
        super().__init__(f"Function {name} failed: {cause}")
        self.name = name
        self.cause = cause


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------


class ContextBudgetExceeded(LMChatError):
    code = ErrorCode.CONTEXT_BUDGET_EXCEEDED


class SessionBusy(LMChatError):
    code = ErrorCode.SESSION_BUSY

    def __init__(self, session_id: str, state: str):
        super().__init__(
            f"Session {session_id} already has an active round (state={state})"
        )
        self.session_id = session_id
        self.state = state


class SessionNotFound(LMChatError):
    code = ErrorCode.SESSION_NOT_FOUND

    def __init__(self, session_id: str):
        super().__init__(f"Session not found: {session_id}")
        self.session_id = session_id


class InvalidTransition(LMChatError):
    code = ErrorCode.INVALID_TRANSITION


class MessageFinalized(LMChatError):
    code = ErrorCode.MESSAGE_FINALIZED
