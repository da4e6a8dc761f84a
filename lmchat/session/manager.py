"""
Session manager.

Owns every :class:`ChatSession` and performs all mutations of session
history and round state, so that the dispatcher and the engine never touch
history directly:

- Create / look up / tear down sessions.
- Start a round (append the user message, allocate a round id).
- Build a token-budgeted model context from history.
- Record function results and finish, fail or cancel rounds.
"""

from __future__ import annotations

import logging
import uuid

from lmchat.errors import SessionBusy, SessionNotFound
from lmchat.functions.registry import FunctionRegistry
from lmchat.llm.types import Message
from lmchat.prompts.composer import compose, render_function_result, render_inline_directive
from lmchat.session.context import ContextPacker
from lmchat.session.models import ChatMessage, ChatRole
from lmchat.session.session import ChatSession, SessionState
from lmchat.types import ContextPackReport, FunctionCallRecord

logger = logging.getLogger(__name__)


class SessionManager:
    """
    Parameters
    ----------
    registry:
        Function registry used to compose the system prompt when tools are
        enabled for a round.
    packer:
        Context packer used by :meth:`build_context`.
    default_system_prompt:
        Base system prompt for sessions created without one.
    reserve_tokens:
        Safety margin subtracted from the context budget.
    """

    def __init__(
        self,
        registry: FunctionRegistry,
        packer: ContextPacker,
        default_system_prompt: str = "",
        reserve_tokens: int = 200,
    ) -> None:
        self.registry = registry
        self.packer = packer
        self.default_system_prompt = default_system_prompt
        self.reserve_tokens = reserve_tokens
        self._sessions: dict[str, ChatSession] = {}

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def get_or_create(self, session_id: str, system_prompt: str | None = None) -> ChatSession:
        """
        Return the session for *session_id*, creating it on first use.

        A non-``None`` *system_prompt* replaces the stored prompt of an
        existing session.
        """
        session = self._sessions.get(session_id)
        if session is None:
            session = ChatSession(
                id=session_id,
                system_prompt=self.default_system_prompt if system_prompt is None else system_prompt,
            )
            self._sessions[session_id] = session
            logger.info("Created session %s", session_id)
        elif system_prompt is not None:
            session.system_prompt = system_prompt
        return session

    def get(self, session_id: str) -> ChatSession:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFound(session_id)
        return session

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def session_ids(self) -> list[str]:
        return list(self._sessions)

    def teardown(self, session_id: str) -> bool:
        """
        Destroy a session.  Any active round is marked cancelled first; the
        caller is responsible for stopping the task that runs it.
        """
        session = self._sessions.pop(session_id, None)
        if session is None:
            return False
        if session.is_active:
            self.cancel_round(session)
        logger.info("Tore down session %s", session_id)
        return True

    # ------------------------------------------------------------------
    # Round lifecycle
    # ------------------------------------------------------------------

    def begin_round(self, session: ChatSession, user_text: str) -> str:
        if session.is_active:
            raise SessionBusy(session.id, session.state.value)
        round_id = uuid.uuid4().hex
        session.transition(SessionState.STREAMING)
        session.active_round_id = round_id
        msg = ChatMessage(role=ChatRole.USER, content=user_text, round_id=round_id)
        msg.finalize()
        session.history.append(msg)
        logger.info("Session %s: round %s started", session.id, round_id)
        return round_id

    def open_assistant_message(self, session: ChatSession) -> ChatMessage:
        msg = ChatMessage(role=ChatRole.ASSISTANT, round_id=session.active_round_id)
        session.history.append(msg)
        return msg

    def await_tool(self, session: ChatSession) -> None:
        session.transition(SessionState.AWAITING_TOOL)

    def add_function_result(self, message: ChatMessage, record: FunctionCallRecord) -> None:
        message.add_function_call(record)

    def resume_after_tools(
        self,
        session: ChatSession,
        message: ChatMessage,
        *,
        continue_round: bool = True,
    ) -> None:
        """
        Finalize the pass's assistant message and append one synthetic user
        message per function result it carries.  With *continue_round* the
        session returns to ``STREAMING`` for the next pass.
        """
        message.finalize()
        for record in message.function_calls:
            synthetic = ChatMessage(
                role=ChatRole.USER,
                content=render_function_result(record),
                synthetic=True,
                round_id=session.active_round_id,
            )
            synthetic.finalize()
            session.history.append(synthetic)
        if continue_round:
            session.transition(SessionState.STREAMING)

    def complete_round(self, session: ChatSession, message: ChatMessage | None = None) -> None:
        if message is not None:
            message.finalize()
        session.transition(SessionState.COMPLETE)
        logger.info("Session %s: round %s complete", session.id, session.active_round_id)
        session.active_round_id = None

    def fail_round(self, session: ChatSession, error_text: str) -> None:
        """Finalize any partial output and record *error_text* as an error message."""
        self._close_in_flight(session)
        err = ChatMessage(role=ChatRole.ERROR, content=error_text, round_id=session.active_round_id)
        err.finalize()
        session.history.append(err)
        if session.can_transition(SessionState.ERRORED):
            session.transition(SessionState.ERRORED)
        logger.warning(
            "Session %s: round %s failed: %s", session.id, session.active_round_id, error_text
        )
        session.active_round_id = None

    def cancel_round(self, session: ChatSession) -> None:
        self._close_in_flight(session)
        if session.can_transition(SessionState.CANCELLED):
            session.transition(SessionState.CANCELLED)
        logger.info("Session %s: round %s cancelled", session.id, session.active_round_id)
        session.active_round_id = None

    @staticmethod
    def _close_in_flight(session: ChatSession) -> None:
        msg = session.in_flight_message()
        if msg is None:
            return
        if msg.is_empty:
            session.history.pop()
        else:
            msg.finalize()

    # ------------------------------------------------------------------
    # Context
    # ------------------------------------------------------------------

    def system_prompt_for(self, session: ChatSession, enable_tools: bool) -> str:
        if enable_tools and len(self.registry):
            return compose(session.system_prompt, self.registry)
        return session.system_prompt

    @staticmethod
    def history_messages(session: ChatSession) -> list[Message]:
        """
        Map history to model messages.  Error messages are left out and
        assistant messages replay their function calls as inline
        directives so the model sees what it asked for.
        """
        out: list[Message] = []
        for msg in session.history:
            if msg.role == ChatRole.ERROR:
                continue
            if msg.role == ChatRole.ASSISTANT:
                parts = [msg.content] if msg.content else []
                parts.extend(
                    render_inline_directive(r.name, r.arguments) for r in msg.function_calls
                )
                if not parts:
                    continue
                out.append(Message(role="assistant", content="\n".join(parts)))
            else:
                out.append(Message(role=msg.role, content=msg.content))
        return out

    def build_context(
        self,
        session: ChatSession,
        *,
        enable_tools: bool,
        max_context_tokens: int,
        max_output_tokens: int,
    ) -> tuple[list[Message], ContextPackReport]:
        """Raises ``ContextBudgetExceeded`` if the latest user message cannot fit."""
        messages, report = self.packer.pack(
            messages=self.history_messages(session),
            system_prompt=self.system_prompt_for(session, enable_tools),
            max_context_tokens=max_context_tokens,
            max_output_tokens=max_output_tokens,
            reserve_tokens=self.reserve_tokens,
        )
        if report.dropped_messages:
            logger.info(
                "Session %s: dropped %d old messages to fit context",
                session.id,
                report.dropped_messages,
            )
        return messages, report
