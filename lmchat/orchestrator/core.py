"""
Chat engine -- the host-facing facade over sessions and rounds.

A call to :meth:`ChatEngine.send`:

1. Appends the user message and allocates a round id.
2. Starts the round as a background task and returns its
   :class:`RoundChannel` immediately.
3. Runs passes: build context, stream the completion, and if the model
   asked for functions, execute them in detection order, fold the results
   into history and start a new pass.
4. Ends the round with exactly one ``complete`` or ``error`` event, or
   silently if the round is cancelled.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from lmchat.errors import LMChatError, SessionNotFound
from lmchat.functions.registry import FunctionRegistry
from lmchat.llm.directive_parser import Directive
from lmchat.llm.router import LLMRouter
from lmchat.llm.token_counter import TokenCounter
from lmchat.llm.types import CHANNEL_CONTENT
from lmchat.orchestrator.channel import RoundChannel
from lmchat.orchestrator.dispatcher import StreamDispatcher
from lmchat.orchestrator.executor import ToolExecutor
from lmchat.prompts.composer import compose
from lmchat.session.context import ContextPacker
from lmchat.session.events import EventFactory
from lmchat.session.manager import SessionManager
from lmchat.session.models import ChatMessage
from lmchat.session.session import ChatSession, SessionState

logger = logging.getLogger(__name__)


@dataclass
class SessionHandle:
    session_id: str
    system_prompt: str
    state: SessionState
    message_count: int


@dataclass
class FunctionCatalog:
    functions: list[dict]
    composed_prompt: str


@dataclass
class _ActiveRound:
    round_id: str
    channel: RoundChannel
    task: asyncio.Task


class ChatEngine:
    """
    Parameters
    ----------
    router : LLMRouter
        Transport router.
    registry : FunctionRegistry
        Registered functions, shared by every session.
    system_prompt : str
        Default base system prompt for new sessions.
    token_counter : TokenCounter
        Used to pack history into the context window.
    tool_timeout : float
        Max seconds for a single function execution.
    max_passes : int
        Max transport requests per round before the round is closed with a
        notice instead of another continuation.
    reserve_tokens : int
        Safety margin kept free in the context window.
    request_timeout : float | None
        Per-request transport timeout override.
    """

    def __init__(
        self,
        router: LLMRouter,
        registry: FunctionRegistry,
        system_prompt: str = "",
        token_counter: TokenCounter | None = None,
        tool_timeout: float = 30.0,
        max_passes: int = 8,
        reserve_tokens: int = 200,
        request_timeout: float | None = None,
    ) -> None:
        if max_passes < 1:
            raise ValueError("max_passes must be at least 1")
        self.router = router
        self.registry = registry
        self.max_passes = max_passes
        self.manager = SessionManager(
            registry,
            ContextPacker(token_counter or TokenCounter()),
            default_system_prompt=system_prompt,
            reserve_tokens=reserve_tokens,
        )
        self.dispatcher = StreamDispatcher(router, request_timeout=request_timeout)
        self.executor = ToolExecutor(registry, timeout=tool_timeout)
        self._rounds: dict[str, _ActiveRound] = {}

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def get_or_create_session(
        self, session_id: str, system_prompt: str | None = None
    ) -> SessionHandle:
        return self._handle(self.manager.get_or_create(session_id, system_prompt))

    def get_history(self, session_id: str) -> list[ChatMessage]:
        return list(self.manager.get(session_id).history)

    def session_state(self, session_id: str) -> SessionState:
        return self.manager.get(session_id).state

    async def teardown(self, session_id: str) -> bool:
        """Cancel any active round, wait for it to stop and destroy the session."""
        active = self._rounds.get(session_id)
        self.cancel(session_id)
        if active is not None:
            await asyncio.gather(active.task, return_exceptions=True)
        return self.manager.teardown(session_id)

    async def shutdown(self) -> None:
        """Tear down every session."""
        for session_id in self.manager.session_ids():
            await self.teardown(session_id)

    @staticmethod
    def _handle(session: ChatSession) -> SessionHandle:
        return SessionHandle(
            session_id=session.id,
            system_prompt=session.system_prompt,
            state=session.state,
            message_count=len(session.history),
        )

    # ------------------------------------------------------------------
    # Functions / models
    # ------------------------------------------------------------------

    def list_functions(self) -> FunctionCatalog:
        return FunctionCatalog(
            functions=self.registry.to_schema(),
            composed_prompt=compose(self.manager.default_system_prompt, self.registry),
        )

    async def list_models(self) -> list[str]:
        return await self.router.list_models()

    # ------------------------------------------------------------------
    # Rounds
    # ------------------------------------------------------------------

    def send(self, session_id: str, user_text: str, enable_tools: bool = True) -> RoundChannel:
        """
        Start a round and return its event channel.

        Must be called from a running event loop.  Raises ``SessionBusy``
        if the session already has an active round.
        """
        session = self.manager.get_or_create(session_id)
        round_id = self.manager.begin_round(session, user_text)
        channel = RoundChannel(session_id, round_id)
        events = EventFactory(session_id, round_id)

        task = asyncio.create_task(
            self._run_round(session, events, channel, enable_tools),
            name=f"lmchat-round-{round_id}",
        )
        self._rounds[session_id] = _ActiveRound(round_id, channel, task)
        task.add_done_callback(lambda t: self._round_done(session_id, round_id, t))
        return channel

    def cancel(self, session_id: str) -> bool:
        """
        Cancel the active round of *session_id*.

        The channel is closed first, so the consumer receives no further
        events.  Returns ``False`` if there was nothing to cancel.
        """
        if session_id not in self.manager:
            return False
        session = self.manager.get(session_id)
        active = self._rounds.get(session_id)
        if active is None or not session.is_active:
            return False
        active.channel.close(discard=True)
        self.manager.cancel_round(session)
        active.task.cancel()
        return True

    def _round_done(self, session_id: str, round_id: str, task: asyncio.Task) -> None:
        active = self._rounds.get(session_id)
        if active is not None and active.round_id == round_id:
            del self._rounds[session_id]
        if not task.cancelled() and task.exception() is not None:
            logger.error("Round %s ended with an unhandled error", round_id, exc_info=task.exception())

    async def _run_round(
        self,
        session: ChatSession,
        events: EventFactory,
        channel: RoundChannel,
        enable_tools: bool,
    ) -> None:
        passes = 0

        def on_directive(_directive: Directive) -> None:
            if session.state == SessionState.STREAMING:
                self.manager.await_tool(session)

        try:
            while True:
                if passes >= self.max_passes:
                    notice = (
                        f"Stopped after {self.max_passes} model requests "
                        "without a final answer."
                    )
                    logger.warning("Session %s: %s", session.id, notice)
                    msg = self.manager.open_assistant_message(session)
                    msg.append_content(notice)
                    channel.put(events.chunk(CHANNEL_CONTENT, notice))
                    self.manager.complete_round(session, msg)
                    channel.put(events.complete())
                    return

                passes += 1
                provider = self.router.active_provider
                messages, _report = self.manager.build_context(
                    session,
                    enable_tools=enable_tools,
                    max_context_tokens=provider.max_context_tokens,
                    max_output_tokens=provider.max_output_tokens,
                )
                message = self.manager.open_assistant_message(session)

                outcome = await self.dispatcher.run_pass(
                    messages,
                    message,
                    events,
                    channel.put,
                    on_directive=on_directive,
                    parse_directives=enable_tools,
                )
                logger.debug(
                    "Session %s: pass %d ended (%s): %d content chars, %d reasoning chars, "
                    "%d directives, %d chars withheld",
                    session.id,
                    passes,
                    outcome.finish_reason or "no finish reason",
                    len(outcome.content),
                    len(outcome.reasoning),
                    len(outcome.directives),
                    len(outcome.withheld),
                )
                if outcome.finish_reason == "length" and not outcome.directives:
                    logger.warning(
                        "Session %s: answer was cut off at the output token limit", session.id
                    )

                if not outcome.directives:
                    self.manager.complete_round(session, message)
                    channel.put(events.complete())
                    return

                for directive in outcome.directives:
                    record = await self.executor.execute(directive)
                    self.manager.add_function_result(message, record)
                    channel.put(events.function_call(record))

                self.manager.resume_after_tools(
                    session, message, continue_round=passes < self.max_passes
                )

        except asyncio.CancelledError:
            # cancel() already closed the channel and updated the session.
            raise
        except LMChatError as e:
            self._fail(session, events, channel, e.message, e.code)
        except Exception as e:
            logger.exception("Session %s: unexpected error in round", session.id)
            self._fail(session, events, channel, str(e) or type(e).__name__, None)

    def _fail(
        self,
        session: ChatSession,
        events: EventFactory,
        channel: RoundChannel,
        message: str,
        code: str | None,
    ) -> None:
        self.manager.fail_round(session, message)
        channel.put(events.error(message, code))
