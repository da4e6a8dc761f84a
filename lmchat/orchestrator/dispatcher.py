"""
Stream dispatcher -- runs one transport request (a *pass*) of a round.

Chunks from the router are split by channel.  Reasoning text is forwarded
as-is; content text goes through the :class:`DirectiveParser` and only the
text outside directive spans reaches the consumer.  Once a pass has produced
a directive, the rest of its content was generated without the function
result, so it is drained but withheld, and any further directives are
queued behind the first.
"""

from __future__ import annotations

import logging
from contextlib import aclosing
from dataclasses import dataclass, field
from typing import Callable

from lmchat.errors import DirectiveParseError
from lmchat.llm.directive_parser import Directive, DirectiveParser, Segment
from lmchat.llm.router import LLMRouter
from lmchat.llm.types import CHANNEL_CONTENT, CHANNEL_REASONING, Message
from lmchat.session.events import EventFactory, StreamEvent
from lmchat.session.models import ChatMessage

logger = logging.getLogger(__name__)


@dataclass
class PassOutcome:
    content: str = ""
    reasoning: str = ""
    directives: list[Directive] = field(default_factory=list)
    parse_errors: list[DirectiveParseError] = field(default_factory=list)
    withheld: str = ""
    finish_reason: str | None = None


class StreamDispatcher:
    """
    Parameters
    ----------
    router : LLMRouter
        Transport used for every pass.
    request_timeout : float | None
        Per-request timeout handed to the provider; ``None`` keeps the
        provider's own default.
    """

    def __init__(self, router: LLMRouter, request_timeout: float | None = None) -> None:
        self.router = router
        self.request_timeout = request_timeout

    async def run_pass(
        self,
        messages: list[Message],
        message: ChatMessage,
        events: EventFactory,
        emit: Callable[[StreamEvent], object],
        on_directive: Callable[[Directive], None] | None = None,
        parse_directives: bool = True,
    ) -> PassOutcome:
        """
        Stream one completion into *message*, emitting ``chunk`` events.

        With *parse_directives* off, content is forwarded verbatim.

        Raises ``TransportError`` if the transport fails; nothing is retried.
        """
        parser = DirectiveParser() if parse_directives else None
        outcome = PassOutcome()

        def route(segments: list[Segment]) -> None:
            for seg in segments:
                if isinstance(seg, Directive):
                    logger.info("Directive detected: %s (%s syntax)", seg.name, seg.syntax)
                    outcome.directives.append(seg)
                    if on_directive is not None:
                        on_directive(seg)
                elif outcome.directives:
                    outcome.withheld += seg
                elif seg:
                    message.append_content(seg)
                    outcome.content += seg
                    emit(events.chunk(CHANNEL_CONTENT, seg))

        async with aclosing(
            self.router.chat(messages, stream=True, timeout=self.request_timeout)
        ) as stream:
            async for chunk in stream:
                if chunk.reasoning:
                    message.append_reasoning(chunk.reasoning)
                    outcome.reasoning += chunk.reasoning
                    emit(events.chunk(CHANNEL_REASONING, chunk.reasoning))
                if chunk.delta:
                    route(parser.feed(chunk.delta) if parser else [chunk.delta])
                if chunk.finish_reason:
                    outcome.finish_reason = chunk.finish_reason
                if chunk.done:
                    break

        if parser is not None:
            route(parser.flush())
            outcome.parse_errors = list(parser.errors)
        if outcome.withheld:
            logger.debug("Withheld %d chars generated after a directive", len(outcome.withheld))
        return outcome
