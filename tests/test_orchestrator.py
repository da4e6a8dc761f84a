"""Tests for StreamDispatcher (a single pass)."""

import pytest

from lmchat.llm.router import LLMRouter
from lmchat.llm.types import Message, StreamChunk
from lmchat.orchestrator.dispatcher import StreamDispatcher
from lmchat.session.events import EventFactory
from lmchat.session.models import ChatMessage, ChatRole
from tests.mock_providers import MockProvider, inline_call, split_chunks


def _dispatcher(chunks) -> tuple[StreamDispatcher, MockProvider]:
    provider = MockProvider(chunks=chunks)
    router = LLMRouter()
    router.register_provider("mock", provider)
    return StreamDispatcher(router), provider


async def _pass(chunks, **kwargs):
    dispatcher, provider = _dispatcher(chunks)
    message = ChatMessage(role=ChatRole.ASSISTANT)
    emitted = []
    outcome = await dispatcher.run_pass(
        [Message(role="user", content="hi")],
        message,
        EventFactory("s1", "r1"),
        emitted.append,
        **kwargs,
    )
    return outcome, message, emitted


class TestStreamDispatcher:
    async def test_plain_pass(self):
        outcome, message, emitted = await _pass(
            [StreamChunk(delta="Hello"), StreamChunk(delta=" there"), StreamChunk(done=True, finish_reason="stop")]
        )
        assert outcome.content == "Hello there"
        assert outcome.directives == []
        assert outcome.finish_reason == "stop"
        assert message.content == "Hello there"
        assert [e.text for e in emitted] == ["Hello", " there"]

    async def test_directive_split_across_chunks(self):
        text = "Ok. " + inline_call("add", {"a": 2, "b": 3}) + " and then some"
        directives = []
        outcome, message, emitted = await _pass(split_chunks(text, 3), on_directive=directives.append)
        assert [d.name for d in outcome.directives] == ["add"]
        assert directives == outcome.directives
        assert outcome.content == "Ok. "
        assert outcome.withheld == " and then some"
        assert message.content == "Ok. "
        assert "".join(e.text for e in emitted) == "Ok. "

    async def test_later_directives_are_queued(self):
        text = inline_call("add", {"a": 1, "b": 1}) + " x " + inline_call("multiply", {"a": 2, "b": 2})
        seen = []
        outcome, _, emitted = await _pass(split_chunks(text, 11), on_directive=seen.append)
        assert [d.name for d in outcome.directives] == ["add", "multiply"]
        assert [d.name for d in seen] == ["add", "multiply"]
        assert emitted == []
        assert outcome.withheld == " x "

    async def test_reasoning_channel(self):
        outcome, message, emitted = await _pass(
            [StreamChunk(reasoning="why"), StreamChunk(delta="because", reasoning=" so"), StreamChunk(done=True)]
        )
        assert [(e.channel, e.text) for e in emitted] == [
            ("reasoning", "why"),
            ("reasoning", " so"),
            ("content", "because"),
        ]
        assert message.reasoning == "why so"
        assert outcome.reasoning == "why so"

    async def test_parse_errors_are_collected(self):
        text = 'to=functions.add {"a": 1,}'
        outcome, message, _ = await _pass([StreamChunk(delta=text), StreamChunk(done=True)])
        assert outcome.directives == []
        assert len(outcome.parse_errors) == 1
        assert message.content == text

    async def test_parsing_disabled(self):
        text = inline_call("add", {"a": 1, "b": 1})
        outcome, message, _ = await _pass(split_chunks(text, 4), parse_directives=False)
        assert outcome.directives == []
        assert message.content == text

    async def test_chunks_after_done_are_not_read(self):
        outcome, _, _ = await _pass(
            [StreamChunk(delta="a"), StreamChunk(done=True), StreamChunk(delta="ignored")]
        )
        assert outcome.content == "a"

    async def test_events_are_sequenced(self):
        _, _, emitted = await _pass([StreamChunk(delta="a"), StreamChunk(delta="b"), StreamChunk(done=True)])
        assert [e.seq for e in emitted] == [1, 2]
        assert {e.round_id for e in emitted} == {"r1"}
