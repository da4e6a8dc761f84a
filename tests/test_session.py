"""Tests for chat sessions, the session manager and context packing."""

import pytest

from lmchat.errors import (
    ContextBudgetExceeded,
    InvalidTransition,
    MessageFinalized,
    SessionBusy,
    SessionNotFound,
)
from lmchat.functions.builtin import register_builtins
from lmchat.functions.registry import FunctionRegistry
from lmchat.llm.token_counter import TokenCounter
from lmchat.llm.types import Message
from lmchat.session.context import ContextPacker
from lmchat.session.manager import SessionManager
from lmchat.session.models import ChatMessage, ChatRole
from lmchat.session.session import ChatSession, SessionState
from lmchat.types import FunctionCallRecord


def _manager(prompt: str = "Be brief.", tools: bool = True) -> SessionManager:
    registry = FunctionRegistry()
    if tools:
        register_builtins(registry)
    return SessionManager(registry, ContextPacker(TokenCounter()), default_system_prompt=prompt)


# ---------------------------------------------------------------------------
# ChatMessage
# ---------------------------------------------------------------------------


class TestChatMessage:
    def test_append_while_open(self):
        msg = ChatMessage(role=ChatRole.ASSISTANT)
        msg.append_content("Hel")
        msg.append_content("lo")
        msg.append_reasoning("thinking")
        assert msg.content == "Hello"
        assert msg.reasoning == "thinking"
        assert not msg.is_empty

    def test_finalized_message_rejects_mutation(self):
        msg = ChatMessage(role=ChatRole.ASSISTANT, content="done")
        msg.finalize()
        with pytest.raises(MessageFinalized):
            msg.append_content("more")
        with pytest.raises(MessageFinalized):
            msg.append_reasoning("more")
        with pytest.raises(MessageFinalized):
            msg.add_function_call(FunctionCallRecord("add", {}, result=1))
        assert msg.content == "done"

    def test_dict_round_trip(self):
        msg = ChatMessage(role=ChatRole.ASSISTANT, content="x", round_id="r1")
        msg.add_function_call(FunctionCallRecord("add", {"a": 1, "b": 2}, result=3))
        msg.finalize()
        restored = ChatMessage.from_dict(msg.to_dict())
        assert restored == msg

    def test_record_cannot_carry_result_and_error(self):
        with pytest.raises(ValueError):
            FunctionCallRecord("add", {}, result=1, error="boom")


# ---------------------------------------------------------------------------
# State machine
# ---------------------------------------------------------------------------


class TestSessionState:
    def test_new_session_is_idle(self):
        s = ChatSession(id="s1")
        assert s.state == SessionState.IDLE
        assert not s.is_active

    def test_full_round_path(self):
        s = ChatSession(id="s1")
        for state in (
            SessionState.STREAMING,
            SessionState.AWAITING_TOOL,
            SessionState.STREAMING,
            SessionState.COMPLETE,
            SessionState.STREAMING,
        ):
            s.transition(state)
        assert s.is_active

    @pytest.mark.parametrize(
        "start,target",
        [
            (SessionState.IDLE, SessionState.COMPLETE),
            (SessionState.IDLE, SessionState.AWAITING_TOOL),
            (SessionState.COMPLETE, SessionState.ERRORED),
            (SessionState.CANCELLED, SessionState.AWAITING_TOOL),
        ],
    )
    def test_illegal_transitions(self, start, target):
        s = ChatSession(id="s1", state=start)
        with pytest.raises(InvalidTransition):
            s.transition(target)
        assert s.state == start

    def test_in_flight_message(self):
        s = ChatSession(id="s1")
        assert s.in_flight_message() is None
        msg = ChatMessage(role=ChatRole.ASSISTANT)
        s.history.append(msg)
        assert s.in_flight_message() is msg
        msg.finalize()
        assert s.in_flight_message() is None


# ---------------------------------------------------------------------------
# SessionManager
# ---------------------------------------------------------------------------


class TestSessionLifecycle:
    def test_get_or_create_uses_default_prompt(self):
        mgr = _manager("Default")
        s = mgr.get_or_create("a")
        assert s.system_prompt == "Default"
        assert mgr.get_or_create("a") is s

    def test_get_or_create_replaces_prompt(self):
        mgr = _manager()
        mgr.get_or_create("a")
        assert mgr.get_or_create("a", "Override").system_prompt == "Override"
        assert mgr.get_or_create("a").system_prompt == "Override"

    def test_get_unknown(self):
        with pytest.raises(SessionNotFound):
            _manager().get("missing")

    def test_sessions_are_independent(self):
        mgr = _manager()
        a, b = mgr.get_or_create("a"), mgr.get_or_create("b")
        mgr.begin_round(a, "hi")
        assert a.is_active and not b.is_active
        assert b.history == []
        assert sorted(mgr.session_ids()) == ["a", "b"]

    def test_teardown_then_recreate_is_empty(self):
        mgr = _manager()
        s = mgr.get_or_create("a")
        mgr.begin_round(s, "hi")
        assert mgr.teardown("a") is True
        assert s.state == SessionState.CANCELLED
        assert "a" not in mgr
        fresh = mgr.get_or_create("a")
        assert fresh.history == []
        assert fresh.state == SessionState.IDLE

    def test_teardown_unknown(self):
        assert _manager().teardown("nope") is False


class TestRounds:
    def test_begin_round(self):
        mgr = _manager()
        s = mgr.get_or_create("a")
        round_id = mgr.begin_round(s, "hello")
        assert s.state == SessionState.STREAMING
        assert s.active_round_id == round_id
        (user,) = s.history
        assert user.role == ChatRole.USER
        assert user.content == "hello"
        assert user.finalized

    def test_second_round_while_active_is_busy(self):
        mgr = _manager()
        s = mgr.get_or_create("a")
        mgr.begin_round(s, "one")
        with pytest.raises(SessionBusy):
            mgr.begin_round(s, "two")
        assert len(s.history) == 1

    def test_round_ids_are_unique(self):
        mgr = _manager()
        s = mgr.get_or_create("a")
        first = mgr.begin_round(s, "one")
        mgr.complete_round(s)
        second = mgr.begin_round(s, "two")
        assert first != second

    def test_tool_round_trip(self):
        mgr = _manager()
        s = mgr.get_or_create("a")
        mgr.begin_round(s, "what is 5+7?")
        msg = mgr.open_assistant_message(s)
        msg.append_content("Let me add.")
        mgr.await_tool(s)
        assert s.state == SessionState.AWAITING_TOOL
        mgr.add_function_result(msg, FunctionCallRecord("add", {"a": 5, "b": 7}, result=12))
        mgr.resume_after_tools(s, msg)
        assert s.state == SessionState.STREAMING
        assert msg.finalized
        synthetic = s.history[-1]
        assert synthetic.role == ChatRole.USER
        assert synthetic.synthetic
        assert synthetic.content.startswith("The function add returned: 12.")

        final = mgr.open_assistant_message(s)
        final.append_content("12")
        mgr.complete_round(s, final)
        assert s.state == SessionState.COMPLETE
        assert s.active_round_id is None
        assert all(m.finalized for m in s.history)

    def test_resume_without_continuing(self):
        mgr = _manager()
        s = mgr.get_or_create("a")
        mgr.begin_round(s, "x")
        msg = mgr.open_assistant_message(s)
        mgr.await_tool(s)
        mgr.add_function_result(msg, FunctionCallRecord("add", {}, error="bad", error_code="argument_error"))
        mgr.resume_after_tools(s, msg, continue_round=False)
        assert s.state == SessionState.AWAITING_TOOL
        mgr.complete_round(s)
        assert s.state == SessionState.COMPLETE

    def test_fail_round_keeps_partial_output(self):
        mgr = _manager()
        s = mgr.get_or_create("a")
        mgr.begin_round(s, "x")
        msg = mgr.open_assistant_message(s)
        msg.append_content("partial")
        mgr.fail_round(s, "connection reset")
        assert s.state == SessionState.ERRORED
        assert msg.finalized
        assert [m.role for m in s.history] == [ChatRole.USER, ChatRole.ASSISTANT, ChatRole.ERROR]
        assert s.history[-1].content == "connection reset"

    def test_fail_round_drops_empty_message(self):
        mgr = _manager()
        s = mgr.get_or_create("a")
        mgr.begin_round(s, "x")
        mgr.open_assistant_message(s)
        mgr.fail_round(s, "boom")
        assert [m.role for m in s.history] == [ChatRole.USER, ChatRole.ERROR]

    def test_cancel_round(self):
        mgr = _manager()
        s = mgr.get_or_create("a")
        mgr.begin_round(s, "x")
        msg = mgr.open_assistant_message(s)
        msg.append_content("half")
        mgr.cancel_round(s)
        assert s.state == SessionState.CANCELLED
        assert msg.finalized
        assert s.active_round_id is None
        mgr.begin_round(s, "again")
        assert s.state == SessionState.STREAMING


class TestContext:
    def test_system_prompt_with_and_without_tools(self):
        mgr = _manager("Be brief.")
        s = mgr.get_or_create("a")
        assert mgr.system_prompt_for(s, enable_tools=False) == "Be brief."
        composed = mgr.system_prompt_for(s, enable_tools=True)
        assert composed.startswith("Be brief.\n\n")
        assert "Function: add" in composed

    def test_empty_registry_leaves_prompt_alone(self):
        mgr = _manager("Be brief.", tools=False)
        s = mgr.get_or_create("a")
        assert mgr.system_prompt_for(s, enable_tools=True) == "Be brief."

    def test_history_skips_errors_and_replays_calls(self):
        mgr = _manager()
        s = mgr.get_or_create("a")
        mgr.begin_round(s, "add please")
        msg = mgr.open_assistant_message(s)
        msg.append_content("Adding.")
        mgr.await_tool(s)
        mgr.add_function_result(msg, FunctionCallRecord("add", {"a": 5, "b": 7}, result=12))
        mgr.resume_after_tools(s, msg)
        mgr.fail_round(s, "lost connection")

        messages = mgr.history_messages(s)
        assert [m.role for m in messages] == ["user", "assistant", "user"]
        assert messages[1].content == (
            'Adding.\n<|channel|>commentary to=functions.add <|message|>{"a": 5, "b": 7}'
        )
        assert all("lost connection" not in m.content for m in messages)

    def test_build_context_prepends_system_prompt(self):
        mgr = _manager("Be brief.")
        s = mgr.get_or_create("a")
        mgr.begin_round(s, "hi")
        messages, report = mgr.build_context(
            s, enable_tools=False, max_context_tokens=4096, max_output_tokens=512
        )
        assert messages[0] == Message(role="system", content="Be brief.")
        assert messages[1] == Message(role="user", content="hi")
        assert report.dropped_messages == 0


class TestContextPacker:
    def _msgs(self, *specs):
        return [Message(role=role, content="x" * size) for role, size in specs]

    def test_everything_fits(self):
        packer = ContextPacker(TokenCounter())
        msgs = self._msgs(("user", 40), ("assistant", 40))
        packed, report = packer.pack(msgs, "", 1000, 100, 0)
        assert packed == msgs
        assert report.kept_messages == 2
        assert report.dropped_messages == 0

    def test_oldest_dropped_first(self):
        packer = ContextPacker(TokenCounter())
        # 14 tokens each, budget 80
        msgs = self._msgs(*[("user", 40)] * 6)
        packed, report = packer.pack(msgs, "", 100, 20, 0)
        assert packed == msgs[1:]
        assert report.dropped_messages == 1

    def test_kept_messages_are_a_contiguous_suffix(self):
        packer = ContextPacker(TokenCounter())
        msgs = self._msgs(("user", 40), ("assistant", 200), ("user", 40), ("assistant", 40))
        packed, report = packer.pack(msgs, "", 100, 20, 0)
        assert packed == msgs[2:]
        assert report.dropped_messages == 2

    def test_latest_user_message_too_large(self):
        packer = ContextPacker(TokenCounter())
        msgs = self._msgs(("user", 400))
        with pytest.raises(ContextBudgetExceeded):
            packer.pack(msgs, "", 100, 20, 0)

    def test_system_prompt_counts_against_budget(self):
        packer = ContextPacker(TokenCounter())
        msgs = self._msgs(("user", 40), ("user", 40))
        packed, report = packer.pack(msgs, "s" * 200, 100, 20, 0)
        # 54 tokens of system prompt leave room for one message
        assert [m.role for m in packed] == ["system", "user"]
        assert report.system_prompt_tokens == 54
        assert report.dropped_messages == 1
