"""Tests for system prompt composition."""

from lmchat.functions.builtin import register_builtins
from lmchat.functions.registry import FunctionRegistry
from lmchat.llm.directive_parser import Directive, DirectiveParser
from lmchat.prompts.composer import (
    CONTINUATION_SECTION,
    compose,
    render_function_result,
    render_inline_directive,
    render_structured_directive,
    sample_arguments,
)
from lmchat.types import FunctionCallRecord
from tests.mock_functions import ECHO, UNITS, convert, echo


def _registry() -> FunctionRegistry:
    reg = FunctionRegistry()
    register_builtins(reg)
    return reg


def _parse(text: str) -> list[Directive]:
    parser = DirectiveParser()
    segments = parser.feed(text) + parser.flush()
    return [s for s in segments if isinstance(s, Directive)]


class TestCompose:
    def test_empty_registry_returns_base_prompt(self):
        assert compose("Be brief.", FunctionRegistry()) == "Be brief."
        assert compose("", FunctionRegistry()) == ""

    def test_deterministic(self):
        assert compose("Be brief.", _registry()) == compose("Be brief.", _registry())

    def test_does_not_mutate_registry(self):
        reg = _registry()
        before = reg.to_schema()
        compose("x", reg)
        assert reg.to_schema() == before

    def test_base_prompt_comes_first(self):
        prompt = compose("Be brief.", _registry())
        assert prompt.startswith("Be brief.\n\nYou have access to the following functions:")

    def test_without_base_prompt(self):
        prompt = compose("", _registry())
        assert prompt.startswith("You have access to the following functions:")

    def test_one_block_per_function(self):
        prompt = compose("", _registry())
        for name in ("add", "multiply", "getCurrentTime"):
            assert f"Function: {name}\n" in prompt
        assert "Description: Add two numbers together" in prompt
        assert '"required": [\n' in prompt

    def test_describes_both_syntaxes(self):
        prompt = compose("", _registry())
        assert "<|channel|>commentary to=functions.functionName" in prompt
        assert '{"function_call": {"name": "function_name"' in prompt

    def test_ends_with_continuation(self):
        assert compose("", _registry()).endswith(CONTINUATION_SECTION)

    def test_examples_use_first_two_functions(self):
        prompt = compose("", _registry())
        examples = prompt.split("Examples:\n", 1)[1].split("\n\n", 1)[0]
        assert examples.splitlines() == [
            '- <|channel|>commentary to=functions.add <|message|>{"a": 5, "b": 7}',
            "- <|channel|>commentary to=functions.getCurrentTime <|message|>{}",
        ]

    def test_single_function_is_shown_twice_per_syntax(self):
        reg = FunctionRegistry()
        register_builtins(reg, ["add"])
        prompt = compose("", reg)
        inline = prompt.split("Examples:\n", 1)[1].split("\n\n", 1)[0]
        structured = prompt.split("Or using JSON format:\n", 1)[1].split("\n\n", 1)[0]
        assert inline.splitlines() == [
            '- <|channel|>commentary to=functions.add <|message|>{"a": 5, "b": 7}',
            '- <|channel|>commentary to=functions.add <|message|>{"a": 12, "b": 4}',
        ]
        assert len(structured.splitlines()) == 2
        assert [d.arguments for line in structured.splitlines() for d in _parse(line[2:])] == [
            {"a": 5, "b": 7},
            {"a": 12, "b": 4},
        ]

    def test_examples_are_recognised_by_the_parser(self):
        prompt = compose("", _registry())
        inline = prompt.split("Examples:\n", 1)[1].split("\n\n", 1)[0]
        structured = prompt.split("Or using JSON format:\n", 1)[1].split("\n\n", 1)[0]
        for line in inline.splitlines() + structured.splitlines():
            (d,) = _parse(line[2:])
            assert d.name in ("add", "getCurrentTime")


class TestSampleArguments:
    def test_required_only(self):
        assert sample_arguments(UNITS) == {"value": 5, "unit": "C"}

    def test_string_parameter(self):
        assert sample_arguments(ECHO) == {"message": "example"}

    def test_second_variant_differs(self):
        assert sample_arguments(UNITS, 1) == {"value": 12, "unit": "C"}
        assert sample_arguments(ECHO, 1) == {"message": "another example"}


class TestRenderers:
    def test_inline_round_trips_through_parser(self):
        (d,) = _parse(render_inline_directive("convert", {"value": 1, "unit": "F"}))
        assert d.arguments == {"value": 1, "unit": "F"}

    def test_structured_round_trips_through_parser(self):
        (d,) = _parse(render_structured_directive("echo", {"message": "hi"}))
        assert d.name == "echo"
        assert d.arguments == {"message": "hi"}

    def test_function_result_success(self):
        text = render_function_result(FunctionCallRecord("add", {"a": 5, "b": 7}, result=12))
        assert text.startswith("The function add returned: 12.")
        assert "call another function" in text

    def test_function_result_failure(self):
        rec = FunctionCallRecord("echo", {}, error="Unknown function: echo", error_code="unknown_function")
        text = render_function_result(rec)
        assert text.startswith("The function echo failed: Unknown function: echo.")

    def test_registered_plugin_functions_are_listed(self):
        reg = FunctionRegistry()
        reg.register(ECHO, echo)
        reg.register(UNITS, convert)
        prompt = compose("", reg)
        assert prompt.index("Function: convert") < prompt.index("Function: echo")
