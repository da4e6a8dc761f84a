"""
System prompt composition.

``compose`` appends a function catalog to a base prompt: one block per
registered function, the two call syntaxes the directive parser accepts,
worked examples of each, and the continuation contract.  Output depends only
on the base prompt and the registry contents, so the same inputs always
produce the same prompt.
"""

from __future__ import annotations

import json
from typing import Any

from lmchat.functions.base import FunctionDefinition, ParameterSpec
from lmchat.functions.registry import FunctionRegistry
from lmchat.types import FunctionCallRecord

CONTINUATION_SECTION = (
    "After I execute the function, I'll provide you with the result "
    "and you can continue the conversation."
)


def render_inline_directive(name: str, arguments: dict[str, Any]) -> str:
    return f"<|channel|>commentary to=functions.{name} <|message|>{json.dumps(arguments)}"


def render_structured_directive(name: str, arguments: dict[str, Any]) -> str:
    return json.dumps(
        {"function_call": {"name": name, "arguments": json.dumps(arguments)}}
    )


def render_function_result(record: FunctionCallRecord) -> str:
    """Text of the synthetic user message that hands a result back to the model."""
    if record.error is not None:
        outcome = f"The function {record.name} failed: {record.error}."
    else:
        outcome = f"The function {record.name} returned: {json.dumps(record.result, default=str)}."
    return (
        f"{outcome} You can now either call another function if needed, "
        "or provide a natural response to the user based on this result."
    )


_SAMPLE_SETS = (
    ((5, 7, 3, 2, 4, 6, 8, 9), "example"),
    ((12, 4, 10, 6, 3, 8, 2, 5), "another example"),
)


def sample_arguments(definition: FunctionDefinition, variant: int = 0) -> dict[str, Any]:
    """
    Deterministic example arguments covering the required parameters.

    *variant* picks one of two value sets, so a function can be shown twice
    with different arguments.
    """
    numbers, text = _SAMPLE_SETS[variant % len(_SAMPLE_SETS)]
    values = iter(numbers)
    return {
        pname: _sample_value(definition.parameters[pname], values, text)
        for pname in definition.required
    }


def _sample_value(spec: ParameterSpec, numbers, text: str) -> Any:
    if spec.enum:
        return spec.enum[0]
    if spec.type in ("number", "integer"):
        return next(numbers, 1)
    if spec.type == "boolean":
        return True
    if spec.type == "array":
        item = ParameterSpec(spec.item_type or "string")
        return [_sample_value(item, numbers, text)]
    if spec.type == "object":
        return {}
    return text


def _function_block(d: FunctionDefinition) -> str:
    return (
        f"Function: {d.name}\n"
        f"Description: {d.description}\n"
        f"Parameters: {json.dumps(d.to_json_schema(), indent=2)}"
    )


def compose(base_prompt: str, registry: FunctionRegistry) -> str:
    """Return *base_prompt* followed by the function catalog of *registry*."""
    definitions = registry.list()
    if not definitions:
        return base_prompt

    # Always two examples per syntax; a lone function is shown with both value sets.
    if len(definitions) == 1:
        examples = [(definitions[0], 0), (definitions[0], 1)]
    else:
        examples = [(d, 0) for d in definitions[:2]]
    sections = [
        "You have access to the following functions:",
        "\n\n".join(_function_block(d) for d in definitions),
        "To use a function, you can either:\n"
        "1. Use the special format: <|channel|>commentary to=functions.functionName "
        '<|message|>{"param1": value1, "param2": value2}\n'
        '2. Or respond with: {"function_call": {"name": "function_name", '
        '"arguments": "{\\"param1\\": value1, \\"param2\\": value2}"}}',
        "Examples:\n"
        + "\n".join(
            f"- {render_inline_directive(d.name, sample_arguments(d, v))}" for d, v in examples
        ),
        "Or using JSON format:\n"
        + "\n".join(
            f"- {render_structured_directive(d.name, sample_arguments(d, v))}" for d, v in examples
        ),
        CONTINUATION_SECTION,
    ]
    catalog = "\n\n".join(sections)
    if not base_prompt:
        return catalog
    return f"{base_prompt}\n\n{catalog}"
