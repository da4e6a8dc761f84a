"""Built-in arithmetic and clock functions."""

from __future__ import annotations

from datetime import datetime
from typing import Callable, Iterable

from lmchat.functions.base import FunctionDefinition, ParameterSpec
from lmchat.functions.registry import FunctionRegistry

ADD = FunctionDefinition(
    name="add",
    description="Add two numbers together",
    parameters={
        "a": ParameterSpec("number", "The first number to add"),
        "b": ParameterSpec("number", "The second number to add"),
    },
    required=("a", "b"),
)

MULTIPLY = FunctionDefinition(
    name="multiply",
    description="Multiply two numbers",
    parameters={
        "a": ParameterSpec("number", "The first number"),
        "b": ParameterSpec("number", "The second number"),
    },
    required=("a", "b"),
)

GET_CURRENT_TIME = FunctionDefinition(
    name="getCurrentTime",
    description="Get the current date and time",
)


def add(a: float, b: float) -> float:
    return a + b


def multiply(a: float, b: float) -> float:
    return a * b


def make_get_current_time(clock: Callable[[], datetime] | None = None):
    now = clock or (lambda: datetime.now().astimezone())

    def get_current_time() -> str:
        return now().strftime("%A, %B %d, %Y %I:%M:%S %p %Z").strip()

    return get_current_time


def register_builtins(
    registry: FunctionRegistry,
    names: Iterable[str] | None = None,
    *,
    clock: Callable[[], datetime] | None = None,
) -> list[str]:
    """Register the built-in functions (or the subset in *names*)."""
    catalog = {
        ADD.name: (ADD, add),
        MULTIPLY.name: (MULTIPLY, multiply),
        GET_CURRENT_TIME.name: (GET_CURRENT_TIME, make_get_current_time(clock)),
    }
    wanted = list(catalog) if names is None else list(names)
    registered: list[str] = []
    for name in wanted:
        if name not in catalog:
            raise ValueError(f"Unknown built-in function: {name}")
        definition, impl = catalog[name]
        registry.register(definition, impl)
        registered.append(name)
    return registered
