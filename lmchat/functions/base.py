"""Function definitions: name, description and a typed parameter schema."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Union

# An implementation receives the validated arguments as keyword arguments.
# It may be a plain function (run in a worker thread) or a coroutine function.
Implementation = Callable[..., Union[Any, Awaitable[Any]]]

JSON_TYPES = frozenset({"string", "number", "integer", "boolean", "array", "object"})

_NAME_RE = re.compile(r"^[A-Za-z_]\w*$")


def normalize_schema(schema: dict, *, allow_extra: bool = False) -> dict:
    s = dict(schema or {})
    s.setdefault("type", "object")
    s.setdefault("additionalProperties", allow_extra)
    return s


@dataclass(frozen=True)
class ParameterSpec:
    type: str
    description: str = ""
    enum: tuple[Any, ...] | None = None
    item_type: str | None = None

    def __post_init__(self) -> None:
        if self.type not in JSON_TYPES:
            raise ValueError(f"Unsupported parameter type: {self.type!r}")
        if self.item_type is not None and self.type != "array":
            raise ValueError("item_type is only valid for array parameters")
        if self.enum is not None:
            object.__setattr__(self, "enum", tuple(self.enum))

    def to_json_schema(self) -> dict:
        s: dict[str, Any] = {"type": self.type}
        if self.description:
            s["description"] = self.description
        if self.enum is not None:
            s["enum"] = list(self.enum)
        if self.item_type is not None:
            s["items"] = {"type": self.item_type}
        return s


@dataclass(frozen=True)
class FunctionDefinition:
    """
    Declarative description of a callable function.

    ``required`` keeps declaration order so that rendered prompts and
    schemas are deterministic.
    """

    name: str
    description: str
    parameters: dict[str, ParameterSpec] = field(default_factory=dict)
    required: tuple[str, ...] = ()
    allow_extra: bool = False

    def __post_init__(self) -> None:
        if not _NAME_RE.match(self.name or ""):
            raise ValueError(f"Invalid function name: {self.name!r}")
        required = tuple(dict.fromkeys(self.required))
        missing = [r for r in required if r not in self.parameters]
        if missing:
            raise ValueError(
                f"{self.name}: required parameters not declared: {', '.join(missing)}"
            )
        object.__setattr__(self, "required", required)

    def to_json_schema(self) -> dict:
        return normalize_schema(
            {
                "type": "object",
                "properties": {
                    pname: spec.to_json_schema()
                    for pname, spec in self.parameters.items()
                },
                "required": list(self.required),
            },
            allow_extra=self.allow_extra,
        )

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "description": self.description,
            "parameters": self.to_json_schema(),
        }
