from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


class ErrorCode:
    UNKNOWN_FUNCTION = "unknown_function"
    ARGUMENT_ERROR = "argument_error"
    TIMEOUT = "timeout"
    FUNCTION_ERROR = "function_error"
    TOOL_EXCEPTION = "tool_exception"
    TRANSPORT_ERROR = "transport_error"
    DIRECTIVE_PARSE_ERROR = "directive_parse_error"
    CONTEXT_BUDGET_EXCEEDED = "context_budget_exceeded"
    SESSION_BUSY = "session_busy"
    SESSION_NOT_FOUND = "session_not_found"
    INVALID_TRANSITION = "invalid_transition"
    MESSAGE_FINALIZED = "message_finalized"
    CANCELLED = "cancelled"


@dataclass
class FunctionCallRecord:
    """Outcome of one resolved directive. ``result`` and ``error`` never coexist."""

    name: str
    arguments: dict[str, Any] = field(default_factory=dict)
    result: Any = None
    error: str | None = None
    error_code: str | None = None

    def __post_init__(self) -> None:
        if self.error is not None and self.result is not None:
            raise ValueError(
                f"FunctionCallRecord {self.name!r} cannot carry both a result and an error"
            )

    @property
    def succeeded(self) -> bool:
        return self.error is None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"name": self.name, "arguments": self.arguments}
        if self.error is not None:
            d["error"] = self.error
        else:
            d["result"] = self.result
        return d

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FunctionCallRecord:
        return cls(
            name=data["name"],
            arguments=dict(data.get("arguments") or {}),
            result=data.get("result") if data.get("error") is None else None,
            error=data.get("error"),
            error_code=data.get("error_code"),
        )


@dataclass
class ContextPackReport:
    max_context_tokens: int
    max_output_tokens: int
    reserve_tokens: int
    system_prompt_tokens: int
    message_tokens: int
    kept_messages: int
    dropped_messages: int
