"""
Detects function-invocation directives embedded in streamed model output.

Two wire syntaxes are recognised:

  - Inline tags, as emitted by harmony-format models::

        <|start|>assistant<|channel|>commentary to=functions.add <|constrain|>json<|message|>{"a": 5, "b": 7}<|call|>

    Every token before ``to=functions.`` is optional.

  - A structured JSON object anywhere in the text::

        {"function_call": {"name": "add", "arguments": "{\\"a\\": 5, \\"b\\": 7}"}}

Text arrives in arbitrarily split fragments.  The parser keeps a rolling
buffer and releases text as content only once it can no longer become part
of a directive.  A directive is accepted only after its JSON object has been
closed (brace and quote balanced), never on a truncated prefix.

When both syntaxes could start in the buffer the earliest start position
wins; the inline syntax wins ties.  Malformed JSON inside a recognised span
is recorded in ``self.errors`` and the span is released as content.

A Markdown code fence wrapped directly around a directive is dropped with
it, so the answer text is not left with an unclosed fence.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Union

from lmchat.errors import DirectiveParseError

logger = logging.getLogger(__name__)

SYNTAX_INLINE = "inline"
SYNTAX_STRUCTURED = "structured"


@dataclass
class Directive:
    """A complete function invocation request found in the content stream."""

    name: str
    arguments: dict[str, Any] = field(default_factory=dict)
    raw: str = ""
    syntax: str = SYNTAX_INLINE


Segment = Union[str, Directive]

# Match statuses returned by the span matchers.
_INCOMPLETE = "incomplete"
_NO_MATCH = "no_match"
_MATCH = "match"
_MALFORMED = "malformed"

_INLINE_TRIGGERS = ("<|start|>", "<|channel|>", "commentary", "to=functions.")
_TRAILERS = ("<|call|>", "<|end|>")
_HOLDABLE = _INLINE_TRIGGERS + ("{",)

_TRIGGER_RE = re.compile(
    "|".join(re.escape(t) for t in _INLINE_TRIGGERS) + r"|\{"
)
_NAME_RE = re.compile(r"\w+")
_TOKEN_RE = re.compile(r"<\|[a-z_]+\|>")

# An opening fence ending right where a directive starts, e.g. "```json\n".
_FENCE_OPEN_RE = re.compile(r"```[A-Za-z]*[ \t]*\r?\n?[ \t]*\Z")
_FENCE_CLOSE_RE = re.compile(r"\s*```")
_FENCE_TAIL_RE = re.compile(r"(?:```[A-Za-z]*[ \t]*\r?\n?[ \t]*|`{1,2})\Z")


class DirectiveParser:
    """
    Incremental directive detector for the content channel.

    Usage::

        parser = DirectiveParser()
        for fragment in stream:
            for segment in parser.feed(fragment):
                ...  # str -> content, Directive -> function call
        for segment in parser.flush():
            ...
    """

    def __init__(self) -> None:
        self._buf = ""
        self._after_directive = False
        self._fenced = False
        self.errors: list[DirectiveParseError] = []

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def feed(self, text: str) -> list[Segment]:
        """
        Append *text* to the buffer and return everything that is now
        decided, in stream order.
        """
        if text:
            self._buf += text
        return self._scan(final=False)

    def flush(self) -> list[Segment]:
        """Release whatever is still held.  Call once at end of stream."""
        segments = self._scan(final=True)
        self._after_directive = False
        self._fenced = False
        return segments

    @property
    def pending(self) -> str:
        """Text currently held back as a possible directive prefix."""
        return self._buf

    def reset(self) -> None:
        """Discard all buffered state and recorded errors."""
        self._buf = ""
        self._after_directive = False
        self._fenced = False
        self.errors.clear()

    # ------------------------------------------------------------------
    # Scanning
    # ------------------------------------------------------------------

    def _scan(self, *, final: bool) -> list[Segment]:
        out: list[Segment] = []

        while True:
            if self._after_directive:
                if not self._strip_trailer(final):
                    break
            if self._fenced:
                if not self._strip_closing_fence(final):
                    break

            m = _TRIGGER_RE.search(self._buf)
            if m is None:
                keep = 0 if final else _viable_tail(self._buf)
                self._release(out, len(self._buf) - keep)
                break

            start = m.start()
            fence = _FENCE_OPEN_RE.search(self._buf, 0, start)
            lead = start - fence.start() if fence is not None else 0
            self._release(out, start - lead)
            span = self._buf[lead:]

            if m.group() == "{":
                status, end, payload = _match_structured(span)
                syntax = SYNTAX_STRUCTURED
            else:
                status, end, payload = _match_inline(span)
                syntax = SYNTAX_INLINE

            if status == _INCOMPLETE:
                if not final:
                    break
                # Truncated at end of stream: it is plain text after all.
                logger.debug("Releasing truncated directive prefix: %r", span[:80])
                self._release(out, lead + 1)
            elif status == _NO_MATCH:
                self._release(out, lead + 1)
            elif status == _MALFORMED:
                raw = span[:end]
                err = DirectiveParseError(payload, raw=raw)
                self.errors.append(err)
                logger.warning("Malformed %s directive: %s", syntax, payload)
                self._release(out, lead + end)
            else:
                name, arguments = payload
                out.append(
                    Directive(
                        name=name,
                        arguments=arguments,
                        raw=span[:end],
                        syntax=syntax,
                    )
                )
                self._buf = span[end:]
                self._after_directive = True
                self._fenced = lead > 0

        return out

    def _release(self, out: list[Segment], n: int) -> None:
        """Move the first *n* buffered characters to *out* as content."""
        if n <= 0:
            return
        text, self._buf = self._buf[:n], self._buf[n:]
        if out and isinstance(out[-1], str):
            out[-1] += text
        else:
            out.append(text)

    def _strip_trailer(self, final: bool) -> bool:
        """
        Drop a ``<|call|>`` / ``<|end|>`` token directly after a directive.

        Returns ``False`` when the buffer is still undecided.
        """
        buf = self._buf
        for trailer in _TRAILERS:
            if buf.startswith(trailer):
                self._buf = buf[len(trailer):]
                self._after_directive = False
                return True
        if not final and any(t.startswith(buf) for t in _TRAILERS):
            # Empty buffer or a partial trailer token.
            return False
        self._after_directive = False
        return True

    def _strip_closing_fence(self, final: bool) -> bool:
        """Drop the fence closing a fenced directive, if it follows directly."""
        m = _FENCE_CLOSE_RE.match(self._buf)
        if m is not None:
            self._buf = self._buf[m.end():]
        elif not final and re.fullmatch(r"\s*`{0,2}", self._buf):
            return False
        self._fenced = False
        return True


# ---------------------------------------------------------------------------
# Span matchers
#
# Each matcher inspects ``buf`` from index 0 and returns
# ``(status, end, payload)``.  On _MATCH the payload is ``(name, arguments)``;
# on _MALFORMED it is an error message.
# ---------------------------------------------------------------------------


def _take(buf: str, i: int, literal: str) -> int | None | str:
    """
    Try to consume *literal* at *i*.

    Returns the new index, ``None`` if the text differs, or ``_INCOMPLETE``
    if the buffer ends while still agreeing with *literal*.
    """
    chunk = buf[i:i + len(literal)]
    if chunk == literal:
        return i + len(literal)
    if literal.startswith(chunk) and i + len(chunk) == len(buf):
        return _INCOMPLETE
    return None


def _skip_ws(buf: str, i: int) -> int:
    while i < len(buf) and buf[i].isspace():
        i += 1
    return i


def _match_inline(buf: str) -> tuple[str, int, Any]:
    i = 0

    # [<|start|>assistant]
    r = _take(buf, i, "<|start|>")
    if r == _INCOMPLETE:
        return _INCOMPLETE, 0, None
    if r is not None:
        i = _skip_ws(buf, r)
        r = _take(buf, i, "assistant")
        if r == _INCOMPLETE:
            return _INCOMPLETE, 0, None
        if r is None:
            return _NO_MATCH, 0, None
        i = _skip_ws(buf, r)

    # [<|channel|>]
    r = _take(buf, i, "<|channel|>")
    if r == _INCOMPLETE:
        return _INCOMPLETE, 0, None
    if r is not None:
        i = _skip_ws(buf, r)

    # [commentary ]
    r = _take(buf, i, "commentary")
    if r == _INCOMPLETE:
        return _INCOMPLETE, 0, None
    if r is not None:
        i = _skip_ws(buf, r)

    r = _take(buf, i, "to=functions.")
    if r == _INCOMPLETE or (r is not None and r == len(buf)):
        return _INCOMPLETE, 0, None
    if r is None:
        return _NO_MATCH, 0, None
    i = r

    m = _NAME_RE.match(buf, i)
    if m is None:
        return _NO_MATCH, 0, None
    if m.end() == len(buf):
        return _INCOMPLETE, 0, None
    name = m.group()
    i = m.end()

    # Gap between the name and the JSON body: whitespace, control tokens
    # such as <|constrain|> and <|message|>, and the bare word "json".
    while True:
        if i >= len(buf):
            return _INCOMPLETE, 0, None
        ch = buf[i]
        if ch.isspace():
            i += 1
        elif ch == "{":
            break
        elif ch == "<":
            tm = _TOKEN_RE.match(buf, i)
            if tm is not None:
                i = tm.end()
            elif _is_token_prefix(buf[i:]):
                return _INCOMPLETE, 0, None
            else:
                return _NO_MATCH, 0, None
        else:
            r = _take(buf, i, "json")
            if r == _INCOMPLETE:
                return _INCOMPLETE, 0, None
            if r is None:
                return _NO_MATCH, 0, None
            i = r

    end = _balanced_object_end(buf, i)
    if end is None:
        return _INCOMPLETE, 0, None

    body = buf[i:end]
    try:
        arguments = json.loads(body)
    except json.JSONDecodeError as exc:
        return _MALFORMED, end, f"Invalid JSON arguments for {name}: {exc.msg}"
    if not isinstance(arguments, dict):
        return _MALFORMED, end, f"Arguments for {name} must be a JSON object"
    return _MATCH, end, (name, arguments)


def _match_structured(buf: str) -> tuple[str, int, Any]:
    i = _skip_ws(buf, 1)
    if i >= len(buf):
        return _INCOMPLETE, 0, None
    r = _take(buf, i, '"function_call"')
    if r == _INCOMPLETE:
        return _INCOMPLETE, 0, None
    if r is None:
        return _NO_MATCH, 0, None

    end = _balanced_object_end(buf, 0)
    if end is None:
        return _INCOMPLETE, 0, None

    try:
        obj = json.loads(buf[:end])
    except json.JSONDecodeError as exc:
        return _MALFORMED, end, f"Invalid function_call JSON: {exc.msg}"

    call = obj.get("function_call")
    if not isinstance(call, dict) or not isinstance(call.get("name"), str) or not call["name"]:
        return _MALFORMED, end, "function_call must be an object with a name"
    name = call["name"]

    raw_args = call.get("arguments")
    if raw_args is None or raw_args == "":
        arguments: Any = {}
    elif isinstance(raw_args, str):
        try:
            arguments = json.loads(raw_args)
        except json.JSONDecodeError as exc:
            return _MALFORMED, end, f"Invalid JSON arguments for {name}: {exc.msg}"
    else:
        arguments = raw_args
    if not isinstance(arguments, dict):
        return _MALFORMED, end, f"Arguments for {name} must be a JSON object"
    return _MATCH, end, (name, arguments)


def _balanced_object_end(buf: str, start: int) -> int | None:
    """
    Return the index just past the object opened at ``buf[start]``, or
    ``None`` if it has not been closed yet.  Braces inside strings are
    ignored.
    """
    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(buf)):
        ch = buf[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
        elif ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return i + 1
    return None


def _is_token_prefix(text: str) -> bool:
    """True if *text* could still grow into a ``<|name|>`` control token."""
    return re.fullmatch(r"<(\|([a-z_]+(\|)?)?)?", text) is not None


def _viable_tail(buf: str) -> int:
    """Length of the longest suffix of *buf* that could start a directive."""
    best = 0
    for trigger in _HOLDABLE:
        for k in range(min(len(trigger) - 1, len(buf)), best, -1):
            if buf.endswith(trigger[:k]):
                best = k
                break
    fence = _FENCE_TAIL_RE.search(buf)
    if fence is not None:
        best = max(best, len(buf) - fence.start())
    return best
