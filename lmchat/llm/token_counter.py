"""
Token counting with an optional tiktoken backend.

Local models ship their own tokenizers, so exact counts are not available
client-side.  By default a character heuristic (~4 characters per token) is
used; configuring an *encoding* name (e.g. ``"cl100k_base"``) switches to
tiktoken's BPE encoder for a closer estimate.
"""

from __future__ import annotations

from typing import Any

import tiktoken


class TokenCounter:
    """
    Estimate token counts for text and message lists.

    Parameters
    ----------
    encoding:
        tiktoken encoding name.  ``None`` or ``""`` selects the heuristic.
    """

    def __init__(self, encoding: str | None = None) -> None:
        self.encoding = encoding or None
        self._enc: Any = tiktoken.get_encoding(encoding) if encoding else None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def count_text(self, text: str) -> int:
        """Return the estimated token count for a plain string."""
        if not text:
            return 0
        if self._enc is not None:
            return len(self._enc.encode(text))
        # Heuristic: roughly 4 characters per token for English text.
        return max(1, len(text) // 4)

    def count_message(self, msg: Any) -> int:
        """Per-message overhead (role markers, separators) plus content."""
        return 4 + self.count_text(getattr(msg, "content", None) or "")

    def count_messages(self, messages: list) -> int:
        """Estimate the total token count for a conversation."""
        return sum(self.count_message(m) for m in messages)
