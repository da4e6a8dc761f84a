"""
Fitting conversation history into the model context window.

Given the conversation messages and a system prompt, :class:`ContextPacker`
trims the conversation to fit the model's context window.

The trimming strategy is:

1.  Compute the *budget* (tokens available for conversation messages):
    context window minus output allowance, a safety reserve and the
    system prompt.
2.  Starting at the newest message and moving back in time, add up
    token costs and stop at the first message that no longer fits.  Older
    messages are dropped; the kept messages are always a contiguous,
    most-recent suffix of the conversation.
3.  System messages at any position are always retained.
4.  If the most recent user-role message cannot be kept, packing fails
    with :class:`~lmchat.errors.ContextBudgetExceeded`.
"""

from __future__ import annotations

from typing import Any

from lmchat.errors import ContextBudgetExceeded
from lmchat.llm.types import Message
from lmchat.types import ContextPackReport


class ContextPacker:
    """
    Trims history to what the model can accept this pass.

    Parameters
    ----------
    token_counter:
        Any object exposing ``count_text(str) -> int``.  The
        ``lmchat.llm.token_counter.TokenCounter`` class satisfies this
        interface.
    """

    def __init__(self, token_counter: Any) -> None:
        self.token_counter = token_counter

    def _message_tokens(self, msg: Message) -> int:
        # Same per-message overhead as TokenCounter.count_message.
        return 4 + self.token_counter.count_text(msg.content or "")

    def pack(
        self,
        messages: list[Message],
        system_prompt: str,
        max_context_tokens: int,
        max_output_tokens: int,
        reserve_tokens: int = 200,
    ) -> tuple[list[Message], ContextPackReport]:
        """
        Keep the newest *messages* that fit, plus any system messages.

        The returned list starts with the system prompt (when non-empty)
        followed by the kept conversation messages in original order.

        Raises
        ------
        ContextBudgetExceeded
            If the newest user message does not fit.
        """
        system_prompt_tokens = (
            self._message_tokens(Message(role="system", content=system_prompt))
            if system_prompt
            else 0
        )
        budget = max(
            0,
            max_context_tokens - max_output_tokens - reserve_tokens - system_prompt_tokens,
        )

        system_indices = {i for i, m in enumerate(messages) if m.role == "system"}
        system_tokens = sum(self._message_tokens(messages[i]) for i in system_indices)
        remaining = max(0, budget - system_tokens)

        kept_indices: set[int] = set(system_indices)
        running = 0
        for idx in range(len(messages) - 1, -1, -1):
            if idx in system_indices:
                continue
            cost = self._message_tokens(messages[idx])
            if running + cost > remaining:
                break
            running += cost
            kept_indices.add(idx)

        last_user = next(
            (i for i in range(len(messages) - 1, -1, -1) if messages[i].role == "user"),
            None,
        )
        if last_user is not None and last_user not in kept_indices:
            raise ContextBudgetExceeded(
                f"Latest user message needs "
                f"{self._message_tokens(messages[last_user])} tokens but only "
                f"{remaining} are available for the conversation "
                f"(context={max_context_tokens}, output={max_output_tokens}, "
                f"reserve={reserve_tokens}, system={system_prompt_tokens})"
            )

        packed = [messages[i] for i in sorted(kept_indices)]
        report = ContextPackReport(
            max_context_tokens=max_context_tokens,
            max_output_tokens=max_output_tokens,
            reserve_tokens=reserve_tokens,
            system_prompt_tokens=system_prompt_tokens,
            message_tokens=system_tokens + running,
            kept_messages=len(packed),
            dropped_messages=len(messages) - len(packed),
        )
        if system_prompt:
            packed.insert(0, Message(role="system", content=system_prompt))
        return packed, report
