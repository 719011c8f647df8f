"""Context window builder: decides which history the model sees each turn.

Sliding window + running summary:
- Up to SUMMARIZE_THRESHOLD messages the whole history is sent verbatim.
- Above it only the last WINDOW messages are sent verbatim; everything older
  is represented by one synthetic assistant turn carrying the summary.
- Messages that fell out of the window since the last summary run
  (index > summarized_up_to) must be folded into the summary this turn.

The caller's new message is never part of the window; it is sent as the
prompt turn. The builder is pure and synchronous.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from tenantchat.models import Message

WINDOW = 8                    # Verbatim messages always kept
SUMMARIZE_THRESHOLD = 15      # History length above which summarization activates

SUMMARY_TEMPLATE = "[Previous conversation summary: {summary}]"


@dataclass(frozen=True)
class ContextWindow:
    """Result of build_context_window()."""

    keep: list[Message]                          # Verbatim recent history
    to_summarize: list[Message] = field(default_factory=list)
    summary: str | None = None                   # Summary to prepend (prior one)
    summary_cursor_target: int | None = None     # Last index covered once to_summarize is folded in

    @property
    def needs_summary(self) -> bool:
        return bool(self.to_summarize)

    def turns(self, summary: str | None = None) -> list[dict]:
        """LLM-ready prior turns.

        `summary` overrides the stored one (a summary produced this turn).
        """
        text = summary if summary is not None else self.summary
        turns: list[dict] = []
        if text:
            turns.append({"role": "assistant", "content": SUMMARY_TEMPLATE.format(summary=text)})
        turns.extend(m.to_turn() for m in self.keep)
        return turns


def build_context_window(
    messages: list[Message],
    summarized_up_to: int = -1,
    summary: str | None = None,
) -> ContextWindow:
    """Compute the context for the next assistant reply.

    Args:
        messages: Prior history in conversation order (without the new message).
        summarized_up_to: Index of the last message covered by `summary` (-1 = none).
        summary: Stored running summary, if any.
    """
    n = len(messages)
    if n <= SUMMARIZE_THRESHOLD:
        return ContextWindow(keep=list(messages))

    cutoff = n - WINDOW
    older = messages[:cutoff]
    newly_summarizable = older[max(summarized_up_to, -1) + 1:]

    return ContextWindow(
        keep=list(messages[cutoff:]),
        to_summarize=list(newly_summarizable),
        summary=summary or None,
        summary_cursor_target=cutoff - 1 if newly_summarizable else None,
    )
