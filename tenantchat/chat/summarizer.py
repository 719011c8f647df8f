"""Summarizer: folds older messages into the running conversation summary.

With an existing summary the call is a merge (facts and decisions from the old
summary are kept, new messages are folded in), not a concatenation. Output is
prose of roughly 2-3 paragraphs; the length is requested, not enforced.

Any backend with the same async `summarize` signature can be injected into
the turn orchestrator; the default delegates to the language model.
"""

from __future__ import annotations

import logging
from typing import Protocol

from tenantchat.config import settings
from tenantchat.errors import SummarizationWarning
from tenantchat.llm.provider import LLMProvider, llm_provider
from tenantchat.models import Message

logger = logging.getLogger(__name__)

_SYSTEM_PROMPT = (
    "You are a conversation analyst. You compress chat history into a concise "
    "running summary that another assistant will use as context.\n\n"
    "Rules:\n"
    "- Write plain prose, 2-3 short paragraphs at most\n"
    "- Keep names, facts, numbers, decisions and open questions\n"
    "- Drop greetings, filler and repeated content\n"
    "- Do not invent anything that is not in the input\n"
    "- Reply with the summary text only"
)

_ROLE_LABELS = {"user": "User", "assistant": "Assistant"}


class Summarizer(Protocol):
    async def summarize(
        self,
        new_messages: list[Message],
        existing_summary: str | None = None,
    ) -> str: ...


def format_transcript(messages: list[Message], max_chars: int) -> str:
    lines = []
    for m in messages:
        label = _ROLE_LABELS.get(m.role, m.role)
        content = m.content if len(m.content) <= max_chars else m.content[:max_chars] + " [...]"
        lines.append(f"[{label}]: {content}")
    return "\n".join(lines)


def build_summary_prompt(
    new_messages: list[Message],
    existing_summary: str | None,
    max_chars: int,
) -> list[dict]:
    transcript = format_transcript(new_messages, max_chars)
    if existing_summary:
        user = (
            "Merge the new messages into the existing summary. Preserve every fact "
            "and decision from the existing summary and incorporate the new "
            "information; produce one updated summary, not two concatenated ones.\n\n"
            f"Existing summary:\n{existing_summary}\n\n"
            f"New messages:\n{transcript}"
        )
    else:
        user = f"Summarize this conversation:\n{transcript}"
    return [
        {"role": "system", "content": _SYSTEM_PROMPT},
        {"role": "user", "content": user},
    ]


class LLMSummarizer:
    """Summarizer backed by the chat model."""

    def __init__(self, provider: LLMProvider = llm_provider, model: str | None = None) -> None:
        self._provider = provider
        self._model = model

    async def summarize(
        self,
        new_messages: list[Message],
        existing_summary: str | None = None,
    ) -> str:
        """Summarize (or merge) `new_messages`.

        Raises SummarizationWarning on any backend failure or empty output.
        """
        if not new_messages:
            raise ValueError("summarize() needs at least one message")

        messages = build_summary_prompt(
            new_messages, existing_summary, settings.summary_message_max_chars,
        )
        target_model = self._model or settings.summary_model or None
        try:
            content = await self._provider.completion(
                messages=messages,
                model=target_model,
                temperature=settings.summary_temperature,
                max_tokens=settings.summary_max_tokens,
            )
        except Exception as e:
            raise SummarizationWarning(f"Summarizer backend failed: {e}") from e

        content = (content or "").strip()
        if not content:
            raise SummarizationWarning("Summarizer backend returned an empty summary")

        logger.info(
            "SUMMARY_DONE | messages=%d | merged=%s | chars=%d",
            len(new_messages), bool(existing_summary), len(content),
        )
        return content


# Singleton
summarizer = LLMSummarizer()
