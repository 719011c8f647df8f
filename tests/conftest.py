"""Pytest configuration for tenantchat tests.

Sets up minimal environment for unit tests without requiring
MongoDB or a model provider, and provides in-memory test doubles.
"""

from __future__ import annotations

import os

# Set minimal environment variables for Settings (before tenantchat imports)
os.environ.setdefault("MONGODB_URL", "mongodb://localhost:27017/tenantchat_test")
os.environ.setdefault("MONGODB_DATABASE", "tenantchat_test")

from datetime import datetime, timedelta, timezone

import pytest

from tenantchat.errors import UpstreamStreamError
from tenantchat.models import ConversationLog, Message, SessionMeta, TenantConfig, TokenUsage, derive_title


def make_messages(count: int, start: int = 0) -> list[Message]:
    """m<start>..m<start+count-1>, alternating user/assistant, increasing timestamps."""
    base = datetime(2025, 1, 1, tzinfo=timezone.utc)
    return [
        Message(
            role="user" if i % 2 == 0 else "assistant",
            content=f"m{i}",
            timestamp=base + timedelta(minutes=i),
        )
        for i in range(start, start + count)
    ]


class InMemoryMessageLog:
    """MessageLogStore double with the same write semantics."""

    def __init__(self) -> None:
        self.logs: dict[tuple[str, str], ConversationLog] = {}
        self.fail_appends_for_role: str | None = None
        self.append_calls: list[Message] = []
        self.advance_calls: list[tuple[str, int]] = []

    def seed(self, owner_id: str, session_id: str, messages: list[Message],
             summary: str | None = None, summarized_up_to: int = -1) -> None:
        self.logs[(owner_id, session_id)] = ConversationLog(
            ownerId=owner_id, sessionId=session_id, messages=list(messages),
            summary=summary, summarizedUpToIndex=summarized_up_to,
        )

    def get(self, owner_id: str, session_id: str) -> ConversationLog:
        return self.logs.get((owner_id, session_id)) or ConversationLog.empty(owner_id, session_id)

    async def append(self, owner_id: str, session_id: str, message: Message) -> ConversationLog:
        self.append_calls.append(message)
        if self.fail_appends_for_role == message.role:
            raise ConnectionError("mongo down")
        log = self.get(owner_id, session_id)
        log = log.model_copy(update={"messages": [*log.messages, message]})
        self.logs[(owner_id, session_id)] = log
        return log.model_copy(deep=True)

    async def load(self, owner_id: str, session_id: str) -> ConversationLog:
        return self.get(owner_id, session_id).model_copy(deep=True)

    async def get_messages(self, owner_id: str, session_id: str) -> list[Message]:
        return list(self.get(owner_id, session_id).messages)

    async def advance_summary(self, owner_id: str, session_id: str, summary: str, up_to_index: int) -> bool:
        self.advance_calls.append((summary, up_to_index))
        log = self.get(owner_id, session_id)
        if up_to_index >= len(log.messages) or log.summarized_up_to_index >= up_to_index:
            return False
        self.logs[(owner_id, session_id)] = log.model_copy(
            update={"summary": summary, "summarized_up_to_index": up_to_index},
        )
        return True


class InMemorySessionIndex:
    def __init__(self) -> None:
        self.rows: dict[str, SessionMeta] = {}
        self.touches: list[str] = []

    async def record_user_message(self, owner_id: str, session_id: str, message: str) -> None:
        row = self.rows.get(session_id)
        if row is None:
            self.rows[session_id] = SessionMeta(sessionId=session_id, ownerId=owner_id, title=derive_title(message))
        else:
            self.rows[session_id] = row.model_copy(update={"last_message_at": datetime.now(timezone.utc)})

    async def touch(self, session_id: str) -> None:
        self.touches.append(session_id)

    async def get(self, session_id: str) -> SessionMeta | None:
        return self.rows.get(session_id)

    async def list_for_owner(self, owner_id: str, limit: int | None = None) -> list[SessionMeta]:
        rows = sorted(
            (r for r in self.rows.values() if r.owner_id == owner_id),
            key=lambda r: r.last_message_at, reverse=True,
        )
        return rows[: limit or 50]


class FakeStream:
    """ModelStream double: yields chunks, sets usage only when exhausted."""

    def __init__(self, chunks: list[str], usage: TokenUsage | None = None, fail_after: int | None = None):
        self._chunks = list(chunks)
        self._final_usage = usage
        self._fail_after = fail_after
        self._index = 0
        self.usage: TokenUsage | None = None
        self.closed = False
        self.pulled = 0

    def __aiter__(self):
        return self

    async def __anext__(self) -> str:
        if self.closed:
            raise StopAsyncIteration
        if self._fail_after is not None and self._index >= self._fail_after:
            raise UpstreamStreamError("provider reset the connection")
        if self._index >= len(self._chunks):
            self.usage = self._final_usage
            raise StopAsyncIteration
        chunk = self._chunks[self._index]
        self._index += 1
        self.pulled += 1
        return chunk

    async def aclose(self) -> None:
        self.closed = True


class FakeLLM:
    def __init__(self, stream: FakeStream | None = None, open_error: Exception | None = None):
        self.stream = stream or FakeStream(["Hello", " world"], TokenUsage(promptTokens=10, responseTokens=2, totalTokens=12))
        self.open_error = open_error
        self.calls: list[dict] = []

    async def open_stream(self, prompt, system_instruction, model, prior_turns):
        self.calls.append({
            "prompt": prompt,
            "system_instruction": system_instruction,
            "model": model,
            "prior_turns": prior_turns,
        })
        if self.open_error is not None:
            raise self.open_error
        return self.stream


class FakeSummarizer:
    def __init__(self, result: str = "SUMMARY", error: Exception | None = None):
        self.result = result
        self.error = error
        self.calls: list[tuple[list[Message], str | None]] = []

    async def summarize(self, new_messages, existing_summary=None) -> str:
        self.calls.append((list(new_messages), existing_summary))
        if self.error is not None:
            raise self.error
        return self.result


class FakeTenants:
    def __init__(self, config: TenantConfig | None = None):
        self.config = config or TenantConfig(tenantId="acme", aiPersona="You are Acme's assistant.", model="gemini-2.0-flash")
        self.calls: list[tuple] = []

    async def resolve(self, tenant_id, owner_id, strict=False) -> TenantConfig:
        self.calls.append((tenant_id, owner_id, strict))
        return self.config


@pytest.fixture
def store() -> InMemoryMessageLog:
    return InMemoryMessageLog()


@pytest.fixture
def sessions() -> InMemorySessionIndex:
    return InMemorySessionIndex()


@pytest.fixture
def summarizer() -> FakeSummarizer:
    return FakeSummarizer()


@pytest.fixture
def tenants() -> FakeTenants:
    return FakeTenants()
