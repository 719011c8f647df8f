"""Data models for the tenant chat service.

MongoDB documents and the HTTP surface use camelCase field names
(ownerId, summarizedUpToIndex, ...); Python code uses snake_case attributes.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

TITLE_MAX_CHARS = 50


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    def to_document(self) -> dict:
        """Serialize with camelCase keys, dropping unset optionals."""
        return self.model_dump(by_alias=True, exclude_none=True)


# --- Conversation ---


class TokenUsage(_CamelModel):
    """End-of-stream usage report from the model provider."""

    prompt_tokens: int = Field(0, alias="promptTokens")
    response_tokens: int = Field(0, alias="responseTokens")
    total_tokens: int = Field(0, alias="totalTokens")


class Message(_CamelModel):
    """Single role-tagged message. Immutable once written."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    role: Literal["user", "assistant"]
    content: str
    timestamp: datetime = Field(default_factory=utcnow)
    tokens: TokenUsage | None = None

    def to_turn(self) -> dict:
        """LLM-ready {"role", "content"} dict."""
        return {"role": self.role, "content": self.content}


class ConversationLog(_CamelModel):
    """Ordered messages of one (ownerId, sessionId) plus the summary cursor.

    The summary, if present, compresses exactly messages[0..summarized_up_to_index].
    """

    owner_id: str = Field(alias="ownerId")
    session_id: str = Field(alias="sessionId")
    messages: list[Message] = Field(default_factory=list)
    summary: str | None = None
    summarized_up_to_index: int = Field(-1, alias="summarizedUpToIndex")

    @classmethod
    def empty(cls, owner_id: str, session_id: str) -> ConversationLog:
        return cls(ownerId=owner_id, sessionId=session_id)


class SessionMeta(_CamelModel):
    """Cheap listing row for one conversation."""

    session_id: str = Field(alias="sessionId")
    owner_id: str = Field(alias="ownerId")
    title: str = "New Chat"
    last_message_at: datetime = Field(default_factory=utcnow, alias="lastMessageAt")
    created_at: datetime | None = Field(None, alias="createdAt")


def derive_title(message: str) -> str:
    """First 50 characters of the first user message, ellipsis if truncated."""
    text = " ".join(message.split())
    if len(text) <= TITLE_MAX_CHARS:
        return text or "New Chat"
    return text[:TITLE_MAX_CHARS] + "..."


# --- Tenant ---


class TenantConfig(_CamelModel):
    """Per-tenant AI configuration (read-only for the chat core)."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    tenant_id: str = Field(alias="tenantId")
    ai_persona: str = Field("", alias="aiPersona")
    model: str = ""
    name: str = ""
    domain: str = ""
    logo_url: str = Field("", alias="logoUrl")
    theme_color: str = Field("#3b82f6", alias="themeColor")
    welcome_message: str = Field("Hello! How can I help you today?", alias="welcomeMessage")

    def public_view(self) -> dict:
        """Public-facing fields only (no persona/model)."""
        return self.model_dump(
            by_alias=True,
            include={"tenant_id", "name", "domain", "logo_url", "theme_color", "welcome_message"},
        )


# --- Requests ---


class ChatRequest(_CamelModel):
    """Inbound chat turn.

    Fields default to empty (null included) so missing values surface as
    InvalidRequest from the orchestrator instead of a schema error.
    """

    message: str = ""
    session_id: str = Field("", alias="sessionId")
    owner_id: str = Field("", alias="ownerId")
    tenant_id: str | None = Field(None, alias="tenantId")

    @field_validator("message", "session_id", "owner_id", mode="before")
    @classmethod
    def null_as_missing(cls, value):
        # JSON null is treated like an omitted field
        return "" if value is None else value
