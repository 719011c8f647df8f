"""Error taxonomy for chat turns.

Only InvalidRequest, NotFound and UpstreamStreamError reach the caller.
PersistenceWarning and SummarizationWarning are logged and swallowed by the
turn orchestrator so the user-facing turn still completes.
"""

from __future__ import annotations


class ChatError(Exception):
    """Base class for all chat service errors."""


class InvalidRequest(ChatError):
    """Required request fields are missing (4xx, no side effects)."""


class NotFound(ChatError):
    """Unknown tenant/session where the lookup is mandatory."""


class UpstreamStreamError(ChatError):
    """Model provider failed to open or broke mid-stream."""


class HeartbeatTimeoutError(UpstreamStreamError):
    """LLM stopped sending tokens (heartbeat dead)."""


class PersistenceWarning(ChatError):
    """Best-effort write to the message log or session index failed."""

    def __init__(self, operation: str, cause: BaseException | None = None):
        self.operation = operation
        self.cause = cause
        super().__init__(f"{operation} failed: {cause}")


class SummarizationWarning(ChatError):
    """Summarizer backend was unavailable or produced nothing."""
