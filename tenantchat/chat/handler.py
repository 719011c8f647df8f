"""TurnOrchestrator: one chat turn from inbound message to persisted reply.

States: VALIDATING → BUILDING_CONTEXT → STREAMING → FINALIZING → DONE,
with CANCELLED reachable from STREAMING (client disconnect) and FAILED when
the model stream breaks.

Split in two so request-level errors surface before any byte is streamed:
1. start_turn()   validate, append user message, build context (summarize
                  if needed), open the model stream → ChatTurn
2. ChatTurn.relay()  relay chunks, append usage marker, persist the reply
                     and the advanced summary cursor

Best-effort writes (user message, session index, assistant message, summary)
never fail the turn: they are logged as PersistenceWarning and counted.
Partial output of a cancelled or broken stream is still persisted; nothing is
persisted when no content was produced.

Cancellation is cooperative: an asyncio.Event checked before every relayed
chunk, so at most one chunk is relayed after it fires.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from enum import Enum
from typing import AsyncIterator

from tenantchat import metrics
from tenantchat.chat.history import MessageLogStore, message_log
from tenantchat.chat.locks import SessionLocks, session_locks
from tenantchat.chat.sessions import SessionIndex, session_index
from tenantchat.chat.summarizer import Summarizer, summarizer
from tenantchat.chat.window import ContextWindow, build_context_window
from tenantchat.config import settings
from tenantchat.errors import InvalidRequest, NotFound, PersistenceWarning, UpstreamStreamError
from tenantchat.llm.provider import LLMProvider, ModelStream, llm_provider
from tenantchat.models import ChatRequest, ConversationLog, Message, TenantConfig
from tenantchat.tenants import TenantDirectory, tenant_directory

logger = logging.getLogger(__name__)

# Out-of-band markers; anything after them is metadata, not conversation content
TOKEN_USAGE_MARKER = "\n__TOKEN_USAGE__"
STREAM_ERROR_MARKER = "\n__STREAM_ERROR__"

# Finalizations detached from a torn-down response task
_background_tasks: set[asyncio.Task] = set()


def _spawn(coro) -> asyncio.Task:
    task = asyncio.get_running_loop().create_task(coro)
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)
    return task


class TurnState(str, Enum):
    VALIDATING = "validating"
    BUILDING_CONTEXT = "building_context"
    STREAMING = "streaming"
    FINALIZING = "finalizing"
    DONE = "done"
    CANCELLED = "cancelled"
    FAILED = "failed"


class ChatTurn:
    """A turn whose model stream is open; relay() drives it to a terminal state."""

    def __init__(
        self,
        orchestrator: TurnOrchestrator,
        request: ChatRequest,
        tenant: TenantConfig,
        window: ContextWindow,
        new_summary: str | None,
        stream: ModelStream,
        cancel: asyncio.Event,
        started_at: float,
        locked: bool,
    ) -> None:
        self.orchestrator = orchestrator
        self.request = request
        self.tenant = tenant
        self.window = window
        self.new_summary = new_summary
        self.state = TurnState.STREAMING
        self.usage = None
        self.error: UpstreamStreamError | None = None
        self._stream = stream
        self._cancel = cancel
        self._started_at = started_at
        self._locked = locked
        self._parts: list[str] = []
        self._relay_started = False
        self._finalized = False

    @property
    def content(self) -> str:
        return "".join(self._parts)

    @property
    def cancelled(self) -> bool:
        return self.state == TurnState.CANCELLED

    async def relay(self, error_marker: bool = True) -> AsyncIterator[str]:
        """Relay model chunks, then finalize.

        Args:
            error_marker: On a broken stream, yield STREAM_ERROR_MARKER + JSON
                (HTTP callers). When False the UpstreamStreamError is raised
                after finalization instead.
        """
        if self._relay_started:
            raise RuntimeError("ChatTurn.relay() can only be consumed once")
        self._relay_started = True

        try:
            while True:
                if self._cancel.is_set():
                    self.state = TurnState.CANCELLED
                    break
                try:
                    chunk = await self._stream.__anext__()
                except StopAsyncIteration:
                    break
                if self._cancel.is_set():
                    self.state = TurnState.CANCELLED
                    break
                self._parts.append(chunk)
                metrics.relayed_chunks.inc()
                yield chunk
        except Exception as e:
            self.error = e if isinstance(e, UpstreamStreamError) else UpstreamStreamError(str(e))
            self.state = TurnState.FAILED
            logger.warning(
                "STREAM_FAILED | sessionId=%s | relayed_chars=%d | %s",
                self.request.session_id, len(self.content), e,
            )
        except (asyncio.CancelledError, GeneratorExit):
            # Response task torn down (client gone): finish out of band
            self.state = TurnState.CANCELLED
            self._cancel.set()
            _spawn(self._finalize())
            raise

        try:
            if self.state == TurnState.STREAMING:
                self.usage = self._stream.usage
                if self.usage is not None and self._parts:
                    yield TOKEN_USAGE_MARKER + json.dumps(self.usage.to_document())
            elif self.state == TurnState.FAILED and error_marker:
                yield STREAM_ERROR_MARKER + json.dumps({"error": str(self.error)})
        except (asyncio.CancelledError, GeneratorExit):
            _spawn(self._finalize())
            raise

        await self._finalize()
        if self.error is not None and not error_marker:
            raise self.error

    def abandon(self) -> None:
        """Caller went away; finalize in background if relay() never started."""
        self._cancel.set()
        if not self._relay_started and not self._finalized:
            self.state = TurnState.CANCELLED
            _spawn(self._finalize())

    async def _finalize(self) -> None:
        if self._finalized:
            return
        self._finalized = True
        terminal = self.state if self.state != TurnState.STREAMING else TurnState.DONE
        try:
            if terminal != TurnState.DONE:
                await self._stream.aclose()
            if self.usage is None:
                self.usage = self._stream.usage

            if not self._parts:
                logger.info(
                    "TURN_NO_CONTENT | sessionId=%s | state=%s | nothing persisted",
                    self.request.session_id, terminal.value,
                )
            else:
                self.state = TurnState.FINALIZING
                await self.orchestrator.persist_reply(self)
        except Exception as e:
            logger.exception("TURN_FINALIZE_FAILED | sessionId=%s | %s", self.request.session_id, e)
        finally:
            self.state = terminal
            if self._locked:
                self.orchestrator.locks.release(self.request.session_id)
                self._locked = False
            outcome = "upstream_error" if terminal == TurnState.FAILED else terminal.value
            metrics.turns_total.labels(outcome).inc()
            metrics.turn_duration.observe(time.monotonic() - self._started_at)
            logger.info(
                "TURN_END | sessionId=%s | state=%s | chars=%d | chunks=%d | usage=%s | summarized=%s",
                self.request.session_id, terminal.value, len(self.content), len(self._parts),
                self.usage.total_tokens if self.usage else None,
                self.new_summary is not None,
            )


class TurnOrchestrator:
    """Builds context, drives the model stream, persists the turn."""

    def __init__(
        self,
        store: MessageLogStore = message_log,
        sessions: SessionIndex = session_index,
        summarizer: Summarizer = summarizer,
        llm: LLMProvider = llm_provider,
        tenants: TenantDirectory = tenant_directory,
        locks: SessionLocks | None = session_locks,
    ) -> None:
        self.store = store
        self.sessions = sessions
        self.summarizer = summarizer
        self.llm = llm
        self.tenants = tenants
        self.locks = locks

    async def start_turn(self, request: ChatRequest, cancel: asyncio.Event | None = None) -> ChatTurn:
        """VALIDATING → BUILDING_CONTEXT → stream opened.

        Raises:
            InvalidRequest: message, sessionId or ownerId missing (no side effects).
            NotFound: explicit unknown tenant with require_known_tenant.
            UpstreamStreamError: the model stream could not be opened.
        """
        started_at = time.monotonic()
        cancel = cancel or asyncio.Event()

        # VALIDATING
        missing = [
            name for name, value in (
                ("message", request.message),
                ("sessionId", request.session_id),
                ("ownerId", request.owner_id),
            )
            if not (value or "").strip()
        ]
        if missing:
            metrics.turns_total.labels("invalid").inc()
            raise InvalidRequest(f"Missing required fields: {', '.join(missing)}")

        try:
            tenant = await self.tenants.resolve(
                request.tenant_id, request.owner_id, strict=settings.require_known_tenant,
            )
        except NotFound:
            metrics.turns_total.labels("not_found").inc()
            raise

        locked = False
        if self.locks is not None and settings.serialize_session_turns:
            await self.locks.acquire(request.session_id)
            locked = True

        try:
            history = await self._append_user_message(request)

            # BUILDING_CONTEXT
            window = build_context_window(
                history.messages, history.summarized_up_to_index, history.summary,
            )
            new_summary = await self._maybe_summarize(request.session_id, window)
            prior_turns = window.turns(new_summary)

            logger.info(
                "CONTEXT_BUILT | sessionId=%s | history=%d | verbatim=%d | summary=%s | summarized_now=%d",
                request.session_id, len(history.messages), len(window.keep),
                bool(new_summary or window.summary), len(window.to_summarize) if new_summary else 0,
            )

            # STREAMING (open)
            stream = await self.llm.open_stream(
                request.message, tenant.ai_persona, tenant.model, prior_turns,
            )
        except BaseException as e:
            if locked:
                self.locks.release(request.session_id)
            if isinstance(e, UpstreamStreamError):
                metrics.turns_total.labels("upstream_error").inc()
            raise

        return ChatTurn(
            orchestrator=self,
            request=request,
            tenant=tenant,
            window=window,
            new_summary=new_summary,
            stream=stream,
            cancel=cancel,
            started_at=started_at,
            locked=locked,
        )

    async def _append_user_message(self, request: ChatRequest) -> ConversationLog:
        """Append the user message; return the history before it.

        Failure is logged and the turn goes on with whatever history can be read.
        """
        owner_id, session_id = request.owner_id, request.session_id
        try:
            log = await self.store.append(owner_id, session_id, Message(role="user", content=request.message))
            history = log.model_copy(update={"messages": log.messages[:-1]})
        except Exception as e:
            self._warn("append_user_message", session_id, e)
            try:
                history = await self.store.load(owner_id, session_id)
            except Exception as load_err:
                self._warn("load_history", session_id, load_err)
                history = ConversationLog.empty(owner_id, session_id)

        try:
            await self.sessions.record_user_message(owner_id, session_id, request.message)
        except Exception as e:
            self._warn("record_session", session_id, e)

        return history

    async def _maybe_summarize(self, session_id: str, window: ContextWindow) -> str | None:
        """Run the summarizer when the window overflowed; None on skip or failure."""
        if not window.needs_summary:
            return None
        try:
            summary = await self.summarizer.summarize(window.to_summarize, window.summary)
        except Exception as e:
            metrics.summarizations_total.labels("failed").inc()
            logger.warning(
                "SUMMARY_FAILED | sessionId=%s | messages=%d | keeping previous summary | %s",
                session_id, len(window.to_summarize), e,
            )
            return None
        if not summary:
            metrics.summarizations_total.labels("failed").inc()
            logger.warning("SUMMARY_EMPTY | sessionId=%s | keeping previous summary", session_id)
            return None
        metrics.summarizations_total.labels("ok").inc()
        return summary

    async def persist_reply(self, turn: ChatTurn) -> None:
        """FINALIZING: assistant message, session touch, summary cursor."""
        request = turn.request
        session_id = request.session_id
        try:
            await self.store.append(
                request.owner_id,
                session_id,
                Message(role="assistant", content=turn.content, tokens=turn.usage),
            )
        except Exception as e:
            self._warn("append_assistant_message", session_id, e)

        try:
            await self.sessions.touch(session_id)
        except Exception as e:
            self._warn("touch_session", session_id, e)

        target = turn.window.summary_cursor_target
        if turn.new_summary is not None and target is not None:
            try:
                await self.store.advance_summary(
                    request.owner_id, session_id, turn.new_summary, target,
                )
            except Exception as e:
                self._warn("advance_summary", session_id, e)

    @staticmethod
    def _warn(operation: str, session_id: str, error: Exception) -> None:
        warning = PersistenceWarning(operation, error)
        metrics.persistence_warnings_total.labels(operation).inc()
        logger.warning("PERSISTENCE_WARNING | sessionId=%s | %s", session_id, warning)


async def handle_chat(
    request: ChatRequest,
    cancel: asyncio.Event | None = None,
    orchestrator: TurnOrchestrator | None = None,
) -> AsyncIterator[str]:
    """Run a whole turn, yielding chunks (and the usage marker).

    UpstreamStreamError is raised after partial output was persisted.
    """
    turn = await (orchestrator or turn_orchestrator).start_turn(request, cancel)
    async for chunk in turn.relay(error_marker=False):
        yield chunk


# Singleton
turn_orchestrator = TurnOrchestrator()
