"""Chat API endpoints: FastAPI router.

Endpoints:
- POST /chat               → streamed turn (text/plain, usage marker at the end)
- GET  /chat/history       → ordered messages of one session
- GET  /chat/sessions      → up to 50 sessions of an owner, newest first
- GET  /chat/export        → transcript download (json | text | markdown)
- GET  /tenant/by-domain   → public tenant fields for a domain
"""

from __future__ import annotations

import asyncio
import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import Response, StreamingResponse

from tenantchat.chat.export import EXPORT_FORMATS, content_disposition, render_transcript
from tenantchat.chat.handler import ChatTurn, TurnOrchestrator, turn_orchestrator
from tenantchat.chat.history import MessageLogStore, message_log
from tenantchat.chat.sessions import SessionIndex, session_index
from tenantchat.config import settings
from tenantchat.errors import InvalidRequest, NotFound, UpstreamStreamError
from tenantchat.models import ChatRequest
from tenantchat.tenants import TenantDirectory, tenant_directory

logger = logging.getLogger(__name__)

router = APIRouter()


# ---------------------------------------------------------------------------
# Dependencies (overridable in tests)
# ---------------------------------------------------------------------------

def get_orchestrator() -> TurnOrchestrator:
    return turn_orchestrator


def get_message_log() -> MessageLogStore:
    return message_log


def get_session_index() -> SessionIndex:
    return session_index


def get_tenant_directory() -> TenantDirectory:
    return tenant_directory


# ---------------------------------------------------------------------------
# Chat turn
# ---------------------------------------------------------------------------

async def _watch_disconnect(request: Request, turn: ChatTurn, cancel: asyncio.Event) -> None:
    """Set the cancellation token once the client is gone."""
    while not cancel.is_set():
        if await request.is_disconnected():
            logger.info("CLIENT_DISCONNECTED | sessionId=%s", turn.request.session_id)
            turn.abandon()
            return
        await asyncio.sleep(settings.disconnect_poll_interval)


@router.post("/chat")
async def chat(
    body: ChatRequest,
    request: Request,
    orchestrator: TurnOrchestrator = Depends(get_orchestrator),
):
    """Stream one assistant reply as UTF-8 text.

    After the model text, "\\n__TOKEN_USAGE__" + JSON usage may follow;
    "\\n__STREAM_ERROR__" + JSON signals a provider failure mid-stream.
    """
    cancel = asyncio.Event()
    try:
        turn = await orchestrator.start_turn(body, cancel)
    except InvalidRequest as e:
        raise HTTPException(status_code=400, detail=str(e))
    except NotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except UpstreamStreamError as e:
        logger.error("Chat stream open failed for session %s: %s", body.session_id, e)
        raise HTTPException(status_code=502, detail="Model provider unavailable")

    watcher = asyncio.create_task(_watch_disconnect(request, turn, cancel))

    async def body_iterator():
        try:
            async for chunk in turn.relay():
                yield chunk.encode("utf-8")
        finally:
            watcher.cancel()

    return StreamingResponse(
        body_iterator(),
        media_type="text/plain; charset=utf-8",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


# ---------------------------------------------------------------------------
# History / sessions / export
# ---------------------------------------------------------------------------

@router.get("/chat/history")
async def chat_history(
    owner_id: str = Query("", alias="ownerId"),
    session_id: str = Query("", alias="sessionId"),
    store: MessageLogStore = Depends(get_message_log),
):
    """Ordered messages; an unknown conversation is an empty list."""
    if not owner_id or not session_id:
        raise HTTPException(status_code=400, detail="Missing ownerId or sessionId")
    try:
        messages = await store.get_messages(owner_id, session_id)
    except Exception as e:
        logger.exception("Failed to load history for session %s", session_id)
        raise HTTPException(status_code=500, detail=str(e))
    return {
        "messages": [m.model_dump(mode="json", by_alias=True, exclude_none=True) for m in messages],
    }


@router.get("/chat/sessions")
async def chat_sessions(
    owner_id: str = Query("", alias="ownerId"),
    sessions: SessionIndex = Depends(get_session_index),
):
    if not owner_id:
        raise HTTPException(status_code=400, detail="Missing ownerId")
    try:
        metas = await sessions.list_for_owner(owner_id, settings.session_list_limit)
    except Exception as e:
        logger.exception("Failed to list sessions for owner %s", owner_id)
        raise HTTPException(status_code=500, detail=str(e))
    return {
        "sessions": [m.model_dump(mode="json", by_alias=True, exclude_none=True) for m in metas],
    }


@router.get("/chat/export")
async def chat_export(
    owner_id: str = Query("", alias="ownerId"),
    session_id: str = Query("", alias="sessionId"),
    fmt: str = Query("markdown", alias="format"),
    store: MessageLogStore = Depends(get_message_log),
    sessions: SessionIndex = Depends(get_session_index),
):
    if not owner_id or not session_id:
        raise HTTPException(status_code=400, detail="Missing ownerId or sessionId")
    if fmt not in EXPORT_FORMATS:
        raise HTTPException(status_code=400, detail=f"Unsupported format: {fmt}")

    messages = await store.get_messages(owner_id, session_id)
    if not messages:
        raise HTTPException(status_code=404, detail=f"No messages in session {session_id}")

    meta = await sessions.get(session_id)
    title = meta.title if meta else "Chat"
    return Response(
        content=render_transcript(messages, fmt, title=title),
        media_type=EXPORT_FORMATS[fmt][0],
        headers={"Content-Disposition": content_disposition(title, fmt)},
    )


# ---------------------------------------------------------------------------
# Tenant
# ---------------------------------------------------------------------------

@router.get("/tenant/by-domain")
async def tenant_by_domain(
    request: Request,
    domain: str = Query(""),
    tenants: TenantDirectory = Depends(get_tenant_directory),
):
    """Public tenant fields for a domain (query param, else Host header)."""
    try:
        tenant = await tenants.by_domain(domain or request.headers.get("host", ""))
    except InvalidRequest as e:
        raise HTTPException(status_code=400, detail=str(e))
    except NotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    return tenant.public_view()
