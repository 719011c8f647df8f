"""Transcript export (json / text / markdown)."""

from __future__ import annotations

import json
from datetime import datetime
from urllib.parse import quote

from tenantchat.errors import InvalidRequest
from tenantchat.models import Message, utcnow

EXPORT_FORMATS = {
    "json": ("application/json", "json"),
    "text": ("text/plain; charset=utf-8", "txt"),
    "markdown": ("text/markdown; charset=utf-8", "md"),
}


def _ts(value: datetime) -> str:
    return value.strftime("%Y-%m-%d %H:%M:%S")


def _label(message: Message, markdown: bool = False) -> str:
    label = "You" if message.role == "user" else "Assistant"
    return f"**{label}**" if markdown else label


def render_transcript(
    messages: list[Message],
    fmt: str,
    title: str = "Chat",
    exported_at: datetime | None = None,
) -> str:
    if fmt == "json":
        return json.dumps(
            [m.model_dump(mode="json", by_alias=True, exclude_none=True) for m in messages],
            indent=2,
            ensure_ascii=False,
        )
    if fmt == "text":
        return "\n".join(f"[{_ts(m.timestamp)}] {_label(m)}:\n{m.content}\n" for m in messages)
    if fmt == "markdown":
        exported_at = exported_at or utcnow()
        header = f"# {title} Chat Export\n\nExported on: {_ts(exported_at)}\n\n---\n\n"
        body = "\n---\n\n".join(
            f"### {_label(m, markdown=True)} - {_ts(m.timestamp)}\n\n{m.content}\n"
            for m in messages
        )
        return header + body
    raise InvalidRequest(f"Unsupported export format: {fmt}")


def export_filename(title: str, fmt: str, exported_at: datetime | None = None) -> str:
    """ASCII-only download name (HTTP headers are latin-1)."""
    exported_at = exported_at or utcnow()
    safe = "".join(
        c if (c.isascii() and c.isalnum()) or c in "-_" else "-" for c in title
    ).strip("-") or "chat"
    return f"{safe}-chat-{exported_at.strftime('%Y%m%dT%H%M%S')}.{EXPORT_FORMATS[fmt][1]}"


def content_disposition(title: str, fmt: str, exported_at: datetime | None = None) -> str:
    """Attachment header with an ASCII fallback plus the UTF-8 title (RFC 5987)."""
    exported_at = exported_at or utcnow()
    ascii_name = export_filename(title, fmt, exported_at)
    utf8_name = f"{title}-chat-{exported_at.strftime('%Y%m%dT%H%M%S')}.{EXPORT_FORMATS[fmt][1]}"
    return f"attachment; filename=\"{ascii_name}\"; filename*=UTF-8''{quote(utf8_name, safe='')}"
