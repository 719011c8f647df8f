"""Per-session turn serialization (in-process).

Two turns of the same session racing (e.g. two browser tabs) would both read
the same history and compute overlapping summaries. Holding one asyncio.Lock
per sessionId from the user-message append until the turn is finalized makes
them run one after another. Different sessions never contend.

Only covers a single process; across processes the compare-and-set cursor
update in MessageLogStore.advance_summary() still keeps the cursor monotonic.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass


logger = logging.getLogger(__name__)


@dataclass
class _Entry:
    lock: asyncio.Lock
    users: int = 0


class SessionLocks:
    """Registry of per-session locks; idle entries are dropped."""

    def __init__(self) -> None:
        self._entries: dict[str, _Entry] = {}

    async def acquire(self, session_id: str) -> None:
        entry = self._entries.get(session_id)
        if entry is None:
            entry = self._entries[session_id] = _Entry(asyncio.Lock())
        entry.users += 1
        if entry.lock.locked():
            logger.info("SESSION_LOCK_WAIT | sessionId=%s", session_id)
        try:
            await entry.lock.acquire()
        except BaseException:
            self._forget(session_id, entry)
            raise

    def release(self, session_id: str) -> None:
        entry = self._entries.get(session_id)
        if entry is None or not entry.lock.locked():
            return
        entry.lock.release()
        self._forget(session_id, entry)

    def _forget(self, session_id: str, entry: _Entry) -> None:
        entry.users -= 1
        if entry.users <= 0 and self._entries.get(session_id) is entry:
            del self._entries[session_id]

    def is_locked(self, session_id: str) -> bool:
        entry = self._entries.get(session_id)
        return entry is not None and entry.lock.locked()

    def __len__(self) -> int:
        return len(self._entries)


# Singleton
session_locks = SessionLocks()
