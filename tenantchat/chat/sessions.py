"""Session index: one cheap listing row per conversation.

Collection chat_sessions: {sessionId, ownerId, title, lastMessageAt, createdAt}.
The row is created by the first user message and only its lastMessageAt moves
afterwards; listings never load message bodies.
"""

from __future__ import annotations

import logging

from motor.motor_asyncio import AsyncIOMotorCollection

from tenantchat.config import settings
from tenantchat.db import SESSIONS_COLLECTION, Database, database
from tenantchat.models import SessionMeta, derive_title, utcnow

logger = logging.getLogger(__name__)


class SessionIndex:
    def __init__(self, db: Database = database) -> None:
        self._db = db

    async def _collection(self) -> AsyncIOMotorCollection:
        return (await self._db.get())[SESSIONS_COLLECTION]

    async def record_user_message(self, owner_id: str, session_id: str, message: str) -> None:
        """Create the row on the first user message, else bump lastMessageAt.

        Idempotent: the title is only written on insert.
        """
        now = utcnow()
        coll = await self._collection()
        await coll.update_one(
            {"sessionId": session_id},
            {
                "$setOnInsert": {
                    "ownerId": owner_id,
                    "title": derive_title(message),
                    "createdAt": now,
                },
                "$set": {"lastMessageAt": now},
            },
            upsert=True,
        )

    async def touch(self, session_id: str) -> None:
        """Bump lastMessageAt of an existing row (title untouched)."""
        coll = await self._collection()
        await coll.update_one(
            {"sessionId": session_id},
            {"$set": {"lastMessageAt": utcnow()}},
        )

    async def get(self, session_id: str) -> SessionMeta | None:
        coll = await self._collection()
        doc = await coll.find_one({"sessionId": session_id})
        return SessionMeta.model_validate(doc) if doc else None

    async def list_for_owner(self, owner_id: str, limit: int | None = None) -> list[SessionMeta]:
        """Most recently active sessions first."""
        limit = limit or settings.session_list_limit
        coll = await self._collection()
        cursor = (
            coll.find({"ownerId": owner_id})
            .sort("lastMessageAt", -1)
            .limit(limit)
        )
        docs = await cursor.to_list(length=limit)
        return [SessionMeta.model_validate(doc) for doc in docs]


# Singleton
session_index = SessionIndex()
