"""Message log store: append-only conversation history in MongoDB.

Collection chat_histories, one document per (ownerId, sessionId):
    {ownerId, sessionId, messages: [{role, content, timestamp, tokens?}],
     summary?, summarizedUpToIndex, createdAt, updatedAt}

Writes are single-document atomic operations (no transactions):
- append():          $push with upsert, returns the log as it is after the push
- advance_summary(): compare-and-set on summarizedUpToIndex, never moves it back
"""

from __future__ import annotations

import logging

from motor.motor_asyncio import AsyncIOMotorCollection
from pymongo import ReturnDocument

from tenantchat.db import HISTORY_COLLECTION, Database, database
from tenantchat.models import ConversationLog, Message, utcnow

logger = logging.getLogger(__name__)


class MessageLogStore:
    """Per-session ordered message log plus summary cursor."""

    def __init__(self, db: Database = database) -> None:
        self._db = db

    async def _collection(self) -> AsyncIOMotorCollection:
        return (await self._db.get())[HISTORY_COLLECTION]

    @staticmethod
    def _key(owner_id: str, session_id: str) -> dict:
        return {"ownerId": owner_id, "sessionId": session_id}

    async def append(self, owner_id: str, session_id: str, message: Message) -> ConversationLog:
        """Append one message, creating the log on first write.

        Returns the log including the appended message. Retrying after an
        ambiguous failure may append twice (at-least-once).
        """
        now = utcnow()
        coll = await self._collection()
        doc = await coll.find_one_and_update(
            self._key(owner_id, session_id),
            {
                "$push": {"messages": message.to_document()},
                "$set": {"updatedAt": now},
                "$setOnInsert": {"summarizedUpToIndex": -1, "createdAt": now},
            },
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        log = ConversationLog.model_validate(doc)
        logger.debug(
            "MESSAGE_APPENDED | sessionId=%s | role=%s | count=%d",
            session_id, message.role, len(log.messages),
        )
        return log

    async def load(self, owner_id: str, session_id: str) -> ConversationLog:
        """Full log; an unknown conversation is an empty log, not an error."""
        coll = await self._collection()
        doc = await coll.find_one(self._key(owner_id, session_id))
        if doc is None:
            return ConversationLog.empty(owner_id, session_id)
        return ConversationLog.model_validate(doc)

    async def get_messages(self, owner_id: str, session_id: str) -> list[Message]:
        return (await self.load(owner_id, session_id)).messages

    async def advance_summary(
        self,
        owner_id: str,
        session_id: str,
        summary: str,
        up_to_index: int,
    ) -> bool:
        """Store a new summary covering messages[0..up_to_index].

        Applied only if the stored cursor is behind up_to_index and the
        message at up_to_index exists, so the cursor never decreases and
        always points inside the log. Returns True if the update was applied.
        """
        coll = await self._collection()
        result = await coll.update_one(
            {
                **self._key(owner_id, session_id),
                f"messages.{up_to_index}": {"$exists": True},
                "$or": [
                    {"summarizedUpToIndex": {"$lt": up_to_index}},
                    {"summarizedUpToIndex": {"$exists": False}},
                ],
            },
            {"$set": {
                "summary": summary,
                "summarizedUpToIndex": up_to_index,
                "updatedAt": utcnow(),
            }},
        )
        applied = result.modified_count == 1
        if applied:
            logger.info("SUMMARY_ADVANCED | sessionId=%s | upTo=%d", session_id, up_to_index)
        else:
            logger.info(
                "SUMMARY_ADVANCE_SKIPPED | sessionId=%s | upTo=%d | cursor already at or past target",
                session_id, up_to_index,
            )
        return applied


# Singleton
message_log = MessageLogStore()
