"""MongoDB connection management.

One process-wide Motor client, created lazily on first use and reused by
every request. Concurrent first callers share a single initialization.
"""

from __future__ import annotations

import asyncio
import logging

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING

from tenantchat.config import settings

logger = logging.getLogger(__name__)

HISTORY_COLLECTION = "chat_histories"
SESSIONS_COLLECTION = "chat_sessions"
TENANTS_COLLECTION = "tenants"


class Database:
    """Init-once holder for the Motor client."""

    def __init__(self, url: str | None = None, name: str | None = None) -> None:
        self._url = url
        self._name = name
        self._client: AsyncIOMotorClient | None = None
        self._db: AsyncIOMotorDatabase | None = None
        self._init_lock = asyncio.Lock()

    async def get(self) -> AsyncIOMotorDatabase:
        """Get or create the database handle."""
        if self._db is not None:
            return self._db
        async with self._init_lock:
            if self._db is None:
                url = self._url or settings.mongodb_url
                name = self._name or settings.mongodb_database
                self._client = AsyncIOMotorClient(url)
                self._db = self._client[name]
                logger.info("Connected to MongoDB: %s", name)
        return self._db

    async def ensure_indexes(self) -> None:
        """Create the indexes listings and keyed lookups rely on."""
        db = await self.get()
        await db[HISTORY_COLLECTION].create_index(
            [("ownerId", ASCENDING), ("sessionId", ASCENDING)], unique=True,
        )
        await db[SESSIONS_COLLECTION].create_index([("sessionId", ASCENDING)], unique=True)
        await db[SESSIONS_COLLECTION].create_index(
            [("ownerId", ASCENDING), ("lastMessageAt", DESCENDING)],
        )
        await db[TENANTS_COLLECTION].create_index([("tenantId", ASCENDING)], unique=True)
        await db[TENANTS_COLLECTION].create_index([("domain", ASCENDING)])
        logger.info("MongoDB indexes ensured")

    async def close(self) -> None:
        """Close MongoDB connection."""
        if self._client:
            self._client.close()
            self._client = None
            self._db = None
            logger.info("MongoDB connection closed")


# Singleton
database = Database()
