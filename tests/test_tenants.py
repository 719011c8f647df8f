"""Tenant lookup and per-session locks."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from tenantchat.chat.locks import SessionLocks
from tenantchat.config import settings
from tenantchat.db import TENANTS_COLLECTION
from tenantchat.errors import InvalidRequest, NotFound
from tenantchat.tenants import TenantDirectory


class _TenantDB:
    def __init__(self, docs: list[dict] | None = None, error: Exception | None = None):
        self.coll = MagicMock()
        if error is not None:
            self.coll.find_one = AsyncMock(side_effect=error)
        else:
            async def find_one(query):
                for doc in docs or []:
                    if all(doc.get(k) == v for k, v in query.items()):
                        return doc
                return None
            self.coll.find_one = AsyncMock(side_effect=find_one)

    async def get(self):
        return self

    def __getitem__(self, name):
        assert name == TENANTS_COLLECTION
        return self.coll


ACME = {
    "_id": "1", "tenantId": "acme", "name": "Acme", "domain": "chat.acme.test",
    "aiPersona": "You are Acme's concierge.", "model": "gemini-2.0-flash",
}


class TestResolve:
    @pytest.mark.asyncio
    async def test_explicit_tenant_wins(self):
        directory = TenantDirectory(_TenantDB([ACME]))
        config = await directory.resolve("ACME", "owner-9")
        assert config.ai_persona == "You are Acme's concierge."
        assert config.model == "gemini-2.0-flash"

    @pytest.mark.asyncio
    async def test_owner_used_without_tenant_id(self):
        directory = TenantDirectory(_TenantDB([{**ACME, "tenantId": "owner-9"}]))
        config = await directory.resolve(None, "owner-9")
        assert config.tenant_id == "owner-9"

    @pytest.mark.asyncio
    async def test_missing_tenant_gets_defaults(self):
        config = await TenantDirectory(_TenantDB([])).resolve("ghost", "o")
        assert config.ai_persona == settings.default_persona
        assert config.model == settings.default_model

    @pytest.mark.asyncio
    async def test_blank_fields_fall_back(self):
        directory = TenantDirectory(_TenantDB([{**ACME, "aiPersona": " ", "model": ""}]))
        config = await directory.resolve("acme", "o")
        assert config.ai_persona == settings.default_persona
        assert config.model == settings.default_model
        assert config.name == "Acme"

    @pytest.mark.asyncio
    async def test_lookup_failure_gets_defaults(self):
        directory = TenantDirectory(_TenantDB(error=ConnectionError("down")))
        config = await directory.resolve("acme", "o")
        assert config.model == settings.default_model

    @pytest.mark.asyncio
    async def test_strict_unknown_tenant(self):
        with pytest.raises(NotFound):
            await TenantDirectory(_TenantDB([])).resolve("ghost", "o", strict=True)


class TestByDomain:
    @pytest.mark.asyncio
    async def test_port_stripped(self):
        config = await TenantDirectory(_TenantDB([ACME])).by_domain("Chat.Acme.test:8443")
        assert config.tenant_id == "acme"

    @pytest.mark.asyncio
    async def test_unknown_domain(self):
        with pytest.raises(NotFound):
            await TenantDirectory(_TenantDB([ACME])).by_domain("other.test")

    @pytest.mark.asyncio
    async def test_empty_domain(self):
        with pytest.raises(InvalidRequest):
            await TenantDirectory(_TenantDB([ACME])).by_domain("  ")


class TestSessionLocks:
    @pytest.mark.asyncio
    async def test_release_drops_idle_entry(self):
        locks = SessionLocks()
        await locks.acquire("s")
        assert locks.is_locked("s")
        locks.release("s")
        assert not locks.is_locked("s")
        assert len(locks) == 0

    @pytest.mark.asyncio
    async def test_waiters_run_in_order(self):
        locks = SessionLocks()
        order = []

        async def turn(name):
            await locks.acquire("s")
            order.append(name)
            await asyncio.sleep(0)
            locks.release("s")

        await asyncio.gather(turn("a"), turn("b"), turn("c"))

        assert order == ["a", "b", "c"]
        assert len(locks) == 0

    @pytest.mark.asyncio
    async def test_cancelled_waiter_does_not_leak(self):
        locks = SessionLocks()
        await locks.acquire("s")
        waiter = asyncio.create_task(locks.acquire("s"))
        await asyncio.sleep(0)
        waiter.cancel()
        with pytest.raises(asyncio.CancelledError):
            await waiter

        locks.release("s")
        assert len(locks) == 0

    def test_release_unknown_is_noop(self):
        SessionLocks().release("never")
