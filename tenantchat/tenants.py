"""Tenant configuration lookup (read-only).

Tenants are managed elsewhere; the chat core only reads aiPersona and model.
A missing tenant, or a failing lookup, yields the documented defaults unless
the caller asks for a strict lookup.
"""

from __future__ import annotations

import logging

from tenantchat.config import settings
from tenantchat.db import TENANTS_COLLECTION, Database, database
from tenantchat.errors import InvalidRequest, NotFound
from tenantchat.models import TenantConfig

logger = logging.getLogger(__name__)


def default_tenant_config(tenant_id: str | None = None) -> TenantConfig:
    return TenantConfig(
        tenantId=tenant_id or settings.default_tenant_id,
        aiPersona=settings.default_persona,
        model=settings.default_model,
    )


class TenantDirectory:
    def __init__(self, db: Database = database) -> None:
        self._db = db

    async def find(self, tenant_id: str) -> TenantConfig | None:
        db = await self._db.get()
        doc = await db[TENANTS_COLLECTION].find_one({"tenantId": tenant_id.strip().lower()})
        if doc is None:
            return None
        config = TenantConfig.model_validate(doc)
        # Stored blanks fall back to defaults
        updates = {}
        if not config.ai_persona.strip():
            updates["ai_persona"] = settings.default_persona
        if not config.model.strip():
            updates["model"] = settings.default_model
        return config.model_copy(update=updates) if updates else config

    async def resolve(self, tenant_id: str | None, owner_id: str, strict: bool = False) -> TenantConfig:
        """Config for a turn: explicit tenantId first, else the owner.

        strict: an explicit tenantId without config raises NotFound.
        """
        key = tenant_id or owner_id
        try:
            config = await self.find(key)
        except Exception as e:
            logger.warning("TENANT_LOOKUP_FAILED | tenant=%s | %s | using defaults", key, e)
            return default_tenant_config(key)

        if config is None:
            if strict and tenant_id:
                raise NotFound(f"Unknown tenant: {tenant_id}")
            logger.debug("No tenant config for %s, using defaults", key)
            return default_tenant_config(key)
        return config

    async def by_domain(self, domain: str) -> TenantConfig:
        """Tenant serving `domain` (port stripped); raises NotFound if none."""
        host = domain.strip().lower().split(":")[0]
        if not host:
            raise InvalidRequest("Domain is required")
        db = await self._db.get()
        doc = await db[TENANTS_COLLECTION].find_one({"domain": host})
        if doc is None:
            raise NotFound(f"No tenant found for domain {host}")
        return TenantConfig.model_validate(doc)


# Singleton
tenant_directory = TenantDirectory()
