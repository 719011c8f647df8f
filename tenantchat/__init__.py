"""Tenant chat: streaming multi-tenant chat service with bounded conversation context."""
