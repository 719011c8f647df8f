"""FastAPI application: tenant chat service.

Streams model replies for multi-tenant conversations and keeps each
conversation's prompt bounded (sliding window + running summary).

Lifecycle:
- MongoDB client is created lazily once per process (tenantchat.db)
- Indexes are ensured on startup; a failure is logged, not fatal
- The client is closed on shutdown
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.responses import Response

from tenantchat.chat.router import router as chat_router
from tenantchat.config import settings
from tenantchat.db import database
from tenantchat.logging_utils import HealthCheckAccessFilter, configure_logging

configure_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    logger.info("Tenant chat starting on port %d", settings.port)
    logging.getLogger("uvicorn.access").addFilter(HealthCheckAccessFilter())
    try:
        await database.ensure_indexes()
    except Exception as e:
        logger.warning("Index creation failed (continuing): %s", e)
    yield
    await database.close()
    logger.info("Tenant chat stopped")


app = FastAPI(
    title="Tenant Chat",
    description="Streaming multi-tenant chat with sliding-window context management",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(chat_router)


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "ok", "service": "tenantchat"}


@app.get("/metrics")
async def metrics():
    """Prometheus metrics endpoint."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


def run() -> None:
    import uvicorn

    uvicorn.run("tenantchat.main:app", host=settings.host, port=settings.port)


if __name__ == "__main__":
    run()
