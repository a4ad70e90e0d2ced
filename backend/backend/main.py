from __future__ import annotations

import asyncio
import logging
import os

from fastapi import FastAPI
from app.core.tenant import TenantMiddleware
from app.core.audit_middleware import audit_http_middleware
from app.db.base import Base
from app.db.session import engine

# Register models
from app.db import models  # noqa: F401

# Register event subscribers (P&L refresh on every costing.* event)
import services.costing  # noqa: F401

from services.costing.api import router as costing_router
from services.admin.events_api import router as events_admin_router

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
EVENT_DISPATCHER_ENABLED = os.getenv("EVENT_DISPATCHER_ENABLED", "1") not in ("0", "false", "no")
EVENT_POLL_SECONDS = float(os.getenv("EVENT_POLL_SECONDS", "1.0"))

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)


app = FastAPI(title="Fencing Back-Office Costing")

@app.middleware("http")
async def _audit(request, call_next):
    return await audit_http_middleware(request, call_next)

# Outermost, so audit rows see the request tenant
app.add_middleware(TenantMiddleware)

app.include_router(costing_router)
app.include_router(events_admin_router)

@app.on_event("startup")
async def _startup():
    # Dev-friendly schema creation (migrations are available for real upgrades)
    Base.metadata.create_all(bind=engine)

    # Webhook delivery for outbox events; P&L refresh itself runs inline.
    if EVENT_DISPATCHER_ENABLED:
        from app.events.dispatcher import run_dispatcher_forever

        asyncio.create_task(run_dispatcher_forever(poll_interval_seconds=EVENT_POLL_SECONDS))
        logger.info("event dispatcher started (poll every %ss)", EVENT_POLL_SECONDS)

@app.get("/health")
def health():
    return {"ok": True}
