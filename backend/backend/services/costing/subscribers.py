"""Keeps quote P&L summaries in step with their cost records.

Every store mutation publishes a ``costing.*`` topic; this is the single place
that reacts to them.
"""
from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from app.events.bus import subscribe
from services.costing import rollup

logger = logging.getLogger(__name__)


@subscribe("costing.")
def refresh_pl_summary(db: Session, topic: str, payload: dict) -> None:
    quote_id = payload.get("quote_id")
    if not quote_id:
        logger.warning("%s event without quote_id; P&L summary not refreshed: %r", topic, payload)
        return
    rollup.recalculate(db, quote_id)
