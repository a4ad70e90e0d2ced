from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta

import httpx
from sqlalchemy.orm import Session

from app.db.session import SessionLocal
from app.events.bus import pattern_matches
from app.events.outbox import OutboxEvent
from app.events.subscriptions import EventSubscription

logger = logging.getLogger(__name__)

BATCH_SIZE = 50

# A newer snapshot of the same quote makes an undelivered older one redundant
SNAPSHOT_TOPIC = "pl_summary.recalculated"


def _get_matching_subs(db: Session, topic: str) -> list[EventSubscription]:
    subs = db.query(EventSubscription).filter(EventSubscription.is_active == True).all()  # noqa: E712
    return [s for s in subs if pattern_matches(s.topic_pattern, topic)]


def _event_headers(evt: OutboxEvent) -> dict[str, str]:
    """Receivers dedupe redelivered events on Idempotency-Key."""
    payload = evt.payload or {}
    headers = {"Idempotency-Key": evt.id, "X-Event-Topic": evt.topic}
    if payload.get("quote_id"):
        headers["X-Quote-Id"] = str(payload["quote_id"])
    if evt.topic == SNAPSHOT_TOPIC and payload.get("version") is not None:
        headers["X-PL-Version"] = str(payload["version"])
    return headers


def _superseded(events: list[OutboxEvent]) -> set[str]:
    """Ids of P&L snapshots with a newer snapshot of the same quote in the batch."""
    latest: dict[str, tuple[int, int]] = {}
    for pos, evt in enumerate(events):
        quote_id = (evt.payload or {}).get("quote_id")
        if evt.topic != SNAPSHOT_TOPIC or not quote_id:
            continue
        key = ((evt.payload or {}).get("version") or 0, pos)
        if quote_id not in latest or key > latest[quote_id]:
            latest[quote_id] = key
    keep = {pos for _, pos in latest.values()}
    return {
        evt.id for pos, evt in enumerate(events)
        if evt.topic == SNAPSHOT_TOPIC and (evt.payload or {}).get("quote_id") and pos not in keep
    }


async def _deliver_one(client: httpx.AsyncClient, sub: EventSubscription, evt: OutboxEvent) -> tuple[bool, str | None]:
    headers = {k: str(v) for k, v in (sub.headers or {}).items()}
    headers.update(_event_headers(evt))
    body = {
        "topic": evt.topic,
        "event_id": evt.id,
        "created_at": evt.created_at.isoformat() if evt.created_at else None,
        "payload": evt.payload or {},
    }
    try:
        resp = await client.post(sub.target_url, json=body, headers=headers, timeout=10.0)
    except httpx.HTTPError as e:
        return False, str(e)
    if 200 <= resp.status_code < 300:
        return True, None
    return False, f"HTTP {resp.status_code}: {resp.text[:300]}"


def _schedule_next(attempt_count: int) -> datetime:
    # Exponential backoff capped at 10 minutes
    seconds = min(600, 2 ** min(attempt_count, 9))
    return datetime.utcnow() + timedelta(seconds=seconds)


async def run_dispatcher_forever(*, poll_interval_seconds: float = 1.0) -> None:
    """Background worker that delivers outbox events to webhook subscribers."""
    async with httpx.AsyncClient() as client:
        while True:
            try:
                await dispatch_batch(client)
            except Exception:
                # keep the worker alive; the batch is retried on the next poll
                logger.exception("outbox dispatch batch failed")
            await asyncio.sleep(poll_interval_seconds)


async def dispatch_batch(client: httpx.AsyncClient, db: Session | None = None) -> int:
    """Deliver one batch of due events. Returns the number of events examined."""
    owns_session = db is None
    db = db or SessionLocal()
    try:
        now = datetime.utcnow()
        events = (
            db.query(OutboxEvent)
            .filter(OutboxEvent.delivered == False)  # noqa: E712
            .filter(OutboxEvent.available_at <= now)
            .order_by(OutboxEvent.created_at.asc())
            .limit(BATCH_SIZE)
            .all()
        )
        if not events:
            return 0

        stale = _superseded(events)
        for evt in events:
            if evt.id in stale:
                evt.delivered = True
                evt.delivered_at = datetime.utcnow()
                logger.debug("skipping %s %s: superseded by a newer snapshot", evt.topic, evt.id)
                continue

            subs = _get_matching_subs(db, evt.topic)
            if not subs:
                # Nobody cares; mark delivered to avoid infinite growth
                evt.delivered = True
                evt.delivered_at = datetime.utcnow()
                continue

            # Event counts as delivered once every subscriber accepted it
            all_ok = True
            last_err = None
            for sub in subs:
                ok, err = await _deliver_one(client, sub, evt)
                if ok:
                    sub.last_error = None
                    sub.failure_count = 0
                    sub.last_delivered_at = datetime.utcnow()
                else:
                    all_ok = False
                    last_err = err
                    sub.last_error = err
                    sub.failure_count = (sub.failure_count or 0) + 1
                    logger.warning("webhook %s rejected %s: %s", sub.name, evt.topic, err)

            if all_ok:
                evt.delivered = True
                evt.delivered_at = datetime.utcnow()
                evt.last_error = None
            else:
                evt.attempt_count = (evt.attempt_count or 0) + 1
                evt.last_error = last_err
                evt.available_at = _schedule_next(evt.attempt_count)

        db.commit()
        return len(events)
    finally:
        if owns_session:
            db.close()
