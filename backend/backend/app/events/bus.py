from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable

from sqlalchemy.orm import Session

from app.events.outbox import OutboxEvent

logger = logging.getLogger(__name__)

Handler = Callable[[Session, str, dict], None]

_local_handlers: list[tuple[str, Handler]] = []


def pattern_matches(pattern: str, topic: str) -> bool:
    """Very small pattern helper.

    Supported:
      - exact match
      - prefix match using trailing '.'
      - wildcard 'prefix.*' treated as prefix match
    """
    if not pattern:
        return False
    if pattern == topic:
        return True
    if pattern.endswith(".*"):
        return topic.startswith(pattern[:-1])  # keep trailing '.'
    if pattern.endswith("."):
        return topic.startswith(pattern)
    return False


def subscribe(pattern: str) -> Callable[[Handler], Handler]:
    """Register an in-process handler for topics matching ``pattern``.

    Handlers run synchronously on the publisher's session, after the publishing
    transaction has committed, in registration order.
    """
    def _register(fn: Handler) -> Handler:
        _local_handlers.append((pattern, fn))
        return fn
    return _register


def publish(db: Session, topic: str, payload: dict, *, available_at: datetime | None = None) -> OutboxEvent:
    """Publish an event by writing to the transactional outbox.

    The event row commits together with whatever the caller has pending on the
    session, so a cost-record change and its event are never split. Matching
    in-process handlers are then invoked; webhook delivery happens later in the
    dispatcher.
    """
    evt = OutboxEvent(
        topic=topic,
        payload=payload or {},
        available_at=available_at or datetime.utcnow(),
        delivered=False,
        attempt_count=0,
    )
    db.add(evt)
    db.commit()
    db.refresh(evt)

    for pattern, handler in list(_local_handlers):
        if pattern_matches(pattern, topic):
            logger.debug("dispatching %s to %s", topic, getattr(handler, "__name__", handler))
            handler(db, topic, dict(evt.payload or {}))
    return evt
