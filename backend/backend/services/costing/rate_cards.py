"""Staff hourly rate cards.

Rate cards only suggest a default cost while a cost record is being entered.
The rollup never consults them: once saved, the record's own cost is the value
of record.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

from sqlalchemy import or_
from sqlalchemy.orm import Session

from app.db.models.costing import StaffRateCard
from services._crud import apply_changes, commit_refresh
from services.costing.errors import RecordNotFound
from services.costing.units import LABOUR_RATE_TYPES, CostCategory, RateType, ZERO, to_money

logger = logging.getLogger(__name__)


def _naive_utc(at: datetime) -> datetime:
    # timestamps are stored as naive UTC
    if at.tzinfo is not None:
        return at.astimezone(timezone.utc).replace(tzinfo=None)
    return at


def resolve(db: Session, user_id: str, rate_type: str, at_time: datetime | None = None) -> StaffRateCard | None:
    """Effective card for ``user_id``/``rate_type`` at ``at_time``, or None.

    Windows are half-open ``[effective_from, effective_until)``. When several
    active windows overlap, the latest ``effective_from`` wins, then the most
    recently created card, then the highest id.
    """
    at = _naive_utc(at_time or datetime.utcnow())
    return (
        db.query(StaffRateCard)
        .filter(
            StaffRateCard.user_id == user_id,
            StaffRateCard.rate_type == rate_type,
            StaffRateCard.is_active == True,  # noqa: E712
            StaffRateCard.effective_from <= at,
            or_(StaffRateCard.effective_until.is_(None), StaffRateCard.effective_until > at),
        )
        .order_by(
            StaffRateCard.effective_from.desc(),
            StaffRateCard.created_at.desc(),
            StaffRateCard.id.desc(),
        )
        .first()
    )


def suggest_cost(db: Session, user_id: str | None, rate_type: str, duration_minutes: int | None,
                 at_time: datetime | None = None) -> Decimal | None:
    if not user_id or duration_minutes is None:
        return None
    card = resolve(db, user_id, rate_type, at_time)
    if card is None:
        return None
    return to_money(Decimal(card.hourly_rate) * Decimal(duration_minutes) / Decimal(60))


# ---- Entry-time defaults ----
def component_defaults(db: Session, data: dict[str, Any], at_time: datetime | None = None) -> dict[str, Any]:
    """Fill ``unit_cost``/``total_cost`` a user left blank on a cost component.

    Labour without a unit cost takes the staff member's hourly rate (zero when
    there is no card). A missing total is quantity x unit cost.
    """
    out = dict(data)
    if out.get("unit_cost") is None:
        rate_type = LABOUR_RATE_TYPES.get(CostCategory(out["category"]))
        card = resolve(db, out["staff_id"], rate_type.value, at_time) if rate_type and out.get("staff_id") else None
        if card is None:
            logger.debug("no %s rate card for staff %s; unit cost defaults to 0", getattr(rate_type, "value", None), out.get("staff_id"))
        out["unit_cost"] = Decimal(card.hourly_rate) if card else ZERO
    if out.get("total_cost") is None:
        out["total_cost"] = to_money(Decimal(out.get("quantity") or 0) * Decimal(out["unit_cost"]))
    return out


def trip_defaults(db: Session, data: dict[str, Any], at_time: datetime | None = None) -> dict[str, Any]:
    """Default ``travel_cost_total`` to travel time at the travel rate plus fuel."""
    out = dict(data)
    if out.get("travel_cost_total") is None:
        at = at_time or out.get("scheduled_date")
        time_cost = suggest_cost(db, out.get("staff_id"), RateType.TRAVEL.value, out.get("duration_minutes"), at)
        out["travel_cost_total"] = to_money((time_cost or ZERO) + Decimal(out.get("fuel_cost") or 0))
    return out


def admin_time_defaults(db: Session, data: dict[str, Any], at_time: datetime | None = None) -> dict[str, Any]:
    out = dict(data)
    at = at_time or out.get("start_time")
    if out.get("hourly_rate") is None:
        card = resolve(db, out["staff_id"], RateType.ADMIN.value, at)
        out["hourly_rate"] = Decimal(card.hourly_rate) if card else None
    if out.get("total_cost") is None:
        rate = out["hourly_rate"]
        out["total_cost"] = to_money(Decimal(rate) * Decimal(out["duration_minutes"]) / Decimal(60)) if rate is not None else ZERO
    return out


# ---- CRUD ----
def get(db: Session, card_id: str) -> StaffRateCard:
    card = db.query(StaffRateCard).filter(StaffRateCard.id == card_id).first()
    if not card:
        raise RecordNotFound("rate_card", card_id)
    return card


def list_cards(db: Session, user_id: str | None = None) -> list[StaffRateCard]:
    q = db.query(StaffRateCard)
    if user_id:
        q = q.filter(StaffRateCard.user_id == user_id)
    return q.order_by(StaffRateCard.effective_from.desc(), StaffRateCard.created_at.desc()).all()


def _check_window(effective_from: datetime | None, effective_until: datetime | None) -> None:
    if effective_from and effective_until and _naive_utc(effective_until) <= _naive_utc(effective_from):
        raise ValueError("effective_until must be after effective_from")


def create(db: Session, **fields: Any) -> StaffRateCard:
    if fields.get("effective_from") is None:
        fields.pop("effective_from", None)
    else:
        fields["effective_from"] = _naive_utc(fields["effective_from"])
    if fields.get("effective_until") is not None:
        fields["effective_until"] = _naive_utc(fields["effective_until"])
    _check_window(fields.get("effective_from"), fields.get("effective_until"))
    return commit_refresh(db, StaffRateCard(**fields))


def update(db: Session, card: StaffRateCard, changes: dict[str, Any]) -> StaffRateCard:
    changes = {k: (_naive_utc(v) if isinstance(v, datetime) else v) for k, v in changes.items()}
    _check_window(changes.get("effective_from", card.effective_from), changes.get("effective_until", card.effective_until))
    apply_changes(card, changes)
    return commit_refresh(db, card)


def delete(db: Session, card: StaffRateCard) -> None:
    db.delete(card)
    db.commit()
