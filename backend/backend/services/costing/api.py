from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ValidationError
from sqlalchemy.orm import Session

from app.core.audit import audit
from app.core.security import Principal, require_admin, require_staff
from app.db.models.auth import User
from app.db.session import get_db
from services.costing import rate_cards, rollup, stores
from services.costing.errors import RecordLocked, RecordNotFound
from services.costing.schemas import (
    AdminTimeIn,
    AdminTimeUpdate,
    ComponentIn,
    ComponentUpdate,
    GroundConditionIn,
    GroundConditionUpdate,
    RateCardIn,
    RateCardUpdate,
    TripIn,
    TripUpdate,
    admin_time_to_dict,
    component_to_dict,
    ground_condition_to_dict,
    rate_card_to_dict,
    summary_to_dict,
    trip_to_dict,
)
from services.costing.units import RateType, unit_allowed
from services.quotes.store import JobNotFound, QuoteNotFound, get_job, get_quote

router = APIRouter(tags=["costing"])


@contextmanager
def _http_errors():
    """Translate costing domain errors into HTTP responses."""
    try:
        yield
    except (QuoteNotFound, JobNotFound, RecordNotFound) as e:
        raise HTTPException(404, str(e))
    except RecordLocked as e:
        raise HTTPException(409, str(e))
    except ValidationError as e:
        raise HTTPException(422, [
            {"loc": list(err.get("loc", ())), "msg": err.get("msg"), "type": err.get("type")}
            for err in e.errors()
        ])
    except ValueError as e:
        raise HTTPException(422, str(e))


def _parse(model, payload: dict | None, *, partial: bool = False) -> dict[str, Any]:
    if isinstance(model, type) and issubclass(model, BaseModel):
        obj = model.model_validate(payload or {})
    else:
        obj = model.validate_python(payload or {})
    return obj.model_dump(exclude_unset=partial)


def _check_staff(db: Session, staff_id: str | None) -> None:
    if staff_id and not db.query(User.id).filter(User.id == staff_id).first():
        raise ValueError(f"Unknown staff member: {staff_id}")


def _reject_cleared(changes: dict, *keys: str) -> None:
    for key in keys:
        if key in changes and changes[key] is None:
            raise ValueError(f"{key} cannot be cleared")


def _owned(row, quote_id: str, record_type: str):
    # a record is only reachable through the quote it belongs to
    if row.quote_id != quote_id:
        raise RecordNotFound(record_type, row.id)
    return row


def _audit(db: Session, p: Principal, action: str, entity_type: str, entity_id: str, payload: dict) -> None:
    audit(db, actor=p.username, action=action, entity_type=entity_type, entity_id=entity_id, payload=payload)


# ---- Cost components ----
@router.get("/quotes/{quote_id}/costs")
def list_quote_costs(quote_id: str, db: Session = Depends(get_db), p: Principal = Depends(require_staff)):
    with _http_errors():
        get_quote(db, quote_id)
        return [component_to_dict(c) for c in stores.cost_components.list_by_quote(db, quote_id)]


def _create_component(db: Session, p: Principal, quote_id: str, data: dict) -> dict:
    _check_staff(db, data.get("staff_id"))
    data = rate_cards.component_defaults(db, data)
    row = stores.cost_components.create(db, quote_id=quote_id, **data)
    out = component_to_dict(row)
    _audit(db, p, "costing.cost_component.create", "QuoteCostComponent", out["id"], out)
    return out


@router.post("/quotes/{quote_id}/costs")
def create_quote_cost(quote_id: str, payload: dict, db: Session = Depends(get_db), p: Principal = Depends(require_staff)):
    with _http_errors():
        return _create_component(db, p, quote_id, _parse(ComponentIn, payload))


@router.get("/quotes/{quote_id}/costs/{component_id}")
def get_quote_cost(quote_id: str, component_id: str, db: Session = Depends(get_db), p: Principal = Depends(require_staff)):
    with _http_errors():
        row = _owned(stores.cost_components.get(db, component_id), quote_id, "cost_component")
        return component_to_dict(row)


@router.patch("/quotes/{quote_id}/costs/{component_id}")
def update_quote_cost(quote_id: str, component_id: str, payload: dict, db: Session = Depends(get_db), p: Principal = Depends(require_staff)):
    with _http_errors():
        row = _owned(stores.cost_components.get(db, component_id), quote_id, "cost_component")
        changes = _parse(ComponentUpdate, payload, partial=True)
        _reject_cleared(changes, "category", "unit", "description", "quantity", "unit_cost", "total_cost")
        category = changes.get("category") or row.category
        unit = changes.get("unit") or row.unit
        if not unit_allowed(category, unit):
            raise ValueError(f"unit {unit!r} is not valid for category {category!r}")
        _check_staff(db, changes.get("staff_id"))
        row = stores.cost_components.update(db, row, changes)
        out = component_to_dict(row)
        _audit(db, p, "costing.cost_component.update", "QuoteCostComponent", out["id"], changes)
        return out


@router.delete("/quotes/{quote_id}/costs/{component_id}")
def delete_quote_cost(quote_id: str, component_id: str, db: Session = Depends(get_db), p: Principal = Depends(require_staff)):
    with _http_errors():
        row = _owned(stores.cost_components.get(db, component_id), quote_id, "cost_component")
        stores.cost_components.delete(db, row)
        _audit(db, p, "costing.cost_component.delete", "QuoteCostComponent", component_id, {"quote_id": quote_id})
        return {"ok": True, "deleted": True}


@router.get("/jobs/{job_id}/costs")
def list_job_costs(job_id: str, db: Session = Depends(get_db), p: Principal = Depends(require_staff)):
    with _http_errors():
        get_job(db, job_id)
        return [component_to_dict(c) for c in stores.cost_components.list_by_job(db, job_id)]


@router.post("/jobs/{job_id}/costs")
def create_job_cost(job_id: str, payload: dict, db: Session = Depends(get_db), p: Principal = Depends(require_staff)):
    with _http_errors():
        job = get_job(db, job_id)
        data = _parse(ComponentIn, payload)
        data["job_id"] = job.id
        return _create_component(db, p, job.quote_id, data)


# ---- Trips ----
@router.get("/quotes/{quote_id}/trips")
def list_quote_trips(quote_id: str, db: Session = Depends(get_db), p: Principal = Depends(require_staff)):
    with _http_errors():
        get_quote(db, quote_id)
        return [trip_to_dict(t) for t in stores.trips.list_by_quote(db, quote_id)]


def _create_trip(db: Session, p: Principal, quote_id: str, data: dict) -> dict:
    data["staff_id"] = data.get("staff_id") or p.user_id
    _check_staff(db, data["staff_id"])
    data = rate_cards.trip_defaults(db, data)
    row = stores.trips.create(db, quote_id=quote_id, **data)
    out = trip_to_dict(row)
    _audit(db, p, "costing.trip.create", "QuoteTrip", out["id"], out)
    return out


@router.post("/quotes/{quote_id}/trips")
def create_quote_trip(quote_id: str, payload: dict, db: Session = Depends(get_db), p: Principal = Depends(require_staff)):
    with _http_errors():
        return _create_trip(db, p, quote_id, _parse(TripIn, payload))


@router.get("/quotes/{quote_id}/trips/{trip_id}")
def get_quote_trip(quote_id: str, trip_id: str, db: Session = Depends(get_db), p: Principal = Depends(require_staff)):
    with _http_errors():
        return trip_to_dict(_owned(stores.trips.get(db, trip_id), quote_id, "trip"))


@router.patch("/quotes/{quote_id}/trips/{trip_id}")
def update_quote_trip(quote_id: str, trip_id: str, payload: dict, db: Session = Depends(get_db), p: Principal = Depends(require_staff)):
    with _http_errors():
        row = _owned(stores.trips.get(db, trip_id), quote_id, "trip")
        changes = _parse(TripUpdate, payload, partial=True)
        _reject_cleared(changes, "trip_type", "staff_id", "status")
        _check_staff(db, changes.get("staff_id"))
        row = stores.trips.update(db, row, changes)
        out = trip_to_dict(row)
        _audit(db, p, "costing.trip.update", "QuoteTrip", out["id"], changes)
        return out


@router.delete("/quotes/{quote_id}/trips/{trip_id}")
def delete_quote_trip(quote_id: str, trip_id: str, db: Session = Depends(get_db), p: Principal = Depends(require_staff)):
    with _http_errors():
        row = _owned(stores.trips.get(db, trip_id), quote_id, "trip")
        stores.trips.delete(db, row)
        _audit(db, p, "costing.trip.delete", "QuoteTrip", trip_id, {"quote_id": quote_id})
        return {"ok": True, "deleted": True}


@router.get("/jobs/{job_id}/trips")
def list_job_trips(job_id: str, db: Session = Depends(get_db), p: Principal = Depends(require_staff)):
    with _http_errors():
        get_job(db, job_id)
        return [trip_to_dict(t) for t in stores.trips.list_by_job(db, job_id)]


@router.post("/jobs/{job_id}/trips")
def create_job_trip(job_id: str, payload: dict, db: Session = Depends(get_db), p: Principal = Depends(require_staff)):
    with _http_errors():
        job = get_job(db, job_id)
        data = _parse(TripIn, payload)
        data["job_id"] = job.id
        return _create_trip(db, p, job.quote_id, data)


@router.get("/staff/{staff_id}/trips")
def list_staff_trips(staff_id: str, db: Session = Depends(get_db), p: Principal = Depends(require_staff)):
    return [trip_to_dict(t) for t in stores.trips.list_by_staff(db, staff_id)]


# ---- Admin time ----
@router.get("/quotes/{quote_id}/admin-time")
def list_quote_admin_time(quote_id: str, db: Session = Depends(get_db), p: Principal = Depends(require_staff)):
    with _http_errors():
        get_quote(db, quote_id)
        return [admin_time_to_dict(a) for a in stores.admin_time.list_by_quote(db, quote_id)]


def _create_admin_time(db: Session, p: Principal, quote_id: str, data: dict) -> dict:
    data["staff_id"] = data.get("staff_id") or p.user_id
    _check_staff(db, data["staff_id"])
    data = rate_cards.admin_time_defaults(db, data)
    row = stores.admin_time.create(db, quote_id=quote_id, **data)
    out = admin_time_to_dict(row)
    _audit(db, p, "costing.admin_time.create", "QuoteAdminTime", out["id"], out)
    return out


@router.post("/quotes/{quote_id}/admin-time")
def create_quote_admin_time(quote_id: str, payload: dict, db: Session = Depends(get_db), p: Principal = Depends(require_staff)):
    with _http_errors():
        return _create_admin_time(db, p, quote_id, _parse(AdminTimeIn, payload))


@router.get("/quotes/{quote_id}/admin-time/{entry_id}")
def get_quote_admin_time(quote_id: str, entry_id: str, db: Session = Depends(get_db), p: Principal = Depends(require_staff)):
    with _http_errors():
        return admin_time_to_dict(_owned(stores.admin_time.get(db, entry_id), quote_id, "admin_time"))


@router.patch("/quotes/{quote_id}/admin-time/{entry_id}")
def update_quote_admin_time(quote_id: str, entry_id: str, payload: dict, db: Session = Depends(get_db), p: Principal = Depends(require_staff)):
    with _http_errors():
        row = _owned(stores.admin_time.get(db, entry_id), quote_id, "admin_time")
        changes = _parse(AdminTimeUpdate, payload, partial=True)
        _reject_cleared(changes, "activity_type", "staff_id", "duration_minutes")
        _check_staff(db, changes.get("staff_id"))
        row = stores.admin_time.update(db, row, changes)
        out = admin_time_to_dict(row)
        _audit(db, p, "costing.admin_time.update", "QuoteAdminTime", out["id"], changes)
        return out


@router.delete("/quotes/{quote_id}/admin-time/{entry_id}")
def delete_quote_admin_time(quote_id: str, entry_id: str, db: Session = Depends(get_db), p: Principal = Depends(require_staff)):
    with _http_errors():
        row = _owned(stores.admin_time.get(db, entry_id), quote_id, "admin_time")
        stores.admin_time.delete(db, row)
        _audit(db, p, "costing.admin_time.delete", "QuoteAdminTime", entry_id, {"quote_id": quote_id})
        return {"ok": True, "deleted": True}


@router.get("/jobs/{job_id}/admin-time")
def list_job_admin_time(job_id: str, db: Session = Depends(get_db), p: Principal = Depends(require_staff)):
    with _http_errors():
        get_job(db, job_id)
        return [admin_time_to_dict(a) for a in stores.admin_time.list_by_job(db, job_id)]


@router.post("/jobs/{job_id}/admin-time")
def create_job_admin_time(job_id: str, payload: dict, db: Session = Depends(get_db), p: Principal = Depends(require_staff)):
    with _http_errors():
        job = get_job(db, job_id)
        data = _parse(AdminTimeIn, payload)
        data["job_id"] = job.id
        return _create_admin_time(db, p, job.quote_id, data)


@router.get("/staff/{staff_id}/admin-time")
def list_staff_admin_time(staff_id: str, db: Session = Depends(get_db), p: Principal = Depends(require_staff)):
    return [admin_time_to_dict(a) for a in stores.admin_time.list_by_staff(db, staff_id)]


# ---- Ground conditions ----
@router.get("/quotes/{quote_id}/ground-conditions")
def list_ground_conditions(quote_id: str, db: Session = Depends(get_db), p: Principal = Depends(require_staff)):
    with _http_errors():
        get_quote(db, quote_id)
        return [ground_condition_to_dict(g) for g in stores.ground_conditions.list_by_quote(db, quote_id)]


@router.post("/quotes/{quote_id}/ground-conditions")
def create_ground_condition(quote_id: str, payload: dict, db: Session = Depends(get_db), p: Principal = Depends(require_staff)):
    with _http_errors():
        data = _parse(GroundConditionIn, payload)
        row = stores.ground_conditions.create(db, quote_id=quote_id, **data)
        out = ground_condition_to_dict(row)
        _audit(db, p, "costing.ground_condition.create", "QuoteGroundCondition", out["id"], out)
        return out


@router.patch("/quotes/{quote_id}/ground-conditions/{condition_id}")
def update_ground_condition(quote_id: str, condition_id: str, payload: dict, db: Session = Depends(get_db), p: Principal = Depends(require_staff)):
    with _http_errors():
        row = _owned(stores.ground_conditions.get(db, condition_id), quote_id, "ground_condition")
        changes = _parse(GroundConditionUpdate, payload, partial=True)
        _reject_cleared(changes, "condition")
        row = stores.ground_conditions.update(db, row, changes)
        out = ground_condition_to_dict(row)
        _audit(db, p, "costing.ground_condition.update", "QuoteGroundCondition", out["id"], changes)
        return out


@router.delete("/quotes/{quote_id}/ground-conditions/{condition_id}")
def delete_ground_condition(quote_id: str, condition_id: str, db: Session = Depends(get_db), p: Principal = Depends(require_staff)):
    with _http_errors():
        row = _owned(stores.ground_conditions.get(db, condition_id), quote_id, "ground_condition")
        stores.ground_conditions.delete(db, row)
        _audit(db, p, "costing.ground_condition.delete", "QuoteGroundCondition", condition_id, {"quote_id": quote_id})
        return {"ok": True, "deleted": True}


# ---- P&L summary ----
@router.get("/quotes/{quote_id}/pl-summary")
def get_quote_pl_summary(quote_id: str, db: Session = Depends(get_db), p: Principal = Depends(require_staff)):
    with _http_errors():
        return summary_to_dict(rollup.get_summary(db, quote_id))


@router.post("/quotes/{quote_id}/pl-summary/recalculate")
def recalculate_quote_pl_summary(quote_id: str, db: Session = Depends(get_db), p: Principal = Depends(require_staff)):
    with _http_errors():
        out = summary_to_dict(rollup.recalculate(db, quote_id))
    _audit(db, p, "costing.pl_summary.recalculate", "QuotePLSummary", out["id"], {"quote_id": quote_id})
    return out


@router.get("/jobs/{job_id}/pl-summary")
def get_job_pl_summary(job_id: str, db: Session = Depends(get_db), p: Principal = Depends(require_staff)):
    with _http_errors():
        return summary_to_dict(rollup.get_job_summary(db, job_id))


@router.post("/jobs/{job_id}/pl-summary/recalculate")
def recalculate_job_pl_summary(job_id: str, db: Session = Depends(get_db), p: Principal = Depends(require_staff)):
    with _http_errors():
        out = summary_to_dict(rollup.recalculate_job(db, job_id))
    _audit(db, p, "costing.pl_summary.recalculate", "QuotePLSummary", out["id"], {"job_id": job_id})
    return out


# ---- Rate cards ----
@router.get("/rate-cards")
def list_rate_cards(user_id: str | None = None, db: Session = Depends(get_db), p: Principal = Depends(require_staff)):
    return [rate_card_to_dict(r) for r in rate_cards.list_cards(db, user_id)]


@router.get("/rate-cards/resolve")
def resolve_rate_card(user_id: str, rate_type: RateType, at: datetime | None = None,
                      db: Session = Depends(get_db), p: Principal = Depends(require_staff)):
    card = rate_cards.resolve(db, user_id, rate_type.value, at)
    return {"rate_card": rate_card_to_dict(card) if card else None}


@router.post("/rate-cards")
def create_rate_card(payload: dict, db: Session = Depends(get_db), p: Principal = Depends(require_admin)):
    with _http_errors():
        data = _parse(RateCardIn, payload)
        _check_staff(db, data["user_id"])
        card = rate_cards.create(db, **data)
        out = rate_card_to_dict(card)
        _audit(db, p, "costing.rate_card.create", "StaffRateCard", out["id"], out)
        return out


@router.patch("/rate-cards/{card_id}")
def update_rate_card(card_id: str, payload: dict, db: Session = Depends(get_db), p: Principal = Depends(require_admin)):
    with _http_errors():
        card = rate_cards.get(db, card_id)
        changes = _parse(RateCardUpdate, payload, partial=True)
        _reject_cleared(changes, "hourly_rate", "effective_from", "is_active")
        card = rate_cards.update(db, card, changes)
        out = rate_card_to_dict(card)
        _audit(db, p, "costing.rate_card.update", "StaffRateCard", out["id"], changes)
        return out


@router.delete("/rate-cards/{card_id}")
def delete_rate_card(card_id: str, db: Session = Depends(get_db), p: Principal = Depends(require_admin)):
    with _http_errors():
        card = rate_cards.get(db, card_id)
        rate_cards.delete(db, card)
        _audit(db, p, "costing.rate_card.delete", "StaffRateCard", card_id, {})
        return {"ok": True, "deleted": True}
