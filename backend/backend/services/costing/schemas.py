"""Request models and response serializers for the costing API.

A cost component's ``unit`` depends on its ``category``; the create body is a
union discriminated on ``category`` so a labour line can only be entered in
hours and a materials line only as a count or a length.
"""
from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, TypeAdapter

from services.costing.units import (
    AdminActivity,
    CostCategory,
    GroundConditionKind,
    MaterialSource,
    RateType,
    TravelStatus,
    TripType,
    to_money,
)


def _naive_utc(value: datetime | None) -> datetime | None:
    if value is not None and value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


UtcDatetime = Annotated[datetime, AfterValidator(_naive_utc)]
Quantity = Annotated[Decimal, Field(ge=0, max_digits=12, decimal_places=2)]
Money = Annotated[Decimal, Field(max_digits=12, decimal_places=2)]
Minutes = Annotated[int, Field(ge=0)]


class _In(BaseModel):
    model_config = ConfigDict(extra="forbid", use_enum_values=True)


# ---- Cost components ----
class _ComponentIn(_In):
    description: str = Field(min_length=1, max_length=512)
    quantity: Quantity = Decimal("1")
    unit_cost: Optional[Money] = None
    total_cost: Optional[Money] = None
    staff_id: Optional[str] = None
    job_id: Optional[str] = None
    notes: Optional[str] = None


class LabourComponentIn(_ComponentIn):
    category: Literal["manufacturing_labour", "install_labour"]
    unit: Literal["hours"] = "hours"


class MaterialComponentIn(_ComponentIn):
    category: Literal["materials"]
    unit: Literal["count", "length"] = "count"
    material_source: Optional[MaterialSource] = None


class FeeComponentIn(_ComponentIn):
    category: Literal["supplier_fees", "third_party"]
    unit: Literal["count"] = "count"


ComponentIn = TypeAdapter(
    Annotated[Union[LabourComponentIn, MaterialComponentIn, FeeComponentIn], Field(discriminator="category")]
)


class ComponentUpdate(_In):
    category: Optional[CostCategory] = None
    unit: Optional[Literal["hours", "count", "length"]] = None
    description: Optional[str] = Field(default=None, min_length=1, max_length=512)
    quantity: Optional[Quantity] = None
    unit_cost: Optional[Money] = None
    total_cost: Optional[Money] = None
    staff_id: Optional[str] = None
    job_id: Optional[str] = None
    material_source: Optional[MaterialSource] = None
    notes: Optional[str] = None


# ---- Trips ----
class TripIn(_In):
    trip_type: TripType
    staff_id: Optional[str] = None
    job_id: Optional[str] = None
    scheduled_date: Optional[UtcDatetime] = None
    actual_date: Optional[UtcDatetime] = None
    start_location: Optional[str] = None
    end_location: Optional[str] = None
    distance_km: Optional[Quantity] = None
    duration_minutes: Optional[Minutes] = None
    fuel_cost: Optional[Money] = None
    travel_cost_total: Optional[Money] = None
    status: TravelStatus = TravelStatus.NOT_STARTED.value
    notes: Optional[str] = None


class TripUpdate(_In):
    trip_type: Optional[TripType] = None
    staff_id: Optional[str] = None
    job_id: Optional[str] = None
    scheduled_date: Optional[UtcDatetime] = None
    actual_date: Optional[UtcDatetime] = None
    start_location: Optional[str] = None
    end_location: Optional[str] = None
    distance_km: Optional[Quantity] = None
    duration_minutes: Optional[Minutes] = None
    fuel_cost: Optional[Money] = None
    travel_cost_total: Optional[Money] = None
    status: Optional[TravelStatus] = None
    notes: Optional[str] = None


# ---- Admin time ----
class AdminTimeIn(_In):
    activity_type: AdminActivity
    duration_minutes: Minutes
    staff_id: Optional[str] = None
    job_id: Optional[str] = None
    description: Optional[str] = None
    hourly_rate: Optional[Money] = None
    total_cost: Optional[Money] = None
    start_time: Optional[UtcDatetime] = None
    end_time: Optional[UtcDatetime] = None
    is_auto_tracked: bool = False


class AdminTimeUpdate(_In):
    activity_type: Optional[AdminActivity] = None
    duration_minutes: Optional[Minutes] = None
    staff_id: Optional[str] = None
    job_id: Optional[str] = None
    description: Optional[str] = None
    hourly_rate: Optional[Money] = None
    total_cost: Optional[Money] = None
    start_time: Optional[UtcDatetime] = None
    end_time: Optional[UtcDatetime] = None


# ---- Ground conditions ----
class GroundConditionIn(_In):
    condition: GroundConditionKind
    description: Optional[str] = None
    affected_length_meters: Optional[Quantity] = None
    additional_cost: Optional[Money] = None
    additional_time_minutes: Optional[Minutes] = None


class GroundConditionUpdate(_In):
    condition: Optional[GroundConditionKind] = None
    description: Optional[str] = None
    affected_length_meters: Optional[Quantity] = None
    additional_cost: Optional[Money] = None
    additional_time_minutes: Optional[Minutes] = None


# ---- Rate cards ----
class RateCardIn(_In):
    user_id: str
    rate_type: RateType
    hourly_rate: Annotated[Decimal, Field(ge=0, max_digits=12, decimal_places=2)]
    effective_from: Optional[UtcDatetime] = None
    effective_until: Optional[UtcDatetime] = None
    is_active: bool = True
    notes: Optional[str] = None


class RateCardUpdate(_In):
    hourly_rate: Optional[Annotated[Decimal, Field(ge=0, max_digits=12, decimal_places=2)]] = None
    effective_from: Optional[UtcDatetime] = None
    effective_until: Optional[UtcDatetime] = None
    is_active: Optional[bool] = None
    notes: Optional[str] = None


# ---- Serializers ----
def money(value: Any) -> str | None:
    if value is None:
        return None
    return str(to_money(Decimal(str(value))))


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def component_to_dict(c) -> dict:
    return {
        "id": c.id,
        "quote_id": c.quote_id,
        "job_id": c.job_id,
        "category": c.category,
        "unit": c.unit,
        "description": c.description,
        "quantity": str(c.quantity) if c.quantity is not None else None,
        "unit_cost": money(c.unit_cost),
        "total_cost": money(c.total_cost),
        "staff_id": c.staff_id,
        "material_source": c.material_source,
        "notes": c.notes,
        "created_at": _iso(c.created_at),
        "updated_at": _iso(c.updated_at),
    }


def trip_to_dict(t) -> dict:
    return {
        "id": t.id,
        "quote_id": t.quote_id,
        "job_id": t.job_id,
        "trip_type": t.trip_type,
        "staff_id": t.staff_id,
        "scheduled_date": _iso(t.scheduled_date),
        "actual_date": _iso(t.actual_date),
        "start_location": t.start_location,
        "end_location": t.end_location,
        "distance_km": str(t.distance_km) if t.distance_km is not None else None,
        "duration_minutes": t.duration_minutes,
        "fuel_cost": money(t.fuel_cost),
        "travel_cost_total": money(t.travel_cost_total),
        "status": t.status,
        "notes": t.notes,
        "created_at": _iso(t.created_at),
    }


def admin_time_to_dict(a) -> dict:
    return {
        "id": a.id,
        "quote_id": a.quote_id,
        "job_id": a.job_id,
        "staff_id": a.staff_id,
        "activity_type": a.activity_type,
        "duration_minutes": a.duration_minutes,
        "description": a.description,
        "hourly_rate": money(a.hourly_rate),
        "total_cost": money(a.total_cost),
        "start_time": _iso(a.start_time),
        "end_time": _iso(a.end_time),
        "is_auto_tracked": bool(a.is_auto_tracked),
        "created_at": _iso(a.created_at),
    }


def ground_condition_to_dict(g) -> dict:
    return {
        "id": g.id,
        "quote_id": g.quote_id,
        "condition": g.condition,
        "description": g.description,
        "affected_length_meters": str(g.affected_length_meters) if g.affected_length_meters is not None else None,
        "additional_cost": money(g.additional_cost),
        "additional_time_minutes": g.additional_time_minutes,
        "created_at": _iso(g.created_at),
    }


def rate_card_to_dict(r) -> dict:
    return {
        "id": r.id,
        "user_id": r.user_id,
        "rate_type": r.rate_type,
        "hourly_rate": money(r.hourly_rate),
        "effective_from": _iso(r.effective_from),
        "effective_until": _iso(r.effective_until),
        "is_active": bool(r.is_active),
        "notes": r.notes,
        "created_at": _iso(r.created_at),
    }


SUMMARY_MONEY_FIELDS = (
    "total_revenue",
    "materials_cost",
    "manufacturing_labour_cost",
    "installation_labour_cost",
    "travel_cost",
    "admin_cost",
    "supplier_delivery_fees",
    "third_party_cost",
    "ground_conditions_cost",
    "total_cost",
    "profit_amount",
    "profit_margin_percent",
)


def summary_to_dict(s) -> dict:
    out = {"id": s.id, "quote_id": s.quote_id, "job_id": s.job_id}
    out.update({name: money(getattr(s, name)) for name in SUMMARY_MONEY_FIELDS})
    out.update({
        "is_supply_only": bool(s.is_supply_only),
        "actual_trip_count": s.actual_trip_count,
        "total_manufacturing_minutes": s.total_manufacturing_minutes,
        "total_install_minutes": s.total_install_minutes,
        "total_admin_minutes": s.total_admin_minutes,
        "total_travel_minutes": s.total_travel_minutes,
        "last_calculated_at": _iso(s.last_calculated_at),
        "version": s.version,
    })
    return out
