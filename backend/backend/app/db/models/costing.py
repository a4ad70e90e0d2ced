from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import String, DateTime, ForeignKey, Integer, Numeric, Boolean, Text, Index
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base
from app.db.models.common import HasId, HasCreatedAt, HasUpdatedAt


# ============= RATE CARDS =============
class StaffRateCard(Base, HasId, HasCreatedAt):
    __tablename__ = "staff_rate_card"

    user_id: Mapped[str] = mapped_column(ForeignKey("auth_user.id"), nullable=False, index=True)
    rate_type: Mapped[str] = mapped_column(String(32), nullable=False)  # manufacturing|installation|admin|travel
    hourly_rate: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    effective_from: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    effective_until: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

Index("ix_rate_card_lookup", StaffRateCard.user_id, StaffRateCard.rate_type, StaffRateCard.effective_from)


# ============= CONTRIBUTING COST RECORDS =============
class QuoteCostComponent(Base, HasId, HasCreatedAt, HasUpdatedAt):
    __tablename__ = "quote_cost_component"

    quote_id: Mapped[str] = mapped_column(ForeignKey("quote.id"), nullable=False, index=True)
    job_id: Mapped[str | None] = mapped_column(ForeignKey("job.id"), nullable=True, index=True)
    category: Mapped[str] = mapped_column(String(32), nullable=False)  # materials|manufacturing_labour|install_labour|supplier_fees|third_party
    unit: Mapped[str] = mapped_column(String(16), nullable=False)  # hours|count|length
    description: Mapped[str] = mapped_column(String(512), nullable=False)
    quantity: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=1)
    unit_cost: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    # value of record; never recomputed from quantity * unit_cost
    total_cost: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    staff_id: Mapped[str | None] = mapped_column(ForeignKey("auth_user.id"), nullable=True)
    material_source: Mapped[str | None] = mapped_column(String(32), nullable=True)  # manufactured|glass_supplier|colorbond_supplier|hardware_supplier|other
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)


class QuoteTrip(Base, HasId, HasCreatedAt):
    __tablename__ = "quote_trip"

    quote_id: Mapped[str] = mapped_column(ForeignKey("quote.id"), nullable=False, index=True)
    job_id: Mapped[str | None] = mapped_column(ForeignKey("job.id"), nullable=True, index=True)
    trip_type: Mapped[str] = mapped_column(String(32), nullable=False)
    staff_id: Mapped[str] = mapped_column(ForeignKey("auth_user.id"), nullable=False, index=True)
    scheduled_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    actual_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    start_location: Mapped[str | None] = mapped_column(Text, nullable=True)
    end_location: Mapped[str | None] = mapped_column(Text, nullable=True)
    distance_km: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    duration_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    fuel_cost: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    travel_cost_total: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    status: Mapped[str] = mapped_column(String(24), default="not_started", nullable=False)  # not_started|in_transit|arrived|completed|cancelled
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)


class QuoteAdminTime(Base, HasId, HasCreatedAt):
    __tablename__ = "quote_admin_time"

    quote_id: Mapped[str] = mapped_column(ForeignKey("quote.id"), nullable=False, index=True)
    job_id: Mapped[str | None] = mapped_column(ForeignKey("job.id"), nullable=True, index=True)
    staff_id: Mapped[str] = mapped_column(ForeignKey("auth_user.id"), nullable=False, index=True)
    activity_type: Mapped[str] = mapped_column(String(32), nullable=False)
    duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    hourly_rate: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    total_cost: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    start_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    end_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    is_auto_tracked: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)


class QuoteGroundCondition(Base, HasId, HasCreatedAt):
    __tablename__ = "quote_ground_condition"

    quote_id: Mapped[str] = mapped_column(ForeignKey("quote.id"), nullable=False, index=True)
    condition: Mapped[str] = mapped_column(String(32), nullable=False)  # standard|rocky|concrete|existing_fence|existing_footings|sloped|sandy|clay
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    affected_length_meters: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    additional_cost: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    additional_time_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)
