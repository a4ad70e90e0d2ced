from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import String, DateTime, ForeignKey, Integer, Numeric, Boolean
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base
from app.db.models.common import HasId, HasCreatedAt, HasUpdatedAt


class QuotePLSummary(Base, HasId, HasCreatedAt, HasUpdatedAt):
    """Derived profit-and-loss snapshot for one quote (and its linked job).

    Only services.costing.rollup writes this table. Rows are a cache of the
    last recalculation and can be dropped and rebuilt at any time.
    """

    __tablename__ = "quote_pl_summary"

    quote_id: Mapped[str] = mapped_column(ForeignKey("quote.id"), unique=True, nullable=False)
    job_id: Mapped[str | None] = mapped_column(ForeignKey("job.id"), nullable=True, index=True)

    # Revenue
    total_revenue: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=0)

    # Costs by category
    materials_cost: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=0)
    manufacturing_labour_cost: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=0)
    installation_labour_cost: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=0)
    travel_cost: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=0)
    admin_cost: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=0)
    supplier_delivery_fees: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=0)
    third_party_cost: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=0)  # welder, powder coater
    ground_conditions_cost: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=0)

    # Totals
    total_cost: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=0)
    profit_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=0)
    profit_margin_percent: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=0)

    # Metadata
    is_supply_only: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    actual_trip_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_manufacturing_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_install_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_admin_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_travel_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    last_calculated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}
