"""Quote profitability rollup.

``compute_summary`` is the pure reduction from a quote's contributing records
to P&L figures. ``recalculate`` wraps it with the read-lock-upsert sequence and
is the only code that writes ``quote_pl_summary``.

Money is Decimal end to end. Each record's amount is quantized to cents as it
enters the rollup, so category sums and ``total_cost`` are exact and repeated
recalculation cannot drift.
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, fields
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from app.db.models.pl_summary import QuotePLSummary
from app.events.bus import publish
from services.costing import stores
from services.costing.units import CostCategory, Unit, ZERO, minutes_from_hours, to_money
from services.quotes.store import QuoteView, get_job, get_quote, job_id_for_quote

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = int(os.getenv("PL_RECALC_MAX_ATTEMPTS", "3"))

# Largest value profit_margin_percent (Numeric(12, 2)) can store
MARGIN_LIMIT = Decimal("9999999999.99")

CATEGORY_FIELDS: dict[str, str] = {
    CostCategory.MATERIALS.value: "materials_cost",
    CostCategory.MANUFACTURING_LABOUR.value: "manufacturing_labour_cost",
    CostCategory.INSTALL_LABOUR.value: "installation_labour_cost",
    CostCategory.SUPPLIER_FEES.value: "supplier_delivery_fees",
    CostCategory.THIRD_PARTY.value: "third_party_cost",
}

MINUTE_FIELDS: dict[str, str] = {
    CostCategory.MANUFACTURING_LABOUR.value: "total_manufacturing_minutes",
    CostCategory.INSTALL_LABOUR.value: "total_install_minutes",
}

# The eight categories that make up total_cost.
COST_FIELDS = (
    "materials_cost",
    "manufacturing_labour_cost",
    "installation_labour_cost",
    "travel_cost",
    "admin_cost",
    "supplier_delivery_fees",
    "third_party_cost",
    "ground_conditions_cost",
)


@dataclass(frozen=True)
class PLFigures:
    total_revenue: Decimal
    materials_cost: Decimal
    manufacturing_labour_cost: Decimal
    installation_labour_cost: Decimal
    travel_cost: Decimal
    admin_cost: Decimal
    supplier_delivery_fees: Decimal
    third_party_cost: Decimal
    ground_conditions_cost: Decimal
    total_cost: Decimal
    profit_amount: Decimal
    profit_margin_percent: Decimal
    is_supply_only: bool
    total_manufacturing_minutes: int
    total_install_minutes: int
    total_admin_minutes: int
    total_travel_minutes: int
    actual_trip_count: int

    def as_columns(self) -> dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}

    def as_payload(self) -> dict[str, Any]:
        """JSON-safe form: money as exact decimal strings."""
        return {k: (str(v) if isinstance(v, Decimal) else v) for k, v in self.as_columns().items()}


# ---- Record value coercion ----
def _warn(quote_id: str, record: Any, field: str, raw: Any) -> None:
    logger.warning(
        "data quality: %s %s on quote %s has malformed %s=%r; counted as 0",
        type(record).__name__, getattr(record, "id", "?"), quote_id, field, raw,
    )


def _amount(quote_id: str, record: Any, field: str) -> Decimal:
    raw = getattr(record, field, None)
    if raw is None or raw == "":
        return ZERO
    try:
        value = raw if isinstance(raw, Decimal) else Decimal(str(raw).strip())
    except (InvalidOperation, ValueError, TypeError):
        _warn(quote_id, record, field, raw)
        return ZERO
    if not value.is_finite():
        _warn(quote_id, record, field, raw)
        return ZERO
    return to_money(value)


def _minutes(quote_id: str, record: Any, field: str) -> int:
    raw = getattr(record, field, None)
    if raw is None:
        return 0
    if isinstance(raw, bool):
        _warn(quote_id, record, field, raw)
        return 0
    if isinstance(raw, int):
        return raw
    try:
        value = Decimal(str(raw).strip())
    except (InvalidOperation, ValueError, TypeError):
        _warn(quote_id, record, field, raw)
        return 0
    if not value.is_finite() or value != value.to_integral_value():
        _warn(quote_id, record, field, raw)
        return 0
    return int(value)


def _hours(quote_id: str, record: Any) -> Decimal:
    raw = getattr(record, "quantity", None)
    if raw is None or raw == "":
        return Decimal(0)
    try:
        value = raw if isinstance(raw, Decimal) else Decimal(str(raw).strip())
    except (InvalidOperation, ValueError, TypeError):
        _warn(quote_id, record, "quantity", raw)
        return Decimal(0)
    if not value.is_finite():
        _warn(quote_id, record, "quantity", raw)
        return Decimal(0)
    return value


def _sum(values: Iterable[Decimal]) -> Decimal:
    return sum(values, ZERO)


# ---- Pure rollup ----
def compute_summary(
    quote: QuoteView,
    components: Iterable[Any],
    trips: Iterable[Any],
    admin_entries: Iterable[Any],
    ground_conditions: Iterable[Any],
) -> PLFigures:
    """Reduce a quote's contributing records to P&L figures.

    No I/O. Components are summed by their stored ``total_cost`` (never
    quantity x unit cost). A malformed value on one record counts as zero and
    is logged; the rest of the rollup is unaffected.
    """
    qid = quote.id
    by_category = {name: ZERO for name in CATEGORY_FIELDS.values()}
    minutes = {name: 0 for name in MINUTE_FIELDS.values()}

    for c in components:
        field = CATEGORY_FIELDS.get(getattr(c, "category", None))
        if field is None:
            logger.warning("data quality: cost component %s on quote %s has unknown category %r; skipped",
                           getattr(c, "id", "?"), qid, getattr(c, "category", None))
            continue
        by_category[field] += _amount(qid, c, "total_cost")
        minute_field = MINUTE_FIELDS.get(c.category)
        if minute_field and getattr(c, "unit", None) == Unit.HOURS.value:
            minutes[minute_field] += minutes_from_hours(_hours(qid, c))

    trips = list(trips)
    admin_entries = list(admin_entries)
    travel_cost = _sum(_amount(qid, t, "travel_cost_total") for t in trips)
    admin_cost = _sum(_amount(qid, a, "total_cost") for a in admin_entries)
    ground_cost = _sum(_amount(qid, g, "additional_cost") for g in ground_conditions)

    costs = dict(by_category, travel_cost=travel_cost, admin_cost=admin_cost, ground_conditions_cost=ground_cost)
    total_cost = _sum(costs[name] for name in COST_FIELDS)

    revenue = _amount(qid, quote, "total_amount")
    profit = revenue - total_cost
    if revenue > 0:
        margin = to_money(profit / revenue * 100)
        if abs(margin) > MARGIN_LIMIT:
            logger.warning("P&L margin for quote %s is %s%%; clamped to %s%%", qid, margin, MARGIN_LIMIT)
            margin = MARGIN_LIMIT.copy_sign(margin)
    else:
        # unpriced draft: defined as zero, never a division
        margin = ZERO

    labour_estimate = _amount(qid, quote, "labour_estimate")

    return PLFigures(
        total_revenue=revenue,
        total_cost=total_cost,
        profit_amount=profit,
        profit_margin_percent=margin,
        is_supply_only=labour_estimate == 0,
        total_admin_minutes=sum(_minutes(qid, a, "duration_minutes") for a in admin_entries),
        total_travel_minutes=sum(_minutes(qid, t, "duration_minutes") for t in trips),
        actual_trip_count=len(trips),
        **costs,
        **minutes,
    )


# ---- PLSummaryStore ----
def get_by_quote(db: Session, quote_id: str) -> QuotePLSummary | None:
    return db.query(QuotePLSummary).filter(QuotePLSummary.quote_id == quote_id).first()


def get_by_job(db: Session, job_id: str) -> QuotePLSummary | None:
    return db.query(QuotePLSummary).filter(QuotePLSummary.job_id == job_id).first()


def upsert(db: Session, quote_id: str, figures: PLFigures, *, job_id: str | None, now: datetime,
           row: QuotePLSummary | None = None) -> QuotePLSummary:
    """Swap the computed figures into the quote's summary row in one go."""
    if row is None:
        row = get_by_quote(db, quote_id)
    if row is None:
        row = QuotePLSummary(quote_id=quote_id)
        db.add(row)
    for name, value in figures.as_columns().items():
        setattr(row, name, value)
    row.job_id = job_id
    row.last_calculated_at = now
    return row


# ---- RollupEngine ----
def _recalculate_once(db: Session, quote_id: str, now: datetime) -> QuotePLSummary:
    # Lock first so the contributing reads below see every committed change
    row = (db.query(QuotePLSummary)
           .filter(QuotePLSummary.quote_id == quote_id)
           .with_for_update()
           .first())
    quote = get_quote(db, quote_id)

    figures = compute_summary(
        quote,
        stores.cost_components.list_by_quote(db, quote_id),
        stores.trips.list_by_quote(db, quote_id),
        stores.admin_time.list_by_quote(db, quote_id),
        stores.ground_conditions.list_by_quote(db, quote_id),
    )
    row = upsert(db, quote_id, figures, job_id=quote.job_id, now=now, row=row)
    db.flush()
    publish(db, "pl_summary.recalculated",
            {"quote_id": quote_id, "job_id": quote.job_id, "version": row.version, **figures.as_payload()})
    logger.debug("P&L for quote %s: cost=%s profit=%s margin=%s%%",
                 quote_id, figures.total_cost, figures.profit_amount, figures.profit_margin_percent)
    return row


def recalculate(db: Session, quote_id: str, *, now: datetime | None = None) -> QuotePLSummary:
    """Rebuild the quote's P&L summary from its contributing records.

    Raises QuoteNotFound (nothing written) when the quote does not exist. A
    concurrent recalculation of the same quote shows up as a version conflict
    or a duplicate insert; the transaction is rolled back and the whole
    read-aggregate-upsert sequence is retried.
    """
    now = now or datetime.utcnow()
    for attempt in range(1, MAX_ATTEMPTS + 1):
        try:
            return _recalculate_once(db, quote_id, now)
        except (StaleDataError, IntegrityError) as e:
            db.rollback()
            if attempt == MAX_ATTEMPTS:
                logger.error("P&L recalculation for quote %s gave up after %d attempts", quote_id, attempt)
                raise
            logger.warning("P&L summary for quote %s changed concurrently (attempt %d/%d): %s",
                           quote_id, attempt, MAX_ATTEMPTS, e)
        except Exception:
            db.rollback()
            raise
    raise RuntimeError("unreachable")


def get_summary(db: Session, quote_id: str) -> QuotePLSummary:
    """Cached summary, computed on first read.

    Creating a job is not a costing event, so a cached row can still point at
    no job (or an older one). Such a row is rebuilt before it is served.
    """
    row = get_by_quote(db, quote_id)
    if row is not None and row.job_id == job_id_for_quote(db, quote_id):
        return row
    return recalculate(db, quote_id)


def get_job_summary(db: Session, job_id: str) -> QuotePLSummary:
    job = get_job(db, job_id)
    return get_summary(db, job.quote_id)


def recalculate_job(db: Session, job_id: str, *, now: datetime | None = None) -> QuotePLSummary:
    job = get_job(db, job_id)
    return recalculate(db, job.quote_id, now=now)
