"""Repositories for the records that feed a quote's P&L summary.

Stores are plain CRUD. They never derive totals; whatever ``total_cost`` /
``travel_cost_total`` / ``additional_cost`` the caller saved is the value of
record. Every mutation commits through ``app.events.bus.publish`` with a
``costing.<record_type>.<action>`` topic, which is what keeps the summary in
step (see services.costing.subscribers).
"""
from __future__ import annotations

from typing import Any, Generic, TypeVar

from sqlalchemy.orm import Session

from app.db.models.costing import QuoteAdminTime, QuoteCostComponent, QuoteGroundCondition, QuoteTrip
from app.events.bus import publish
from services._crud import apply_changes
from services.costing.errors import RecordLocked, RecordNotFound
from services.costing.units import RecordType
from services.quotes.store import get_job, get_quote

M = TypeVar("M")


def assert_mutable(db: Session, quote_id: str, job_id: str | None = None) -> None:
    """Raise unless the quote (and job, if given) accept cost changes."""
    quote = get_quote(db, quote_id)
    if quote.is_archived:
        raise RecordLocked(f"Quote {quote_id} is archived")
    if job_id:
        job = get_job(db, job_id)
        if job.quote_id != quote_id:
            raise ValueError(f"Job {job_id} does not belong to quote {quote_id}")
        if job.status == "archived":
            raise RecordLocked(f"Job {job_id} is archived")


class QuoteRecordStore(Generic[M]):
    """CRUD for one contributing-record table keyed by quote."""

    def __init__(self, model: type[M], record_type: RecordType, order_by: tuple = ()):
        self.model = model
        self.record_type = record_type
        self.order_by = order_by

    def _query(self, db: Session):
        return db.query(self.model)

    def get(self, db: Session, record_id: str) -> M:
        row = self._query(db).filter(self.model.id == record_id).first()
        if not row:
            raise RecordNotFound(self.record_type.value, record_id)
        return row

    def list_by_quote(self, db: Session, quote_id: str) -> list[M]:
        return self._query(db).filter(self.model.quote_id == quote_id).order_by(*self.order_by).all()

    def _job_id(self, row) -> str | None:
        return None

    def _publish(self, db: Session, row, action: str, *, quote_id: str | None = None) -> None:
        publish(db, f"costing.{self.record_type.value}.{action}", {
            "quote_id": quote_id or row.quote_id,
            "job_id": self._job_id(row),
            "record_type": self.record_type.value,
            "record_id": row.id,
            "action": action,
        })

    def create(self, db: Session, *, quote_id: str, **fields: Any) -> M:
        assert_mutable(db, quote_id, fields.get("job_id"))
        row = self.model(quote_id=quote_id, **fields)
        db.add(row)
        db.flush()
        self._publish(db, row, "created")
        return row

    def update(self, db: Session, row: M, changes: dict[str, Any]) -> M:
        old_quote_id = row.quote_id
        assert_mutable(db, old_quote_id, self._job_id(row))
        new_quote_id = changes.get("quote_id", old_quote_id)
        new_job_id = changes.get("job_id", self._job_id(row))
        if new_quote_id != old_quote_id or new_job_id != self._job_id(row):
            assert_mutable(db, new_quote_id, new_job_id)

        changed = apply_changes(row, changes)
        if not changed:
            return row
        db.flush()
        self._publish(db, row, "updated")
        if row.quote_id != old_quote_id:
            # the record left its old quote; that summary has to drop it
            self._publish(db, row, "updated", quote_id=old_quote_id)
        return row

    def delete(self, db: Session, row: M) -> None:
        assert_mutable(db, row.quote_id, self._job_id(row))
        db.delete(row)
        db.flush()
        self._publish(db, row, "deleted")


class JobRecordStore(QuoteRecordStore[M]):
    """Records that may also hang off the job created from the quote."""

    def _job_id(self, row) -> str | None:
        return row.job_id

    def list_by_job(self, db: Session, job_id: str) -> list[M]:
        return self._query(db).filter(self.model.job_id == job_id).order_by(*self.order_by).all()


class StaffRecordStore(JobRecordStore[M]):
    def list_by_staff(self, db: Session, staff_id: str) -> list[M]:
        return self._query(db).filter(self.model.staff_id == staff_id).order_by(*self.order_by).all()


cost_components: JobRecordStore[QuoteCostComponent] = JobRecordStore(
    QuoteCostComponent,
    RecordType.COST_COMPONENT,
    order_by=(QuoteCostComponent.category.asc(), QuoteCostComponent.created_at.asc()),
)

trips: StaffRecordStore[QuoteTrip] = StaffRecordStore(
    QuoteTrip,
    RecordType.TRIP,
    order_by=(QuoteTrip.scheduled_date.asc(), QuoteTrip.created_at.asc()),
)

admin_time: StaffRecordStore[QuoteAdminTime] = StaffRecordStore(
    QuoteAdminTime,
    RecordType.ADMIN_TIME,
    order_by=(QuoteAdminTime.created_at.desc(),),
)

ground_conditions: QuoteRecordStore[QuoteGroundCondition] = QuoteRecordStore(
    QuoteGroundCondition,
    RecordType.GROUND_CONDITION,
    order_by=(QuoteGroundCondition.created_at.asc(),),
)
