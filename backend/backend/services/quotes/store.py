from __future__ import annotations
from dataclasses import dataclass
from decimal import Decimal
from sqlalchemy.orm import Session
from app.db.models.quoting import Quote, Job

ARCHIVED = "archived"


class QuoteNotFound(LookupError):
    def __init__(self, quote_id: str):
        super().__init__(f"Quote not found: {quote_id}")
        self.quote_id = quote_id


class JobNotFound(LookupError):
    def __init__(self, job_id: str):
        super().__init__(f"Job not found: {job_id}")
        self.job_id = job_id


@dataclass(frozen=True)
class QuoteView:
    """What the costing module is allowed to know about a quote."""
    id: str
    status: str
    total_amount: Decimal | None
    labour_estimate: Decimal | None
    job_id: str | None

    @property
    def is_archived(self) -> bool:
        return self.status == ARCHIVED


def job_id_for_quote(db: Session, quote_id: str) -> str | None:
    job = (db.query(Job)
           .filter(Job.quote_id == quote_id)
           .order_by(Job.created_at.asc(), Job.id.asc())
           .first())
    return job.id if job else None


def get_quote(db: Session, quote_id: str) -> QuoteView:
    q = db.query(Quote).filter(Quote.id == quote_id).first()
    if not q:
        raise QuoteNotFound(quote_id)
    return QuoteView(
        id=q.id,
        status=q.status,
        total_amount=q.total_amount,
        labour_estimate=q.labour_estimate,
        job_id=job_id_for_quote(db, q.id),
    )


def get_job(db: Session, job_id: str) -> Job:
    job = db.query(Job).filter(Job.id == job_id).first()
    if not job:
        raise JobNotFound(job_id)
    return job
