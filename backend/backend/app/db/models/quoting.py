from __future__ import annotations
from decimal import Decimal
from sqlalchemy import String, ForeignKey, Numeric
from sqlalchemy.orm import Mapped, mapped_column, relationship
from app.db.base import Base
from app.db.models.common import HasId, HasCreatedAt

# Quotes and jobs are owned by the sales/scheduling modules. Only the columns
# the costing rollup reads are mapped here.

class Quote(Base, HasId, HasCreatedAt):
    __tablename__ = "quote"
    quote_number: Mapped[str] = mapped_column(String(32), unique=True, nullable=False)
    status: Mapped[str] = mapped_column(String(24), default="draft", nullable=False)  # draft|sent|approved|declined|expired|archived
    total_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=0)
    labour_estimate: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)

class Job(Base, HasId, HasCreatedAt):
    __tablename__ = "job"
    job_number: Mapped[str] = mapped_column(String(32), unique=True, nullable=False)
    quote_id: Mapped[str] = mapped_column(ForeignKey("quote.id"), nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(32), default="accepted", nullable=False)  # accepted|...|paid_in_full|archived

    quote: Mapped[Quote] = relationship()
