from __future__ import annotations

from app.db.base import Base
from app.db.models.common import HasId, HasCreatedAt
from sqlalchemy import String, Boolean
from sqlalchemy.orm import Mapped, mapped_column


STAFF_ROLES = ("ADMIN", "SALES", "SCHEDULER", "PRODUCTION_MANAGER", "WAREHOUSE", "INSTALLER")


class User(Base, HasId, HasCreatedAt):
    """Staff member. Login and password handling live in the identity service."""

    __tablename__ = "auth_user"

    email: Mapped[str] = mapped_column(String(256), unique=True, index=True, nullable=False)
    full_name: Mapped[str] = mapped_column(String(256), nullable=False, default="")
    role: Mapped[str] = mapped_column(String(32), nullable=False, default="SALES")  # STAFF_ROLES | TRADE_CLIENT
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
