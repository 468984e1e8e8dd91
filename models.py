import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Index,
    Numeric,
    String,
)
from sqlalchemy.orm import Mapped, mapped_column

from database import Base


class Role(str, Enum):
    admin = "admin"
    member = "member"


class HistoryViewMode(str, Enum):
    default = "default"
    admin_all = "admin-all"
    admin_pending = "admin-pending"


class ServiceState(str, Enum):
    pending = "pending"
    authorized_override = "authorized_override"
    authorized_plain = "authorized_plain"


def _new_id() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ServiceRecord(Base):
    __tablename__ = "services"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    title: Mapped[str] = mapped_column(String(120), nullable=False)
    service_type: Mapped[str] = mapped_column(String(60), nullable=False)
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    user_id: Mapped[str] = mapped_column(String(120), nullable=False)
    username: Mapped[str] = mapped_column(String(120), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, nullable=False
    )
    include_in_total: Mapped[bool] = mapped_column(
        Boolean, default=True, nullable=False
    )
    admin_override: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )

    __table_args__ = (
        Index("ix_services_title", "title"),
        Index("ix_services_user_created", "user_id", "created_at"),
        Index("ix_services_include_created", "include_in_total", "created_at"),
        CheckConstraint("price >= 0", name="ck_services_price_non_negative"),
    )
