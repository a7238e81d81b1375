from decimal import Decimal
from typing import Optional
import uuid

from sqlalchemy import Boolean, ForeignKey, Index, Numeric, text
from sqlalchemy.dialects.postgresql import UUID as PGUUID
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base, TimestampMixin

_ACTIVE_PRICE = text("is_active")


class ConsultationPrice(TimestampMixin, Base):
    """Versioned consultation fee. Rows are never deleted."""

    __tablename__ = "consultation_prices"
    __table_args__ = (
        Index(
            "uq_consultation_prices_single_active",
            "is_active",
            unique=True,
            postgresql_where=_ACTIVE_PRICE,
            sqlite_where=_ACTIVE_PRICE,
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        PGUUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
