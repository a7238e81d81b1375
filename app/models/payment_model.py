from decimal import Decimal
from typing import TYPE_CHECKING, List, Optional
import uuid

from sqlalchemy import ForeignKey, Numeric, String
from sqlalchemy.dialects.postgresql import UUID as PGUUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base, TimestampMixin
from app.schemas.payment_schemas import (
    PaymentMethod,
    PaymentStatus,
    PaymentType,
    payment_method_enum_type,
    payment_status_enum_type,
    payment_type_enum_type,
)

if TYPE_CHECKING:
    from app.models.patient_model import Patient
    from app.models.user_model import User


class Payment(TimestampMixin, Base):
    """
    A financial transaction.

    ``related_id`` is a lookup-only pointer to the lab or imaging request a
    gating payment belongs to; it carries no foreign key because it can
    target either request table.
    """

    __tablename__ = "payments"

    id: Mapped[uuid.UUID] = mapped_column(
        PGUUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        index=True,
    )
    patient_id: Mapped[uuid.UUID] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("patients.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    method: Mapped[PaymentMethod] = mapped_column(
        payment_method_enum_type, default=PaymentMethod.CASH, nullable=False
    )
    status: Mapped[PaymentStatus] = mapped_column(
        payment_status_enum_type,
        default=PaymentStatus.PENDING,
        nullable=False,
        index=True,
    )
    type: Mapped[PaymentType] = mapped_column(
        payment_type_enum_type, nullable=False, index=True
    )
    reference: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    related_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        PGUUID(as_uuid=True), nullable=True, index=True
    )
    created_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )

    patient: Mapped["Patient"] = relationship(
        "Patient", back_populates="payments", lazy="noload"
    )
    created_by: Mapped[Optional["User"]] = relationship(
        "User", foreign_keys=[created_by_id], lazy="noload"
    )
    items: Mapped[List["PaymentItem"]] = relationship(
        "PaymentItem",
        back_populates="payment",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    @property
    def is_paid(self) -> bool:
        return self.status == PaymentStatus.PAID

    def __repr__(self) -> str:
        return f"<Payment id={self.id} type={self.type} status={self.status}>"


class PaymentItem(TimestampMixin, Base):
    """Line of a pharmacy sale, priced at sale time."""

    __tablename__ = "payment_items"

    id: Mapped[uuid.UUID] = mapped_column(
        PGUUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    payment_id: Mapped[uuid.UUID] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("payments.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    product_id: Mapped[uuid.UUID] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("pharmacy_products.id", ondelete="RESTRICT"),
        nullable=False,
    )
    quantity: Mapped[int] = mapped_column(nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    total_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)

    payment: Mapped["Payment"] = relationship(
        "Payment", back_populates="items", lazy="noload"
    )
