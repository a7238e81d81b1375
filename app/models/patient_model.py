from datetime import date
from typing import TYPE_CHECKING, List, Optional
import uuid

from sqlalchemy import Boolean, Date, ForeignKey, String, Text
from sqlalchemy.dialects.postgresql import UUID as PGUUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base, TimestampMixin
from app.schemas.patient_schemas import (
    BedType,
    Gender,
    bed_type_enum_type,
    gender_enum_type,
)

if TYPE_CHECKING:
    from app.models.payment_model import Payment


class Patient(TimestampMixin, Base):
    """Registered patient. Identity fields only change through an explicit edit."""

    __tablename__ = "patients"

    id: Mapped[uuid.UUID] = mapped_column(
        PGUUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        index=True,
    )
    patient_number: Mapped[str] = mapped_column(
        String(32), unique=True, index=True, nullable=False
    )
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    date_of_birth: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    gender: Mapped[Gender] = mapped_column(gender_enum_type, nullable=False)
    phone: Mapped[Optional[str]] = mapped_column(String(20), nullable=True, index=True)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    address: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    emergency_contact: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    payments: Mapped[List["Payment"]] = relationship(
        "Payment", back_populates="patient", lazy="noload"
    )
    bed: Mapped[Optional["Bed"]] = relationship(
        "Bed", back_populates="patient", uselist=False, lazy="selectin"
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    def __repr__(self) -> str:
        return f"<Patient id={self.id} number={self.patient_number}>"


class Bed(TimestampMixin, Base):
    __tablename__ = "beds"

    id: Mapped[uuid.UUID] = mapped_column(
        PGUUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    number: Mapped[str] = mapped_column(String(20), unique=True, nullable=False)
    type: Mapped[BedType] = mapped_column(
        bed_type_enum_type, default=BedType.CLASSIC, nullable=False
    )
    is_occupied: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    patient_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("patients.id", ondelete="SET NULL"),
        nullable=True,
        unique=True,
    )

    patient: Mapped[Optional["Patient"]] = relationship(
        "Patient", back_populates="bed", lazy="noload"
    )

    def occupy(self, patient_id: uuid.UUID) -> None:
        self.is_occupied = True
        self.patient_id = patient_id
