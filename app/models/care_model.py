from datetime import datetime
from typing import TYPE_CHECKING, Any, Dict, List, Optional
import uuid

from sqlalchemy import JSON, TIMESTAMP, ForeignKey, Index, String, Text, text
from sqlalchemy.dialects.postgresql import UUID as PGUUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base, TimestampMixin
from app.schemas.care_schemas import (
    AssignmentStatus,
    ConsultationStatus,
    DossierStatus,
    PrescriptionStatus,
    assignment_status_enum_type,
    consultation_status_enum_type,
    dossier_status_enum_type,
    prescription_status_enum_type,
)

if TYPE_CHECKING:
    from app.models.patient_model import Patient
    from app.models.payment_model import Payment
    from app.models.user_model import User

_ACTIVE_ASSIGNMENT = text("status IN ('assigned', 'in_consultation')")


class DoctorAssignment(TimestampMixin, Base):
    """Binds a patient to a doctor for one care episode."""

    __tablename__ = "doctor_assignments"
    __table_args__ = (
        # At most one open assignment per patient, enforced by the store.
        Index(
            "uq_doctor_assignments_active_patient",
            "patient_id",
            unique=True,
            postgresql_where=_ACTIVE_ASSIGNMENT,
            sqlite_where=_ACTIVE_ASSIGNMENT,
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        PGUUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        index=True,
    )
    patient_id: Mapped[uuid.UUID] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("patients.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    doctor_id: Mapped[uuid.UUID] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    payment_id: Mapped[uuid.UUID] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("payments.id", ondelete="RESTRICT"),
        nullable=False,
    )
    status: Mapped[AssignmentStatus] = mapped_column(
        assignment_status_enum_type,
        default=AssignmentStatus.ASSIGNED,
        nullable=False,
        index=True,
    )
    created_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )

    patient: Mapped["Patient"] = relationship("Patient", lazy="noload")
    doctor: Mapped["User"] = relationship(
        "User", foreign_keys=[doctor_id], lazy="noload"
    )
    payment: Mapped["Payment"] = relationship("Payment", lazy="noload")
    dossier: Mapped[Optional["ConsultationDossier"]] = relationship(
        "ConsultationDossier", back_populates="assignment", uselist=False, lazy="noload"
    )


class ConsultationDossier(TimestampMixin, Base):
    """The doctor-owned working record for one assignment."""

    __tablename__ = "consultation_dossiers"

    id: Mapped[uuid.UUID] = mapped_column(
        PGUUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        index=True,
    )
    patient_id: Mapped[uuid.UUID] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("patients.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    doctor_id: Mapped[uuid.UUID] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    assignment_id: Mapped[uuid.UUID] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("doctor_assignments.id", ondelete="RESTRICT"),
        nullable=False,
        unique=True,
    )
    consultation_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("consultations.id", ondelete="SET NULL"),
        nullable=True,
        unique=True,
    )
    status: Mapped[DossierStatus] = mapped_column(
        dossier_status_enum_type,
        default=DossierStatus.ACTIVE,
        nullable=False,
        index=True,
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )
    archived_at: Mapped[Optional[datetime]] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )
    archived_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    archive_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    assignment: Mapped["DoctorAssignment"] = relationship(
        "DoctorAssignment", back_populates="dossier", lazy="selectin"
    )
    consultation: Mapped[Optional["Consultation"]] = relationship(
        "Consultation", lazy="selectin"
    )

    @property
    def is_archived(self) -> bool:
        return self.status == DossierStatus.ARCHIVED


class Consultation(TimestampMixin, Base):
    __tablename__ = "consultations"

    id: Mapped[uuid.UUID] = mapped_column(
        PGUUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        index=True,
    )
    patient_id: Mapped[uuid.UUID] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("patients.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    doctor_id: Mapped[uuid.UUID] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    symptoms: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    vitals: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON, nullable=True)
    diagnosis: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[ConsultationStatus] = mapped_column(
        consultation_status_enum_type,
        default=ConsultationStatus.WAITING,
        nullable=False,
        index=True,
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )


class Prescription(TimestampMixin, Base):
    __tablename__ = "prescriptions"

    id: Mapped[uuid.UUID] = mapped_column(
        PGUUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        index=True,
    )
    patient_id: Mapped[uuid.UUID] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("patients.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    doctor_id: Mapped[uuid.UUID] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    consultation_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("consultations.id", ondelete="SET NULL"),
        nullable=True,
    )
    dossier_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("consultation_dossiers.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    status: Mapped[PrescriptionStatus] = mapped_column(
        prescription_status_enum_type,
        default=PrescriptionStatus.DRAFT,
        nullable=False,
    )
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    items: Mapped[List["PrescriptionItem"]] = relationship(
        "PrescriptionItem",
        back_populates="prescription",
        cascade="all, delete-orphan",
        lazy="selectin",
    )


class PrescriptionItem(Base):
    __tablename__ = "prescription_items"

    id: Mapped[uuid.UUID] = mapped_column(
        PGUUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    prescription_id: Mapped[uuid.UUID] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("prescriptions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    medication: Mapped[str] = mapped_column(String(255), nullable=False)
    dosage: Mapped[str] = mapped_column(String(100), nullable=False)
    frequency: Mapped[str] = mapped_column(String(100), nullable=False)
    duration: Mapped[str] = mapped_column(String(100), nullable=False)
    quantity: Mapped[int] = mapped_column(nullable=False)
    instructions: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    prescription: Mapped["Prescription"] = relationship(
        "Prescription", back_populates="items", lazy="noload"
    )
