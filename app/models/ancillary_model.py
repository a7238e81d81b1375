"""
Lab and imaging orders.

Both request kinds share one workflow, so their columns live on
``AncillaryRequestMixin``; each kind keeps its own tables.
"""

from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any, ClassVar, Dict, List, Optional
import uuid

from sqlalchemy import (
    JSON,
    TIMESTAMP,
    Boolean,
    ForeignKey,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import UUID as PGUUID
from sqlalchemy.orm import Mapped, declared_attr, mapped_column, relationship

from app.db.base import Base, TimestampMixin
from app.schemas.ancillary_schemas import (
    EffectiveStatus,
    LabResultStatus,
    RequestKind,
    RequestStatus,
    compute_effective_status,
    lab_result_status_enum_type,
    request_status_enum_type,
)
from app.schemas.payment_schemas import PaymentStatus

if TYPE_CHECKING:
    from app.models.payment_model import Payment


# ============= Catalog =============
class ExamCatalogMixin(TimestampMixin):
    id: Mapped[uuid.UUID] = mapped_column(
        PGUUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    name: Mapped[str] = mapped_column(String(150), nullable=False)
    category: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    is_active: Mapped[bool] = mapped_column(
        Boolean, default=True, nullable=False, index=True
    )


class LabExam(ExamCatalogMixin, Base):
    __tablename__ = "lab_exams"


class ImagingExam(ExamCatalogMixin, Base):
    __tablename__ = "imaging_exams"


# ============= Requests =============
class AncillaryRequestMixin(TimestampMixin):
    kind: ClassVar[RequestKind]

    id: Mapped[uuid.UUID] = mapped_column(
        PGUUID(as_uuid=True), primary_key=True, default=uuid.uuid4, index=True
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
    technician_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    status: Mapped[RequestStatus] = mapped_column(
        request_status_enum_type,
        default=RequestStatus.PENDING,
        nullable=False,
        index=True,
    )
    # Frozen at creation: later catalog price changes never touch it.
    total_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    payment_id: Mapped[uuid.UUID] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("payments.id", ondelete="RESTRICT"),
        nullable=False,
        unique=True,
    )
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    @declared_attr
    def payment(cls) -> Mapped["Payment"]:
        return relationship("Payment", lazy="selectin")

    @property
    def payment_status(self) -> PaymentStatus:
        return self.payment.status

    @property
    def effective_status(self) -> EffectiveStatus:
        return compute_effective_status(self.status, self.payment.status)

    @property
    def is_delivered(self) -> bool:
        return self.status == RequestStatus.SENT_TO_DOCTOR


class RequestExamLineMixin:
    id: Mapped[uuid.UUID] = mapped_column(
        PGUUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)

    @property
    def exam_name(self) -> Optional[str]:
        return self.exam.name if self.exam is not None else None


class LabRequest(AncillaryRequestMixin, Base):
    __tablename__ = "lab_requests"
    kind = RequestKind.LAB

    exams: Mapped[List["LabRequestExam"]] = relationship(
        "LabRequestExam", cascade="all, delete-orphan", lazy="selectin"
    )
    results: Mapped[List["LabResult"]] = relationship(
        "LabResult",
        back_populates="request",
        order_by=lambda: LabResult.created_at.desc(),
        lazy="selectin",
    )


class LabRequestExam(RequestExamLineMixin, Base):
    __tablename__ = "lab_request_exams"
    __table_args__ = (
        UniqueConstraint("request_id", "exam_id", name="uq_lab_request_exam"),
    )

    request_id: Mapped[uuid.UUID] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("lab_requests.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    exam_id: Mapped[uuid.UUID] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("lab_exams.id", ondelete="RESTRICT"),
        nullable=False,
    )

    exam: Mapped["LabExam"] = relationship("LabExam", lazy="selectin")


class ImagingRequest(AncillaryRequestMixin, Base):
    __tablename__ = "imaging_requests"
    kind = RequestKind.IMAGING

    results: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )

    exams: Mapped[List["ImagingRequestExam"]] = relationship(
        "ImagingRequestExam", cascade="all, delete-orphan", lazy="selectin"
    )


class ImagingRequestExam(RequestExamLineMixin, Base):
    __tablename__ = "imaging_request_exams"
    __table_args__ = (
        UniqueConstraint("request_id", "exam_id", name="uq_imaging_request_exam"),
    )

    request_id: Mapped[uuid.UUID] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("imaging_requests.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    exam_id: Mapped[uuid.UUID] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("imaging_exams.id", ondelete="RESTRICT"),
        nullable=False,
    )

    exam: Mapped["ImagingExam"] = relationship("ImagingExam", lazy="selectin")


# ============= Lab results =============
class LabResult(TimestampMixin, Base):
    """draft -> validated -> sent. Re-drafting reopens a validated result."""

    __tablename__ = "lab_results"

    id: Mapped[uuid.UUID] = mapped_column(
        PGUUID(as_uuid=True), primary_key=True, default=uuid.uuid4, index=True
    )
    request_id: Mapped[uuid.UUID] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("lab_requests.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    status: Mapped[LabResultStatus] = mapped_column(
        lab_result_status_enum_type,
        default=LabResultStatus.DRAFT,
        nullable=False,
        index=True,
    )
    results: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    technician_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    validated_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    validated_at: Mapped[Optional[datetime]] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )
    sent_at: Mapped[Optional[datetime]] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )

    request: Mapped["LabRequest"] = relationship(
        "LabRequest", back_populates="results", lazy="selectin"
    )
