from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional
import uuid

from pydantic import BaseModel

from app.db.base import db_enum
from app.schemas.payment_schemas import PaymentStatus


class RequestKind(str, Enum):
    LAB = "lab"
    IMAGING = "imaging"


class RequestStatus(str, Enum):
    PENDING = "pending"
    SENT_TO_DOCTOR = "sent_to_doctor"


class EffectiveStatus(str, Enum):
    """Request status as seen through its gating payment."""

    AWAITING_PAYMENT = "awaiting_payment"
    READY = "ready"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class LabResultStatus(str, Enum):
    DRAFT = "draft"
    VALIDATED = "validated"
    SENT = "sent"


request_status_enum_type = db_enum(RequestStatus, "requeststatus")
lab_result_status_enum_type = db_enum(LabResultStatus, "labresultstatus")


def compute_effective_status(
    request_status: RequestStatus, payment_status: PaymentStatus
) -> EffectiveStatus:
    """
    Python twin of ``effective_status_expression`` in the ancillary
    repository; both must agree for every input pair.
    """
    if payment_status == PaymentStatus.CANCELLED:
        return EffectiveStatus.CANCELLED
    if request_status == RequestStatus.SENT_TO_DOCTOR:
        return EffectiveStatus.DELIVERED
    if payment_status == PaymentStatus.PENDING:
        return EffectiveStatus.AWAITING_PAYMENT
    return EffectiveStatus.READY


class AncillaryRequestCreateSchema(BaseModel):
    patient_id: uuid.UUID
    exam_ids: List[uuid.UUID]
    consultation_id: Optional[uuid.UUID] = None
    doctor_id: Optional[uuid.UUID] = None
    notes: Optional[str] = None


class TechnicianAssignSchema(BaseModel):
    technician_id: uuid.UUID


class LabResultUpsertSchema(BaseModel):
    results: Dict[str, Any]
    technician_notes: Optional[str] = None


class ImagingCompleteSchema(BaseModel):
    results: str


class RequestExamLineSchema(BaseModel):
    exam_id: uuid.UUID
    exam_name: Optional[str] = None
    price: Decimal

    model_config = {"from_attributes": True}


class LabResultResponseSchema(BaseModel):
    id: uuid.UUID
    request_id: uuid.UUID
    status: LabResultStatus
    results: Dict[str, Any]
    technician_notes: Optional[str] = None
    validated_by_id: Optional[uuid.UUID] = None
    validated_at: Optional[datetime] = None
    sent_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class AncillaryRequestResponseSchema(BaseModel):
    id: uuid.UUID
    kind: RequestKind
    patient_id: uuid.UUID
    doctor_id: uuid.UUID
    consultation_id: Optional[uuid.UUID] = None
    dossier_id: Optional[uuid.UUID] = None
    technician_id: Optional[uuid.UUID] = None
    status: RequestStatus
    effective_status: EffectiveStatus
    total_amount: Decimal
    payment_id: uuid.UUID
    payment_status: PaymentStatus
    notes: Optional[str] = None
    exams: List[RequestExamLineSchema] = []
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class ImagingRequestResponseSchema(AncillaryRequestResponseSchema):
    results: Optional[str] = None
    completed_at: Optional[datetime] = None


class DoctorResultSchema(BaseModel):
    """A delivered lab or imaging result as listed to the ordering doctor."""

    kind: RequestKind
    request_id: uuid.UUID
    patient_id: uuid.UUID
    doctor_id: uuid.UUID
    technician_id: Optional[uuid.UUID] = None
    total_amount: Decimal
    exams: List[RequestExamLineSchema] = []
    delivered_at: datetime
    lab_result: Optional[LabResultResponseSchema] = None
    imaging_results: Optional[str] = None
