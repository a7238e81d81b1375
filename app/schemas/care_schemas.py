from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional
import uuid

from pydantic import BaseModel, Field, field_validator

from app.db.base import db_enum


class AssignmentStatus(str, Enum):
    ASSIGNED = "assigned"
    IN_CONSULTATION = "in_consultation"
    COMPLETED = "completed"


ACTIVE_ASSIGNMENT_STATUSES = (AssignmentStatus.ASSIGNED, AssignmentStatus.IN_CONSULTATION)


class DossierStatus(str, Enum):
    """active -> completed -> archived, strictly forward."""

    ACTIVE = "active"
    COMPLETED = "completed"
    ARCHIVED = "archived"


class ConsultationStatus(str, Enum):
    WAITING = "waiting"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class PrescriptionStatus(str, Enum):
    DRAFT = "draft"
    SENT_TO_PHARMACY = "sent_to_pharmacy"
    COMPLETED = "completed"


assignment_status_enum_type = db_enum(AssignmentStatus, "assignmentstatus")
dossier_status_enum_type = db_enum(DossierStatus, "dossierstatus")
consultation_status_enum_type = db_enum(ConsultationStatus, "consultationstatus")
prescription_status_enum_type = db_enum(PrescriptionStatus, "prescriptionstatus")


# ============= Assignments =============
class AssignmentCreateSchema(BaseModel):
    patient_id: uuid.UUID
    doctor_id: uuid.UUID
    payment_id: uuid.UUID


class AssignmentResponseSchema(BaseModel):
    id: uuid.UUID
    patient_id: uuid.UUID
    doctor_id: uuid.UUID
    payment_id: uuid.UUID
    status: AssignmentStatus
    created_by_id: Optional[uuid.UUID] = None
    created_at: datetime

    model_config = {"from_attributes": True}


# ============= Dossiers =============
class DossierArchiveSchema(BaseModel):
    reason: str


class DossierResponseSchema(BaseModel):
    id: uuid.UUID
    patient_id: uuid.UUID
    doctor_id: uuid.UUID
    assignment_id: uuid.UUID
    consultation_id: Optional[uuid.UUID] = None
    status: DossierStatus
    completed_at: Optional[datetime] = None
    archived_at: Optional[datetime] = None
    archived_by_id: Optional[uuid.UUID] = None
    archive_reason: Optional[str] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class AssignmentCreatedResponseSchema(BaseModel):
    assignment: AssignmentResponseSchema
    dossier: DossierResponseSchema


# ============= Consultations =============
class ConsultationUpsertSchema(BaseModel):
    """Only the fields present in the payload are written on update."""

    dossier_id: uuid.UUID
    patient_id: uuid.UUID
    symptoms: Optional[str] = None
    vitals: Optional[Dict[str, Any]] = None
    diagnosis: Optional[str] = None
    notes: Optional[str] = None


CONSULTATION_CONTENT_FIELDS = ("symptoms", "vitals", "diagnosis", "notes")


class ConsultationResponseSchema(BaseModel):
    id: uuid.UUID
    patient_id: uuid.UUID
    doctor_id: uuid.UUID
    symptoms: Optional[str] = None
    vitals: Optional[Dict[str, Any]] = None
    diagnosis: Optional[str] = None
    notes: Optional[str] = None
    status: ConsultationStatus
    completed_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


# ============= Prescriptions =============
class PrescriptionItemSchema(BaseModel):
    medication: str
    dosage: str
    frequency: str
    duration: str
    quantity: int = Field(gt=0)
    instructions: Optional[str] = None

    @field_validator("medication", "dosage", "frequency", "duration")
    @classmethod
    def not_blank(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("Field cannot be empty")
        return v.strip()


class PrescriptionCreateSchema(BaseModel):
    patient_id: uuid.UUID
    consultation_id: Optional[uuid.UUID] = None
    doctor_id: Optional[uuid.UUID] = None
    items: List[PrescriptionItemSchema]
    notes: Optional[str] = None


class PrescriptionItemResponseSchema(PrescriptionItemSchema):
    id: uuid.UUID

    model_config = {"from_attributes": True}


class PrescriptionResponseSchema(BaseModel):
    id: uuid.UUID
    patient_id: uuid.UUID
    doctor_id: uuid.UUID
    consultation_id: Optional[uuid.UUID] = None
    dossier_id: Optional[uuid.UUID] = None
    status: PrescriptionStatus
    notes: Optional[str] = None
    items: List[PrescriptionItemResponseSchema] = []
    created_at: datetime

    model_config = {"from_attributes": True}
