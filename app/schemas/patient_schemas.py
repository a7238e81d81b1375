from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
import uuid

from pydantic import BaseModel, EmailStr, field_validator

from app.db.base import db_enum
from app.schemas.payment_schemas import PaymentMethod, PaymentResponseSchema
from app.schemas.care_schemas import AssignmentResponseSchema, DossierResponseSchema


class Gender(str, Enum):
    MALE = "M"
    FEMALE = "F"


class BedType(str, Enum):
    CLASSIC = "classic"
    VIP = "vip"


gender_enum_type = db_enum(Gender, "gender")
bed_type_enum_type = db_enum(BedType, "bedtype")


class PatientBaseSchema(BaseModel):
    first_name: str
    last_name: str
    date_of_birth: Optional[date] = None
    gender: Gender
    phone: Optional[str] = None
    email: Optional[EmailStr] = None
    address: Optional[str] = None
    emergency_contact: Optional[str] = None

    @field_validator("first_name", "last_name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("Name cannot be empty")
        return v.strip()

    @field_validator("date_of_birth")
    @classmethod
    def validate_dob(cls, v: Optional[date]) -> Optional[date]:
        if v and v > date.today():
            raise ValueError("Date of birth cannot be in the future")
        return v


class PatientRegistrationSchema(PatientBaseSchema):
    """Intake payload: the patient, their consultation fee and optional bed/doctor."""

    consultation_amount: Optional[Decimal] = None
    payment_method: PaymentMethod = PaymentMethod.CASH
    payment_reference: Optional[str] = None
    bed_id: Optional[uuid.UUID] = None
    doctor_id: Optional[uuid.UUID] = None


class PatientResponseSchema(PatientBaseSchema):
    id: uuid.UUID
    patient_number: str
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class BedResponseSchema(BaseModel):
    id: uuid.UUID
    number: str
    type: BedType
    is_occupied: bool
    patient_id: Optional[uuid.UUID] = None

    model_config = {"from_attributes": True}


class RegistrationResponseSchema(BaseModel):
    patient: PatientResponseSchema
    payment: PaymentResponseSchema
    bed: Optional[BedResponseSchema] = None
    assignment: Optional[AssignmentResponseSchema] = None
    dossier: Optional[DossierResponseSchema] = None
