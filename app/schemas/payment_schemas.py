from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional
import uuid

from pydantic import BaseModel, Field

from app.db.base import db_enum


class PaymentMethod(str, Enum):
    CASH = "cash"
    MOBILE_MONEY = "mobile_money"


class PaymentStatus(str, Enum):
    """pending -> paid, any non-cancelled -> cancelled; never backwards."""

    PENDING = "pending"
    PAID = "paid"
    CANCELLED = "cancelled"


class PaymentType(str, Enum):
    CONSULTATION = "consultation"
    LAB = "lab"
    IMAGING = "imaging"
    PHARMACY = "pharmacy"


payment_method_enum_type = db_enum(PaymentMethod, "paymentmethod")
payment_status_enum_type = db_enum(PaymentStatus, "paymentstatus")
payment_type_enum_type = db_enum(PaymentType, "paymenttype")


class PaymentCreateSchema(BaseModel):
    patient_id: uuid.UUID
    amount: Decimal
    method: PaymentMethod = PaymentMethod.CASH
    type: PaymentType
    reference: Optional[str] = None
    related_id: Optional[uuid.UUID] = None


class PaymentSettleSchema(BaseModel):
    method: PaymentMethod
    reference: Optional[str] = None


class RequestSettleSchema(PaymentSettleSchema):
    """Settle a lab/imaging request's payment, optionally staffing it."""

    technician_id: Optional[uuid.UUID] = None


class PaymentItemResponseSchema(BaseModel):
    id: uuid.UUID
    product_id: uuid.UUID
    quantity: int
    unit_price: Decimal
    total_price: Decimal

    model_config = {"from_attributes": True}


class PaymentResponseSchema(BaseModel):
    id: uuid.UUID
    patient_id: uuid.UUID
    amount: Decimal
    method: PaymentMethod
    status: PaymentStatus
    type: PaymentType
    reference: Optional[str] = None
    related_id: Optional[uuid.UUID] = None
    created_by_id: Optional[uuid.UUID] = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class PharmacySaleItemSchema(BaseModel):
    product_id: uuid.UUID
    quantity: int = Field(gt=0)


class PharmacySaleSchema(BaseModel):
    patient_id: uuid.UUID
    items: List[PharmacySaleItemSchema] = Field(min_length=1)
    method: PaymentMethod = PaymentMethod.CASH
    reference: Optional[str] = None


class PharmacySaleResponseSchema(PaymentResponseSchema):
    items: List[PaymentItemResponseSchema] = []
