from datetime import datetime
from decimal import Decimal
from typing import Optional
import uuid

from pydantic import BaseModel


class ConsultationPriceSetSchema(BaseModel):
    price: Decimal
    price_id: Optional[uuid.UUID] = None


class ConsultationPriceResponseSchema(BaseModel):
    id: uuid.UUID
    price: Decimal
    is_active: bool
    created_by_id: Optional[uuid.UUID] = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}
