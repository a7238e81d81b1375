from typing import List

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.dependencies import get_db
from app.core.permission_checker import require_admin, require_price_reader
from app.core.utils import logger
from app.models.user_model import User
from app.schemas.pricing_schemas import (
    ConsultationPriceResponseSchema,
    ConsultationPriceSetSchema,
)
from app.services.pricing_service import PricingService


router = APIRouter(prefix="/pricing/consultation", tags=["pricing"])


@router.get("", response_model=ConsultationPriceResponseSchema)
async def get_active_price(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_price_reader()),
):
    """The consultation fee currently charged at registration."""
    price = await PricingService(db).get_active_price()
    return ConsultationPriceResponseSchema.model_validate(price, from_attributes=True)


@router.put(
    "",
    response_model=ConsultationPriceResponseSchema,
    status_code=status.HTTP_200_OK,
)
async def set_active_price(
    price_data: ConsultationPriceSetSchema,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_admin()),
):
    """
    Activate a consultation price.

    Without ``price_id`` a new row is created; with it, that historical row
    is reactivated with the given amount. Every other row is deactivated.

    Raises:
        400: Price not greater than zero
        404: Unknown price_id
        409: Concurrent activation
    """
    price = await PricingService(db).set_active_price(
        price_data.price, current_user, price_id=price_data.price_id
    )
    logger.log_info(
        {
            "event": "consultation_price_set",
            "price_id": str(price.id),
            "user_id": str(current_user.id),
        }
    )
    return ConsultationPriceResponseSchema.model_validate(price, from_attributes=True)


@router.get("/history", response_model=List[ConsultationPriceResponseSchema])
async def get_price_history(
    limit: int = Query(20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_admin()),
):
    prices = await PricingService(db).get_price_history(limit)
    return [
        ConsultationPriceResponseSchema.model_validate(p, from_attributes=True)
        for p in prices
    ]
