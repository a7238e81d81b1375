from decimal import Decimal
from typing import List, Optional
import uuid

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import NotFoundError, ValidationError
from app.core.utils import logger
from app.db.transaction import atomic
from app.models.pricing_model import ConsultationPrice
from app.models.user_model import User
from app.repositories.pricing_repo import PricingRepository

MAX_HISTORY = 100


class PricingService:
    """
    Consultation fee registry.

    At most one row is active. Activation deactivates every other row in
    the same transaction; the partial unique index
    ``uq_consultation_prices_single_active`` rejects a concurrent second
    activation.
    """

    def __init__(self, db: AsyncSession):
        self.db = db
        self.repo = PricingRepository(db)

    async def get_active_price(self) -> ConsultationPrice:
        price = await self.repo.get_active_price()
        if not price:
            raise NotFoundError("No active consultation price has been set")
        return price

    async def set_active_price(
        self,
        price: Decimal,
        current_user: User,
        price_id: Optional[uuid.UUID] = None,
    ) -> ConsultationPrice:
        if price is None or price <= 0:
            raise ValidationError("Consultation price must be greater than zero")

        async with atomic(
            self.db, conflict_message="Another price change is in progress; retry"
        ):
            previous = await self.repo.get_active_price(for_update=True)
            previous_id = previous.id if previous else None

            if price_id:
                target = await self.repo.get_price_by_id(price_id)
                if not target:
                    raise NotFoundError("Consultation price not found")
                await self.repo.deactivate_all(except_id=target.id)
                target.price = price
                target.is_active = True
                await self.db.flush()
            else:
                await self.repo.deactivate_all()
                target = await self.repo.create_price(
                    ConsultationPrice(
                        price=price, is_active=True, created_by_id=current_user.id
                    )
                )

        logger.log_info(
            {
                "event_type": "consultation_price_activated",
                "price_id": str(target.id),
                "price": float(target.price),
                "previous_price_id": str(previous_id) if previous_id else None,
                "set_by": str(current_user.id),
            }
        )
        return target

    async def get_price_history(self, limit: int = 20) -> List[ConsultationPrice]:
        if limit < 1 or limit > MAX_HISTORY:
            raise ValidationError(f"limit must be between 1 and {MAX_HISTORY}")
        return await self.repo.get_price_history(limit)
