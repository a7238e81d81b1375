from typing import List, Optional
import uuid

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from app.models.pricing_model import ConsultationPrice


class PricingRepository:
    """Repository layer for consultation price versions."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_active_price(self, for_update: bool = False) -> Optional[ConsultationPrice]:
        query = select(ConsultationPrice).where(ConsultationPrice.is_active == True)
        if for_update:
            query = query.with_for_update()
        result = await self.db.execute(query)
        return result.scalars().first()

    async def get_price_by_id(self, price_id: uuid.UUID) -> Optional[ConsultationPrice]:
        result = await self.db.execute(
            select(ConsultationPrice).where(ConsultationPrice.id == price_id)
        )
        return result.scalars().first()

    async def deactivate_all(self, except_id: Optional[uuid.UUID] = None) -> None:
        stmt = (
            update(ConsultationPrice)
            .where(ConsultationPrice.is_active == True)
            .values(is_active=False)
            .execution_options(synchronize_session="fetch")
        )
        if except_id is not None:
            stmt = stmt.where(ConsultationPrice.id != except_id)
        await self.db.execute(stmt)

    async def create_price(self, price: ConsultationPrice) -> ConsultationPrice:
        self.db.add(price)
        await self.db.flush()
        return price

    async def get_price_history(self, limit: int) -> List[ConsultationPrice]:
        result = await self.db.execute(
            select(ConsultationPrice)
            .order_by(ConsultationPrice.created_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())
