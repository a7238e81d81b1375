from typing import Dict, Sequence
import uuid

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from app.models.pharmacy_model import PharmacyProduct


class PharmacyRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def lock_products(
        self, product_ids: Sequence[uuid.UUID]
    ) -> Dict[uuid.UUID, PharmacyProduct]:
        """Lock the products of a sale in id order and index them by id."""
        result = await self.db.execute(
            select(PharmacyProduct)
            .where(PharmacyProduct.id.in_(list(product_ids)))
            .order_by(PharmacyProduct.id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return {product.id: product for product in result.scalars().all()}
