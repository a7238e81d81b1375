from typing import Optional
import uuid

from sqlalchemy import Select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from app.models.payment_model import Payment
from app.schemas.payment_schemas import PaymentStatus, PaymentType


class PaymentRepository:
    """Repository layer for the payment ledger."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_payment_by_id(self, payment_id: uuid.UUID) -> Optional[Payment]:
        result = await self.db.execute(select(Payment).where(Payment.id == payment_id))
        return result.scalars().first()

    async def get_payment_for_update(
        self, payment_id: uuid.UUID
    ) -> Optional[Payment]:
        """Lock the row and refresh any copy already in the session."""
        result = await self.db.execute(
            select(Payment)
            .where(Payment.id == payment_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalars().first()

    async def create_payment(self, payment: Payment) -> Payment:
        self.db.add(payment)
        await self.db.flush()
        return payment

    def list_payments_query(
        self,
        patient_id: Optional[uuid.UUID] = None,
        payment_type: Optional[PaymentType] = None,
        status: Optional[PaymentStatus] = None,
    ) -> Select:
        query = select(Payment)
        if patient_id:
            query = query.where(Payment.patient_id == patient_id)
        if payment_type:
            query = query.where(Payment.type == payment_type)
        if status:
            query = query.where(Payment.status == status)
        return query.order_by(Payment.created_at.desc())
