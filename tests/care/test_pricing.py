"""
Consultation Pricing Tests
"""

from decimal import Decimal
import uuid

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import NotFoundError, ValidationError
from app.models.pricing_model import ConsultationPrice
from app.models.user_model import User
from app.services.pricing_service import MAX_HISTORY, PricingService
from conftest import refetch


async def active_count(db: AsyncSession) -> int:
    return await db.scalar(
        select(func.count())
        .select_from(ConsultationPrice)
        .where(ConsultationPrice.is_active == True)
    )


@pytest.mark.asyncio
@pytest.mark.unit
class TestPricing:
    async def test_no_active_price(self, db_session: AsyncSession):
        with pytest.raises(NotFoundError):
            await PricingService(db_session).get_active_price()

    async def test_new_price_replaces_active_one(
        self, db_session: AsyncSession, admin: User
    ):
        service = PricingService(db_session)
        first = await service.set_active_price(Decimal("100.00"), admin)
        second = await service.set_active_price(Decimal("150.00"), admin)

        active = await service.get_active_price()
        assert active.id == second.id
        assert active.price == Decimal("150.00")
        assert (await refetch(db_session, ConsultationPrice, first.id)).is_active is False
        assert await active_count(db_session) == 1

    async def test_reactivate_existing_version(
        self, db_session: AsyncSession, admin: User
    ):
        service = PricingService(db_session)
        first = await service.set_active_price(Decimal("100.00"), admin)
        second = await service.set_active_price(Decimal("150.00"), admin)

        revived = await service.set_active_price(
            Decimal("120.00"), admin, price_id=first.id
        )

        assert revived.id == first.id
        assert revived.price == Decimal("120.00")
        assert (await refetch(db_session, ConsultationPrice, second.id)).is_active is False
        assert await active_count(db_session) == 1
        total = await db_session.scalar(
            select(func.count()).select_from(ConsultationPrice)
        )
        assert total == 2

    async def test_unknown_price_id_keeps_current_price(
        self, db_session: AsyncSession, admin: User
    ):
        service = PricingService(db_session)
        current = await service.set_active_price(Decimal("100.00"), admin)
        current_id = current.id

        with pytest.raises(NotFoundError):
            await service.set_active_price(Decimal("90.00"), admin, price_id=uuid.uuid4())

        active = await service.get_active_price()
        assert active.id == current_id
        assert active.price == Decimal("100.00")

    @pytest.mark.parametrize("price", ["0", "-10"])
    async def test_price_must_be_positive(
        self, db_session: AsyncSession, admin: User, price
    ):
        with pytest.raises(ValidationError):
            await PricingService(db_session).set_active_price(Decimal(price), admin)

    async def test_history_newest_first(self, db_session: AsyncSession, admin: User):
        service = PricingService(db_session)
        for amount in ("80.00", "90.00", "100.00"):
            await service.set_active_price(Decimal(amount), admin)

        history = await service.get_price_history(limit=2)

        assert [row.price for row in history] == [Decimal("100.00"), Decimal("90.00")]
        assert history[0].is_active is True

    @pytest.mark.parametrize("limit", [0, MAX_HISTORY + 1])
    async def test_history_limit_bounds(self, db_session: AsyncSession, limit):
        with pytest.raises(ValidationError):
            await PricingService(db_session).get_price_history(limit=limit)
