from collections import OrderedDict
from decimal import Decimal

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import NotFoundError, ValidationError
from app.core.utils import logger
from app.db.transaction import atomic
from app.models.payment_model import Payment, PaymentItem
from app.models.user_model import User
from app.repositories.pharmacy_repo import PharmacyRepository
from app.schemas.payment_schemas import PaymentStatus, PaymentType, PharmacySaleSchema
from app.services.payment_service import PaymentService


class PharmacyService:
    def __init__(self, db: AsyncSession):
        self.db = db
        self.repo = PharmacyRepository(db)
        self.payment_service = PaymentService(db)

    async def sell(self, data: PharmacySaleSchema, current_user: User) -> Payment:
        """
        Record a paid pharmacy sale and draw its quantities from stock.

        Lines naming the same product are merged. Products are locked for
        the whole sale, so a stock shortfall on any line leaves every
        product and the ledger untouched.

        Raises:
            NotFoundError: unknown product
            ValidationError: inactive product or insufficient stock
        """
        quantities = OrderedDict()
        for line in data.items:
            quantities[line.product_id] = quantities.get(line.product_id, 0) + line.quantity

        async with atomic(self.db):
            products = await self.repo.lock_products(list(quantities.keys()))

            items = []
            total = Decimal("0")
            for product_id, quantity in quantities.items():
                product = products.get(product_id)
                if product is None:
                    raise NotFoundError(
                        "Pharmacy product not found",
                        extra={"product_id": str(product_id)},
                    )
                if not product.is_active:
                    raise ValidationError(f"{product.name} is no longer sold")
                if product.stock < quantity:
                    raise ValidationError(
                        f"Insufficient stock for {product.name}",
                        extra={
                            "product_id": str(product_id),
                            "available": product.stock,
                            "requested": quantity,
                        },
                    )

                line_total = product.price * quantity
                items.append(
                    PaymentItem(
                        product_id=product_id,
                        quantity=quantity,
                        unit_price=product.price,
                        total_price=line_total,
                    )
                )
                total += line_total
                product.stock -= quantity

            payment = await self.payment_service.record_payment(
                patient_id=data.patient_id,
                amount=total,
                method=data.method,
                payment_type=PaymentType.PHARMACY,
                created_by_id=current_user.id,
                status=PaymentStatus.PAID,
                reference=data.reference,
                items=items,
            )

        low_stock = [
            str(product.id) for product in products.values() if product.is_low_stock
        ]
        logger.log_info(
            {
                "event_type": "pharmacy_sale_recorded",
                "payment_id": str(payment.id),
                "patient_id": str(payment.patient_id),
                "amount": float(payment.amount),
                "line_count": len(items),
            }
        )
        if low_stock:
            logger.log_warning(
                {"event_type": "pharmacy_low_stock", "product_ids": low_stock}
            )
        return payment
